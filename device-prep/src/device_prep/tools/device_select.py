from __future__ import annotations

import subprocess

READY_STATE = "device"


def parse_adb_device_states(output: str) -> dict[str, str]:
    """`{serial: state}` from `adb devices` output, in listing order."""

    states: dict[str, str] = {}
    for raw in str(output or "").splitlines():
        line = raw.strip()
        if not line or line.startswith("*") or line.startswith("List of devices attached"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        states[parts[0]] = parts[1]
    return states


def parse_adb_devices(output: str) -> list[str]:
    """Serials in state `device` from `adb devices` output."""

    return [s for s, state in parse_adb_device_states(output).items() if state == READY_STATE]


def detect_single_device_serial(*, adb_path: str = "adb") -> str:
    """Return the only ready adb device serial.

    If there are zero or multiple ready devices, raises SystemExit with guidance.
    """

    try:
        proc = subprocess.run(
            [adb_path, "devices"],
            capture_output=True,
            text=True,
            timeout=5.0,
        )
    except FileNotFoundError as e:
        raise SystemExit(f"adb not found: {adb_path}") from e
    except subprocess.TimeoutExpired as e:
        raise SystemExit(f"adb devices timed out: {adb_path}") from e

    states = parse_adb_device_states((proc.stdout or "") + "\n" + (proc.stderr or ""))
    ready = [s for s, state in states.items() if state == READY_STATE]
    if len(ready) == 1:
        return ready[0]
    if not ready:
        not_ready = {s: state for s, state in states.items() if state != READY_STATE}
        hint = f" (not ready: {not_ready})" if not_ready else ""
        raise SystemExit(
            f"No adb devices in state=device{hint}; connect a device or pass "
            "--serial/$DEVICE_PREP_SERIAL."
        )
    raise SystemExit(
        "Multiple adb devices detected; pass --serial or set $DEVICE_PREP_SERIAL. "
        f"devices={ready}"
    )
