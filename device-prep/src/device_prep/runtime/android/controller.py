"""Android controller utilities.

This is a *minimal* adb-backed implementation of `DeviceSession`:

  * shell / install / push / sync calls return plain strings and booleans
  * losing the device surfaces as `DeviceNotAvailableError`
  * a per-controller `RecoveryMode` decides how hard to try to get the device
    back before giving up (one retry at most)

Notes
-----
* We do not attempt to provide a full-featured device farm controller here.
* Every adb invocation is synchronous and blocking.
"""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
import tempfile
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from device_prep.runtime.android.instrumentation import (
    InstrumentationResultParser,
    InstrumentationTestRunner,
    TestRunListener,
)

logger = logging.getLogger(__name__)

_DEVICE_LOSS_MARKERS = (
    "device not found",
    "device offline",
    "no devices/emulators found",
    "device unauthorized",
    "device still authorizing",
    "error: closed",
)

_DEVICE_NOT_FOUND_RE = re.compile(r"device '[^']*' not found")
_INSTALL_FAILURE_RE = re.compile(r"Failure \[(?P<reason>[^\]]+)\]")
_INSTALL_ERROR_RE = re.compile(r"^\s*(?:adb: )?[Ee]rror: (?P<reason>.+?)\s*$", flags=re.MULTILINE)


class AndroidControllerError(RuntimeError):
    """Raised when an adb operation fails."""


class DeviceNotAvailableError(AndroidControllerError):
    """Raised when communication with the device is lost and could not be recovered."""


class _DeviceLost(Exception):
    """One adb call saw the device drop; carries the reason."""


class RecoveryMode(str, Enum):
    # Give up as soon as the device drops.
    NONE = "none"
    # Wait for adb to see the device again, then retry once.
    ONLINE = "online"
    # Wait for boot and the package manager, then retry once.
    AVAILABLE = "available"


@dataclass(frozen=True)
class AdbResult:
    args: list[str]
    stdout: str
    stderr: str
    returncode: int

    def ok(self) -> bool:
        return self.returncode == 0


def is_device_loss_output(text: str) -> bool:
    lowered = str(text or "").lower()
    if any(marker in lowered for marker in _DEVICE_LOSS_MARKERS):
        return True
    return bool(_DEVICE_NOT_FOUND_RE.search(lowered))


def parse_install_output(text: str) -> Optional[str]:
    """Map `adb install`/`adb uninstall` output to None (success) or an error string."""

    txt = str(text or "")
    m = _INSTALL_FAILURE_RE.search(txt)
    if m:
        return m.group("reason").strip()
    if "Success" in txt:
        return None
    m = _INSTALL_ERROR_RE.search(txt)
    if m:
        return m.group("reason")
    return txt.strip() or "unknown failure (no output)"


def parse_ls_output(text: str) -> list[str]:
    """Entry names from `ls -a` output, without `.`/`..` and error lines."""

    names: list[str] = []
    for raw in str(text or "").splitlines():
        line = raw.strip()
        if not line or line in {".", ".."}:
            continue
        if line.startswith("ls:") or line.endswith("No such file or directory"):
            continue
        names.append(line)
    return names


class AndroidController:
    """Thin wrapper around adb implementing the `DeviceSession` interface."""

    def __init__(
        self,
        *,
        adb_path: str = "adb",
        serial: Optional[str] = None,
        timeout_s: float = 30.0,
        recovery_mode: RecoveryMode = RecoveryMode.AVAILABLE,
        recovery_wait_ms: int = 120 * 1000,
        install_timeout_s: float = 5 * 60.0,
        instrumentation_timeout_s: float = 30 * 60.0,
        poll_interval_s: float = 1.0,
    ) -> None:
        self._adb_path = adb_path
        self._serial = serial
        self._timeout_s = timeout_s
        self._recovery_mode = RecoveryMode(recovery_mode)
        self._recovery_wait_ms = int(recovery_wait_ms)
        self._install_timeout_s = install_timeout_s
        self._instrumentation_timeout_s = instrumentation_timeout_s
        self._poll_interval_s = poll_interval_s

    @property
    def serial(self) -> Optional[str]:
        return self._serial

    def _base_cmd(self) -> list[str]:
        cmd = [self._adb_path]
        if self._serial:
            cmd += ["-s", self._serial]
        return cmd

    def _run(self, cmd: list[str], timeout_s: float | None) -> AdbResult:
        proc = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=self._timeout_s if timeout_s is None else float(timeout_s),
        )
        return AdbResult(
            args=cmd,
            stdout=proc.stdout,
            stderr=proc.stderr,
            returncode=proc.returncode,
        )

    def _run_detecting_loss(self, cmd: list[str], timeout_s: float | None) -> AdbResult:
        """Run once; raise `_DeviceLost` when the device dropped."""

        try:
            result = self._run(cmd, timeout_s)
        except subprocess.TimeoutExpired as e:
            raise _DeviceLost(f"timed out: {' '.join(cmd)}") from e
        if not result.ok() and is_device_loss_output(result.stdout + "\n" + result.stderr):
            raise _DeviceLost((result.stderr or result.stdout).strip())
        return result

    def adb(
        self,
        *args: str,
        timeout_s: float | None = None,
        check: bool = True,
        recover: bool = True,
    ) -> AdbResult:
        """Run an adb command and return stdout/stderr/returncode.

        Device loss (adb reporting the device gone, or a timeout) goes through
        `recover()` and one retry. Losing the device again raises
        `DeviceNotAvailableError` regardless of `check`.
        """

        cmd = self._base_cmd() + list(args)
        try:
            result = self._run_detecting_loss(cmd, timeout_s)
        except _DeviceLost as lost:
            if not recover:
                raise DeviceNotAvailableError(
                    f"device {self._serial} not available: {lost}"
                ) from None
            self.recover(str(lost))
            try:
                result = self._run_detecting_loss(cmd, timeout_s)
            except _DeviceLost as again:
                raise DeviceNotAvailableError(
                    f"device {self._serial} not available after recovery: {again}"
                ) from None

        if check and not result.ok():
            raise AndroidControllerError(
                f"adb command failed (rc={result.returncode}): {' '.join(cmd)}\n"
                f"stdout: {result.stdout}\n"
                f"stderr: {result.stderr}"
            )
        return result

    def adb_shell(
        self,
        command: str,
        *,
        timeout_s: float | None = None,
        check: bool = True,
        recover: bool = True,
    ) -> AdbResult:
        return self.adb("shell", command, timeout_s=timeout_s, check=check, recover=recover)

    # --------------------------------- Recovery ---------------------------------

    def get_recovery_mode(self) -> RecoveryMode:
        return self._recovery_mode

    def set_recovery_mode(self, mode: RecoveryMode) -> None:
        self._recovery_mode = RecoveryMode(mode)

    def recover(self, reason: str) -> None:
        mode = self._recovery_mode
        if mode == RecoveryMode.NONE:
            raise DeviceNotAvailableError(f"device {self._serial} not available: {reason}")
        logger.warning("device %s lost (%s); recovering (mode=%s)", self._serial, reason, mode.value)
        if mode == RecoveryMode.ONLINE:
            self.wait_for_device_online(self._recovery_wait_ms)
        else:
            self.wait_for_device_available(self._recovery_wait_ms)

    def wait_for_device_online(self, timeout_ms: int) -> None:
        cmd = self._base_cmd() + ["wait-for-device"]
        try:
            self._run(cmd, float(timeout_ms) / 1000.0)
        except subprocess.TimeoutExpired as e:
            raise DeviceNotAvailableError(
                f"device {self._serial} not online after {timeout_ms} ms"
            ) from e

    def wait_for_device_available(self, timeout_ms: int) -> None:
        """Block until the device is booted and the package manager responds."""

        deadline = time.monotonic() + float(timeout_ms) / 1000.0
        logger.info("waiting up to %d ms for device %s", timeout_ms, self._serial)
        self.wait_for_device_online(timeout_ms)

        last_error = "package manager not responsive"
        while True:
            try:
                boot = self.adb_shell("getprop sys.boot_completed", check=False, recover=False)
                if boot.stdout.strip() == "1":
                    pm = self.adb_shell("pm path android", check=False, recover=False)
                    if "package:" in pm.stdout:
                        return
                    last_error = f"pm path android: {(pm.stdout or pm.stderr).strip()[:120]}"
                else:
                    last_error = "boot not completed"
            except DeviceNotAvailableError as e:
                last_error = str(e)
            if time.monotonic() >= deadline:
                raise DeviceNotAvailableError(
                    f"device {self._serial} not available after {timeout_ms} ms: {last_error}"
                )
            time.sleep(self._poll_interval_s)

    # ------------------------------ DeviceSession -------------------------------

    def execute_shell_command(self, command: str) -> str:
        logger.debug("shell[%s]: %s", self._serial, command)
        return self.adb_shell(command, check=False).stdout

    def install_package(
        self, package_file: str | Path, replace: bool, *extra_args: str
    ) -> Optional[str]:
        args = ["install"]
        if replace:
            args.append("-r")
        args += list(extra_args)
        args.append(str(package_file))
        res = self.adb(*args, timeout_s=self._install_timeout_s, check=False)
        return parse_install_output(res.stdout + "\n" + res.stderr)

    def uninstall_package(self, package_name: str) -> Optional[str]:
        res = self.adb("uninstall", package_name, check=False)
        return parse_install_output(res.stdout + "\n" + res.stderr)

    def push_file(
        self, src: str | Path, dst: str, *, timeout_s: float | None = None, check: bool = True
    ) -> AdbResult:
        src_path = Path(src)
        return self.adb("push", str(src_path), str(dst), timeout_s=timeout_s, check=check)

    def push_string(self, content: str, remote_path: str) -> bool:
        with tempfile.TemporaryDirectory(prefix="device_prep_push_") as td:
            local = Path(td) / "content.txt"
            local.write_text(content, encoding="utf-8")
            return self.push_file(local, remote_path, check=False).ok()

    def does_file_exist(self, remote_path: str) -> bool:
        res = self.adb_shell(f"ls -d {shlex.quote(remote_path)}", check=False)
        combined = res.stdout + "\n" + res.stderr
        return res.ok() and "No such file or directory" not in combined

    def list_dir(self, remote_path: str) -> list[str]:
        res = self.adb_shell(f"ls -a {shlex.quote(remote_path)}", check=False)
        if not res.ok():
            raise AndroidControllerError(
                f"cannot list {remote_path} (rc={res.returncode}): {res.stderr.strip()}"
            )
        return parse_ls_output(res.stdout)

    def sync_files(self, local_dir: str | Path, remote_dir: str) -> bool:
        local = Path(local_dir)
        if not local.exists():
            logger.error("cannot sync missing local path %s", local)
            return False
        res = self.adb(
            "push", "--sync", str(local), remote_dir, timeout_s=self._install_timeout_s, check=False
        )
        if not res.ok():
            logger.error("sync %s -> %s failed: %s", local, remote_dir, res.stderr.strip())
        return res.ok()

    def run_instrumentation_tests(
        self, runner: InstrumentationTestRunner, *listeners: TestRunListener
    ) -> bool:
        """Run `am instrument` and report parsed events to `listeners`.

        Returns True if the command itself completed; per-test outcomes are
        only available from the listeners.
        """

        command = runner.build_command()
        logger.info("running instrumentation on %s: %s", self._serial, command)
        parser = InstrumentationResultParser(runner.run_name, listeners)
        res = self.adb_shell(command, timeout_s=self._instrumentation_timeout_s, check=False)
        parser.process_output(res.stdout)
        parser.done()
        return res.ok()
