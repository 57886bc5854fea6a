from __future__ import annotations

import subprocess
from types import SimpleNamespace

import pytest

from device_prep.tools.device_select import (
    detect_single_device_serial,
    parse_adb_device_states,
    parse_adb_devices,
)


def test_parse_adb_devices_keeps_ready_devices_only() -> None:
    out = (
        "* daemon not running; starting now at tcp:5037\n"
        "* daemon started successfully\n"
        "List of devices attached\n"
        "emulator-5554\tdevice\n"
        "0123456789ABCDEF\tunauthorized\n"
        "192.168.1.5:5555\toffline\n"
        "R58M12345\tdevice product:foo model:bar\n"
    )
    assert parse_adb_devices(out) == ["emulator-5554", "R58M12345"]
    assert parse_adb_device_states(out)["0123456789ABCDEF"] == "unauthorized"


def _fake_devices(monkeypatch, stdout: str) -> None:
    def fake_run(cmd, **kwargs):
        assert cmd[-1] == "devices"
        return SimpleNamespace(stdout=stdout, stderr="", returncode=0)

    monkeypatch.setattr(subprocess, "run", fake_run)


def test_detect_single_device_serial(monkeypatch) -> None:
    _fake_devices(monkeypatch, "List of devices attached\nemulator-5554\tdevice\n")
    assert detect_single_device_serial() == "emulator-5554"


def test_detect_single_device_serial_none(monkeypatch) -> None:
    _fake_devices(monkeypatch, "List of devices attached\n\n")
    with pytest.raises(SystemExit, match="No adb devices"):
        detect_single_device_serial()


def test_detect_single_device_serial_reports_unready_devices(monkeypatch) -> None:
    _fake_devices(monkeypatch, "List of devices attached\nemulator-5554\toffline\n")
    with pytest.raises(SystemExit, match="emulator-5554': 'offline"):
        detect_single_device_serial()


def test_detect_single_device_serial_many(monkeypatch) -> None:
    _fake_devices(monkeypatch, "List of devices attached\na\tdevice\nb\tdevice\n")
    with pytest.raises(SystemExit, match="Multiple"):
        detect_single_device_serial()


def test_detect_single_device_serial_missing_adb(monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)
    with pytest.raises(SystemExit, match="adb not found"):
        detect_single_device_serial(adb_path="/nope/adb")
