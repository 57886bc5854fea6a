from __future__ import annotations

import itertools
import shlex
import subprocess
from types import SimpleNamespace

import pytest

from device_prep.runtime.android import controller as controller_mod
from device_prep.runtime.android.controller import (
    AdbResult,
    AndroidController,
    AndroidControllerError,
    DeviceNotAvailableError,
    RecoveryMode,
    is_device_loss_output,
    parse_install_output,
    parse_ls_output,
)
from device_prep.runtime.android.instrumentation import (
    CollectingTestListener,
    InstrumentationTestRunner,
)
from device_prep.runtime.android.session import DeviceSession


def _ok(cmd, stdout: str = "", stderr: str = "") -> AdbResult:
    return AdbResult(args=["adb", "shell", cmd], stdout=stdout, stderr=stderr, returncode=0)


def test_android_controller_implements_device_session() -> None:
    assert isinstance(AndroidController(adb_path="adb", serial="s"), DeviceSession)


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("Performing Streamed Install\nSuccess\n", None),
        (
            "adb: failed to install a.apk: Failure [INSTALL_FAILED_OLDER_SDK: Requires newer sdk]",
            "INSTALL_FAILED_OLDER_SDK: Requires newer sdk",
        ),
        ("Failure [DELETE_FAILED_INTERNAL_ERROR]\n", "DELETE_FAILED_INTERNAL_ERROR"),
        (
            "adb: error: cannot stat 'missing.apk': No such file or directory\n",
            "cannot stat 'missing.apk': No such file or directory",
        ),
        ("", "unknown failure (no output)"),
    ],
)
def test_parse_install_output(output, expected) -> None:
    assert parse_install_output(output) == expected


def test_parse_ls_output_drops_dots_and_errors() -> None:
    out = ".\n..\napp\nlocal\nls: /data/secret: Permission denied\nmisc\n"
    assert parse_ls_output(out) == ["app", "local", "misc"]


def test_is_device_loss_output() -> None:
    assert is_device_loss_output("adb: device 'emulator-5554' not found") is True
    assert is_device_loss_output("error: device not found") is True
    assert is_device_loss_output("error: device offline") is True
    assert is_device_loss_output("error: no devices/emulators found") is True
    assert is_device_loss_output("ls: /data/x: No such file or directory") is False


def test_adb_prefixes_serial(monkeypatch) -> None:
    calls: list[list[str]] = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return SimpleNamespace(stdout="ok\n", stderr="", returncode=0)

    monkeypatch.setattr(subprocess, "run", fake_run)
    ctr = AndroidController(adb_path="/opt/adb", serial="emulator-5554")
    assert ctr.execute_shell_command("echo ok") == "ok\n"
    assert calls == [["/opt/adb", "-s", "emulator-5554", "shell", "echo ok"]]


def test_adb_check_raises_controller_error(monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
        return SimpleNamespace(stdout="", stderr="boom", returncode=1)

    monkeypatch.setattr(subprocess, "run", fake_run)
    ctr = AndroidController(adb_path="adb", serial="s")
    with pytest.raises(AndroidControllerError, match="rc=1"):
        ctr.adb("shell", "false")
    assert ctr.adb("shell", "false", check=False).returncode == 1


def test_device_loss_with_recovery_none_raises(monkeypatch) -> None:
    calls: list[list[str]] = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return SimpleNamespace(stdout="", stderr="error: device offline", returncode=1)

    monkeypatch.setattr(subprocess, "run", fake_run)
    ctr = AndroidController(adb_path="adb", serial="s", recovery_mode=RecoveryMode.NONE)
    with pytest.raises(DeviceNotAvailableError):
        ctr.execute_shell_command("ls /data")
    assert len(calls) == 1


def test_device_loss_with_recovery_online_retries_once(monkeypatch) -> None:
    calls: list[list[str]] = []
    responses = [
        SimpleNamespace(stdout="", stderr="error: device offline", returncode=1),
        SimpleNamespace(stdout="", stderr="", returncode=0),  # wait-for-device
        SimpleNamespace(stdout="app\n", stderr="", returncode=0),
    ]

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return responses.pop(0)

    monkeypatch.setattr(subprocess, "run", fake_run)
    ctr = AndroidController(adb_path="adb", serial="s", recovery_mode=RecoveryMode.ONLINE)
    assert ctr.execute_shell_command("ls /data") == "app\n"
    assert calls[1] == ["adb", "-s", "s", "wait-for-device"]
    assert calls[0] == calls[2]


def test_device_loss_twice_raises_after_recovery(monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
        if cmd[-1] == "wait-for-device":
            return SimpleNamespace(stdout="", stderr="", returncode=0)
        return SimpleNamespace(stdout="", stderr="error: device not found", returncode=1)

    monkeypatch.setattr(subprocess, "run", fake_run)
    ctr = AndroidController(adb_path="adb", serial="s", recovery_mode=RecoveryMode.ONLINE)
    with pytest.raises(DeviceNotAvailableError, match="after recovery"):
        ctr.execute_shell_command("ls /data")


def test_timeout_is_treated_as_device_loss(monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))

    monkeypatch.setattr(subprocess, "run", fake_run)
    ctr = AndroidController(adb_path="adb", serial="s", recovery_mode=RecoveryMode.NONE)
    with pytest.raises(DeviceNotAvailableError, match="timed out"):
        ctr.execute_shell_command("sleep 100")


def test_recovery_mode_round_trips() -> None:
    ctr = AndroidController(adb_path="adb", serial="s")
    assert ctr.get_recovery_mode() == RecoveryMode.AVAILABLE
    ctr.set_recovery_mode(RecoveryMode.ONLINE)
    assert ctr.get_recovery_mode() == RecoveryMode.ONLINE


def test_wait_for_device_available_polls_until_package_manager(monkeypatch) -> None:
    ctr = AndroidController(adb_path="adb", serial="s", poll_interval_s=0.0)
    boot_values = iter(["0\n", "1\n", "1\n"])
    pm_values = iter(["", "package:/system/framework/framework-res.apk\n"])
    seen: list[str] = []

    monkeypatch.setattr(ctr, "wait_for_device_online", lambda timeout_ms: None)

    def fake_adb_shell(cmd: str, **kwargs) -> AdbResult:
        seen.append(cmd)
        if cmd == "getprop sys.boot_completed":
            return _ok(cmd, next(boot_values))
        if cmd == "pm path android":
            return _ok(cmd, next(pm_values))
        raise AssertionError(cmd)

    monkeypatch.setattr(ctr, "adb_shell", fake_adb_shell)
    ctr.wait_for_device_available(10_000)
    assert seen.count("pm path android") == 2


def test_wait_for_device_available_times_out(monkeypatch) -> None:
    ctr = AndroidController(adb_path="adb", serial="s", poll_interval_s=0.0)
    monkeypatch.setattr(ctr, "wait_for_device_online", lambda timeout_ms: None)
    monkeypatch.setattr(ctr, "adb_shell", lambda cmd, **kwargs: _ok(cmd, "0\n"))

    clock = itertools.count(0.0, 0.6)
    monkeypatch.setattr(controller_mod.time, "monotonic", lambda: next(clock))
    with pytest.raises(DeviceNotAvailableError, match="boot not completed"):
        ctr.wait_for_device_available(1000)


def test_install_package_builds_args(monkeypatch) -> None:
    captured: dict = {}

    def fake_adb(*args, **kwargs) -> AdbResult:
        captured["args"] = list(args)
        return AdbResult(args=list(args), stdout="Success\n", stderr="", returncode=0)

    ctr = AndroidController(adb_path="adb", serial="s")
    monkeypatch.setattr(ctr, "adb", fake_adb)
    assert ctr.install_package("/tmp/app.apk", True, "-l") is None
    assert captured["args"] == ["install", "-r", "-l", "/tmp/app.apk"]


def test_push_string_pushes_temp_file(monkeypatch) -> None:
    pushed: dict = {}

    def fake_adb(*args, **kwargs) -> AdbResult:
        src = args[1]
        with open(src, encoding="utf-8") as f:
            pushed["content"] = f.read()
        pushed["args"] = list(args)
        return AdbResult(args=list(args), stdout="", stderr="", returncode=0)

    ctr = AndroidController(adb_path="adb", serial="s")
    monkeypatch.setattr(ctr, "adb", fake_adb)
    assert ctr.push_string("hello", "/data/local/tmp/x.txt") is True
    assert pushed["content"] == "hello"
    assert pushed["args"][0] == "push"
    assert pushed["args"][-1] == "/data/local/tmp/x.txt"


def test_does_file_exist_and_list_dir(monkeypatch) -> None:
    def fake_adb_shell(cmd: str, **kwargs) -> AdbResult:
        parts = shlex.split(cmd)
        if parts[:2] == ["ls", "-d"]:
            if parts[2] == "/data/app":
                return _ok(cmd, "/data/app\n")
            return AdbResult(
                args=["adb", "shell", cmd],
                stdout="",
                stderr=f"ls: {parts[2]}: No such file or directory",
                returncode=1,
            )
        if parts[:2] == ["ls", "-a"]:
            return _ok(cmd, ".\n..\napp\nlocal\n")
        raise AssertionError(cmd)

    ctr = AndroidController(adb_path="adb", serial="s")
    monkeypatch.setattr(ctr, "adb_shell", fake_adb_shell)
    assert ctr.does_file_exist("/data/app") is True
    assert ctr.does_file_exist("/data/gone") is False
    assert ctr.list_dir("/data") == ["app", "local"]


def test_sync_files_uses_push_sync(monkeypatch, tmp_path) -> None:
    captured: dict = {}

    def fake_adb(*args, **kwargs) -> AdbResult:
        captured["args"] = list(args)
        return AdbResult(args=list(args), stdout="", stderr="", returncode=0)

    ctr = AndroidController(adb_path="adb", serial="s")
    monkeypatch.setattr(ctr, "adb", fake_adb)
    local = tmp_path / "app"
    local.mkdir()
    assert ctr.sync_files(local, "/data") is True
    assert captured["args"] == ["push", "--sync", str(local), "/data"]
    assert ctr.sync_files(tmp_path / "missing", "/data") is False


def test_run_instrumentation_tests_parses_output(monkeypatch) -> None:
    output = (
        "INSTRUMENTATION_STATUS: test=testA\n"
        "INSTRUMENTATION_STATUS: class=com.example.T\n"
        "INSTRUMENTATION_STATUS_CODE: 1\n"
        "INSTRUMENTATION_STATUS: test=testA\n"
        "INSTRUMENTATION_STATUS: class=com.example.T\n"
        "INSTRUMENTATION_STATUS_CODE: -2\n"
        "INSTRUMENTATION_CODE: -1\n"
    )
    seen: list[str] = []

    def fake_adb_shell(cmd: str, **kwargs) -> AdbResult:
        seen.append(cmd)
        return _ok(cmd, output)

    ctr = AndroidController(adb_path="adb", serial="s")
    monkeypatch.setattr(ctr, "adb_shell", fake_adb_shell)
    listener = CollectingTestListener()
    assert ctr.run_instrumentation_tests(InstrumentationTestRunner("com.example"), listener)
    assert shlex.split(seen[0])[:4] == ["am", "instrument", "-w", "-r"]
    assert listener.has_failed_tests() is True


def test_device_loss_without_recover_skips_recovery(monkeypatch) -> None:
    calls: list[list[str]] = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return SimpleNamespace(stdout="", stderr="error: device offline", returncode=1)

    monkeypatch.setattr(subprocess, "run", fake_run)
    ctr = AndroidController(adb_path="adb", serial="s", recovery_mode=RecoveryMode.ONLINE)
    with pytest.raises(DeviceNotAvailableError, match="device offline"):
        ctr.adb("shell", "ls", recover=False)
    assert calls == [["adb", "-s", "s", "shell", "ls"]]


def test_non_loss_failure_is_returned_without_retry(monkeypatch) -> None:
    calls: list[list[str]] = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return SimpleNamespace(stdout="", stderr="ls: /x: No such file or directory", returncode=1)

    monkeypatch.setattr(subprocess, "run", fake_run)
    ctr = AndroidController(adb_path="adb", serial="s", recovery_mode=RecoveryMode.ONLINE)
    assert ctr.adb("shell", "ls /x", check=False).returncode == 1
    assert len(calls) == 1
