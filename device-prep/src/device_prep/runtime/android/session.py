"""The device-communication interface consumed by the helpers.

`AndroidController` is the adb-backed implementation; tests pass fakes that
implement the same methods.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from device_prep.runtime.android.controller import RecoveryMode
from device_prep.runtime.android.instrumentation import (
    InstrumentationTestRunner,
    TestRunListener,
)


@runtime_checkable
class DeviceSession(Protocol):
    @property
    def serial(self) -> Optional[str]: ...

    def install_package(
        self, package_file: str | Path, replace: bool, *extra_args: str
    ) -> Optional[str]:
        """Install an apk; return None on success, else the error string."""
        ...

    def uninstall_package(self, package_name: str) -> Optional[str]: ...

    def execute_shell_command(self, command: str) -> str: ...

    def push_string(self, content: str, remote_path: str) -> bool: ...

    def does_file_exist(self, remote_path: str) -> bool: ...

    def list_dir(self, remote_path: str) -> list[str]: ...

    def sync_files(self, local_dir: str | Path, remote_dir: str) -> bool: ...

    def wait_for_device_available(self, timeout_ms: int) -> None: ...

    def get_recovery_mode(self) -> RecoveryMode: ...

    def set_recovery_mode(self, mode: RecoveryMode) -> None: ...

    def run_instrumentation_tests(
        self, runner: InstrumentationTestRunner, *listeners: TestRunListener
    ) -> bool: ...
