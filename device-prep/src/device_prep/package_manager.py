"""Host-side helpers that install packages and verify where they landed.

Composite `install_app_and_verify_*` helpers *assert* (they raise
`PackageVerificationError`, an `AssertionError`, so a calling test fails),
while the `does_*` / `get_*` helpers only inspect and return values.

Assumes adb is running as root on the device under test: the install roots
below are not listable otherwise.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from device_prep.runtime.android.instrumentation import (
    CollectingTestListener,
    InstrumentationTestRunner,
)
from device_prep.runtime.android.session import DeviceSession
from device_prep.targetprep.errors import TargetSetupError

logger = logging.getLogger(__name__)

APP_PRIVATE_PATH = "/data/app-private/"
DEVICE_APP_PATH = "/data/app/"
SDCARD_APP_PATH = "/mnt/secure/asec/"

MAX_WAIT_FOR_DEVICE_TIME_MS = 120 * 1000

FORWARD_LOCK_FLAG = "-l"
PACKAGE_PATH_MARKER = "package:"


class InstallLocPreference(Enum):
    """Device-wide install location preference (`pm setInstallLocation`)."""

    AUTO = 0
    INTERNAL = 1
    EXTERNAL = 2


class InstallLocation(Enum):
    """Where an installed package actually ended up."""

    DEVICE = "device"
    SDCARD = "sdcard"
    FORWARD_LOCKED = "forward_locked"


# (root that must hold the package, roots that must not)
_LOCATION_ROOTS: dict[InstallLocation, tuple[str, tuple[str, ...]]] = {
    InstallLocation.DEVICE: (DEVICE_APP_PATH, (SDCARD_APP_PATH, APP_PRIVATE_PATH)),
    InstallLocation.SDCARD: (SDCARD_APP_PATH, (DEVICE_APP_PATH, APP_PRIVATE_PATH)),
    # Forward-locked apps keep public resources under /data/app.
    InstallLocation.FORWARD_LOCKED: (APP_PRIVATE_PATH, (SDCARD_APP_PATH,)),
}


class PackageVerificationError(AssertionError):
    """Expected package state on the device did not match the actual state."""


class PackageInstallError(TargetSetupError):
    """The device rejected a package install."""


# --------------------------------- Parsing ----------------------------------


def pm_path_reports_package(output: str) -> bool:
    return PACKAGE_PATH_MARKER in str(output or "")


def ls_output_contains(output: str, search_string: str) -> bool:
    return search_string in str(output or "")


def install_location_command(pref: InstallLocPreference) -> str:
    return f"pm setInstallLocation {InstallLocPreference(pref).value:d}"


def parse_install_location_preference(
    output: str, *, strict: bool = False
) -> InstallLocPreference:
    """Map `pm getInstallLocation` output to a preference.

    The first check that matches wins: any "0" -> AUTO, then any "1" ->
    INTERNAL. Anything else is EXTERNAL, including output with no digit at
    all; pass `strict=True` to get a ValueError for that case instead.
    """

    txt = str(output or "")
    if "0" in txt:
        return InstallLocPreference.AUTO
    if "1" in txt:
        return InstallLocPreference.INTERNAL
    if strict and "2" not in txt:
        raise ValueError(f"unrecognized pm getInstallLocation output: {txt.strip()!r}")
    if "2" not in txt:
        logger.warning(
            "unrecognized pm getInstallLocation output %r; assuming EXTERNAL", txt.strip()
        )
    return InstallLocPreference.EXTERNAL


# --------------------------------- Helpers ----------------------------------


def _check(condition: bool, message: str) -> None:
    if not condition:
        raise PackageVerificationError(message)


class PackageManagerHostTestUtils:
    """Package install/verify helpers bound to one device session."""

    def __init__(
        self,
        device: DeviceSession,
        *,
        max_wait_for_device_ms: int = MAX_WAIT_FOR_DEVICE_TIME_MS,
    ) -> None:
        self._device = device
        self._max_wait_for_device_ms = int(max_wait_for_device_ms)

    @property
    def device(self) -> DeviceSession:
        return self._device

    @staticmethod
    def get_app_private_path() -> str:
        return APP_PRIVATE_PATH

    @staticmethod
    def get_device_app_path() -> str:
        return DEVICE_APP_PATH

    @staticmethod
    def get_sdcard_app_path() -> str:
        return SDCARD_APP_PATH

    # ---------------------------- Instrumentation -----------------------------

    def _do_run_tests(
        self,
        pkg_name: str,
        class_name: Optional[str],
        method_name: Optional[str],
        runner_name: Optional[str],
        params: Optional[Mapping[str, str]],
    ) -> CollectingTestListener:
        runner = InstrumentationTestRunner(pkg_name, runner_name)
        if class_name is not None and method_name is not None:
            runner.set_method_name(class_name, method_name)
        for key, value in (params or {}).items():
            runner.add_instrumentation_arg(key, value)

        listener = CollectingTestListener()
        self._device.run_instrumentation_tests(runner, listener)
        return listener

    def run_device_tests_did_all_tests_pass(
        self,
        pkg_name: str,
        class_name: Optional[str] = None,
        method_name: Optional[str] = None,
        runner_name: Optional[str] = None,
        params: Optional[Mapping[str, str]] = None,
    ) -> bool:
        """Run a package's instrumentation tests; True if none failed.

        `class_name`/`method_name` scope the run to one method only when both
        are given. `params` become `-e key value` instrumentation args.
        """

        listener = self._do_run_tests(pkg_name, class_name, method_name, runner_name, params)
        if listener.has_run_failure():
            logger.warning(
                "instrumentation run for %s reported: %s", pkg_name, listener.run_failure_message
            )
        return not listener.has_failed_tests()

    # ------------------------------ Install / query ---------------------------

    def install_file(self, local_file: str | Path, replace: bool) -> None:
        result = self._device.install_package(local_file, replace)
        if result is not None:
            raise PackageInstallError(f"failed to install {local_file}: {result}")

    def install_file_forward_locked(self, apk_file: str | Path, replace: bool) -> Optional[str]:
        """Install as forward-locked; return the raw error string (None on success)."""

        return self._device.install_package(apk_file, replace, FORWARD_LOCK_FLAG)

    def does_remote_file_exist_containing_string(self, dest_path: str, search_string: str) -> bool:
        ls_result = self._device.execute_shell_command(f"ls {dest_path}")
        return ls_output_contains(ls_result, search_string)

    def does_package_exist(self, package_name: str) -> bool:
        output = self._device.execute_shell_command(f"pm path {package_name}")
        return pm_path_reports_package(output)

    def does_app_exist_on_device(self, package_name: str) -> bool:
        return self.does_remote_file_exist_containing_string(DEVICE_APP_PATH, package_name)

    def does_app_exist_on_sdcard(self, package_name: str) -> bool:
        return self.does_remote_file_exist_containing_string(SDCARD_APP_PATH, package_name)

    def does_app_exist_as_forward_locked(self, package_name: str) -> bool:
        return self.does_remote_file_exist_containing_string(APP_PRIVATE_PATH, package_name)

    def wait_for_package_manager(self) -> None:
        logger.info("waiting for device")
        self._device.wait_for_device_available(self._max_wait_for_device_ms)

    # ------------------------------ Composite ops -----------------------------

    def install_app_and_verify_location(
        self,
        apk_file: str | Path,
        pkg_name: str,
        overwrite: bool,
        expected_location: InstallLocation,
    ) -> None:
        expected_location = InstallLocation(expected_location)
        # Start with a clean slate if we're not overwriting.
        if not overwrite:
            self._device.uninstall_package(pkg_name)
            _check(
                not self.does_package_exist(pkg_name),
                f"{pkg_name} still installed after uninstall",
            )

        if expected_location == InstallLocation.FORWARD_LOCKED:
            result = self.install_file_forward_locked(apk_file, overwrite)
            if result is not None:
                raise PackageInstallError(f"failed to install {apk_file} forward-locked: {result}")
        else:
            self.install_file(apk_file, overwrite)

        present_at, absent_at = _LOCATION_ROOTS[expected_location]
        _check(
            self.does_remote_file_exist_containing_string(present_at, pkg_name),
            f"{pkg_name} not found under {present_at} (expected {expected_location.value})",
        )
        for root in absent_at:
            _check(
                not self.does_remote_file_exist_containing_string(root, pkg_name),
                f"{pkg_name} unexpectedly found under {root} "
                f"(expected {expected_location.value})",
            )

        self.wait_for_package_manager()
        _check(self.does_package_exist(pkg_name), f"{pkg_name} not reported by pm path")

    def install_app_and_verify_exists_on_device(
        self, apk_file: str | Path, pkg_name: str, overwrite: bool
    ) -> None:
        self.install_app_and_verify_location(apk_file, pkg_name, overwrite, InstallLocation.DEVICE)

    def install_app_and_verify_exists_on_sdcard(
        self, apk_file: str | Path, pkg_name: str, overwrite: bool
    ) -> None:
        self.install_app_and_verify_location(apk_file, pkg_name, overwrite, InstallLocation.SDCARD)

    def install_fwd_locked_app_and_verify_exists(
        self, apk_file: str | Path, pkg_name: str, overwrite: bool
    ) -> None:
        self.install_app_and_verify_location(
            apk_file, pkg_name, overwrite, InstallLocation.FORWARD_LOCKED
        )

    def uninstall_app(self, pkg_name: str) -> None:
        self._device.uninstall_package(pkg_name)
        _check(not self.does_package_exist(pkg_name), f"{pkg_name} still installed after uninstall")

    # --------------------------- Install preference ---------------------------

    def set_device_preferred_install_location(self, pref: InstallLocPreference) -> None:
        self._device.execute_shell_command(install_location_command(pref))

    def get_device_preferred_install_location(self, *, strict: bool = False) -> InstallLocPreference:
        result = self._device.execute_shell_command("pm getInstallLocation")
        return parse_install_location_preference(result, strict=strict)
