"""Pushes the contents of an unpacked tests zip onto a device's /data partition.

Sequence for `push_tests_zip_onto_data`:

  check host DATA/ -> stop framework -> delete_data -> sync each DATA/* child
  -> chown synced dirs

`delete_data` refuses to touch anything unless a write probe succeeds, never
removes names listed in `data_to_skip`, and re-checks each removal because
device-side `rm -r` can silently leave the path behind.
"""

from __future__ import annotations

import logging
import os
import shlex
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Iterable, Optional

from device_prep.runtime.android.controller import (
    AndroidControllerError,
    DeviceNotAvailableError,
    RecoveryMode,
)
from device_prep.runtime.android.session import DeviceSession
from device_prep.targetprep.errors import TargetSetupError

if TYPE_CHECKING:
    from device_prep.build.build_info import DeviceBuildInfo

logger = logging.getLogger(__name__)

DATA_DIRECTORY = "/data"
WRITE_PROBE_PATH = "/data/local/tmp/device_prep_write_probe.txt"
WRITE_PROBE_CONTENT = "device-prep write probe"
SYSTEM_OWNER = "system.system"


@dataclass(frozen=True)
class RetryPolicy:
    """Bound on `rm -r` attempts per entry.

    `delay_s` defaults to 0: attempts run back to back with no backoff.
    """

    max_attempts: int = 3
    delay_s: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_s < 0:
            raise ValueError("delay_s must be >= 0")


class DefaultTestsZipInstaller:
    def __init__(
        self,
        *data_to_skip: str,
        retry_policy: Optional[RetryPolicy] = None,
        sleep=time.sleep,
    ) -> None:
        self._data_to_skip = frozenset(data_to_skip)
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    @property
    def data_to_skip(self) -> frozenset[str]:
        return self._data_to_skip

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    def get_tests_zip_data_files(self, host_dir: Path) -> list[Path]:
        """Children of the host DATA dir; each one is synced as a unit."""

        host_dir = Path(host_dir)
        if not host_dir.is_dir():
            raise TargetSetupError(f"tests zip data dir not found: {host_dir}")
        return sorted(host_dir.iterdir())

    def find_dirs(self, host_dir: Path, device_root_path: str) -> set[PurePosixPath]:
        """Device paths of every directory below `host_dir` once synced to `device_root_path`."""

        host_dir = Path(host_dir)
        root = PurePosixPath(device_root_path)
        dirs: set[PurePosixPath] = set()
        for dirpath, dirnames, _ in os.walk(host_dir):
            rel = Path(dirpath).relative_to(host_dir)
            for name in dirnames:
                dirs.add(root.joinpath(*rel.parts, name))
        return dirs

    def push_tests_zip_onto_data(self, device: DeviceSession, build_info: DeviceBuildInfo) -> None:
        logger.info("Pushing tests zip content onto userdata on %s", device.serial)
        host_dir = build_info.data_dir()
        data_files = self.get_tests_zip_data_files(host_dir)
        synced_dirs = sorted(self.find_dirs(host_dir, DATA_DIRECTORY))

        device.execute_shell_command("stop")
        self.delete_data(device)

        logger.debug("Syncing test files/apks from %s", host_dir)
        for data_file in data_files:
            if not device.sync_files(data_file, DATA_DIRECTORY):
                raise TargetSetupError(
                    f"Could not push test zip file {data_file} to {DATA_DIRECTORY} "
                    f"on {device.serial}"
                )

        for dir_path in synced_dirs:
            device.execute_shell_command(f"chown {SYSTEM_OWNER} {shlex.quote(str(dir_path))}")

    def delete_data(self, device: DeviceSession) -> None:
        """Remove everything under /data except `data_to_skip`.

        Raises TargetSetupError if the filesystem fails the write probe, /data
        cannot be listed, or an entry survives `retry_policy.max_attempts`
        removals.
        """

        cached_mode = device.get_recovery_mode()
        device.set_recovery_mode(RecoveryMode.ONLINE)
        try:
            if not device.push_string(WRITE_PROBE_CONTENT, WRITE_PROBE_PATH):
                raise TargetSetupError(
                    f"Failed a basic filesystem write test on {device.serial}: "
                    f"could not write {WRITE_PROBE_PATH}"
                )
            try:
                names = device.list_dir(DATA_DIRECTORY)
            except DeviceNotAvailableError:
                raise
            except AndroidControllerError as e:
                raise TargetSetupError(
                    f"Could not list {DATA_DIRECTORY} on {device.serial}: {e}"
                ) from e
            for path in self._deletable_paths(names):
                self._delete_dir(device, path)
        finally:
            device.set_recovery_mode(cached_mode)

    def _deletable_paths(self, names: Iterable[str]) -> list[str]:
        paths: list[str] = []
        for name in names:
            if name in self._data_to_skip:
                logger.debug("skipping %s/%s", DATA_DIRECTORY, name)
                continue
            paths.append(str(PurePosixPath(DATA_DIRECTORY) / name))
        return paths

    def _delete_dir(self, device: DeviceSession, path: str) -> None:
        policy = self._retry_policy
        for attempt in range(1, policy.max_attempts + 1):
            output = device.execute_shell_command(f"rm -r {shlex.quote(path)}")
            if not device.does_file_exist(path):
                return
            logger.warning(
                "%s still exists after rm attempt %d/%d: %s",
                path,
                attempt,
                policy.max_attempts,
                output.strip()[:200],
            )
            if attempt < policy.max_attempts and policy.delay_s > 0:
                self._sleep(policy.delay_s)
        raise TargetSetupError(
            f"Failed to delete {path} on {device.serial} after {policy.max_attempts} attempts"
        )
