from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from device_prep.targetprep.errors import TargetSetupError

TESTS_ZIP_DATA_DIR_NAME = "DATA"


@dataclass(frozen=True)
class DeviceBuildInfo:
    """A device build plus the unpacked tests zip that goes with it."""

    build_id: str
    test_target: str
    build_name: str
    tests_dir: Optional[Path] = None

    def data_dir(self) -> Path:
        """Host directory whose children are synced onto the device's /data."""

        if self.tests_dir is None:
            raise TargetSetupError(f"build {self.build_id} has no tests dir")
        return Path(self.tests_dir) / TESTS_ZIP_DATA_DIR_NAME
