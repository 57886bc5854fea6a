"""Target preparation: staging test data onto a device before tests run."""

from __future__ import annotations

from device_prep.targetprep.errors import TargetSetupError
from device_prep.targetprep.tests_zip_installer import (
    DATA_DIRECTORY,
    DefaultTestsZipInstaller,
    RetryPolicy,
)

__all__ = [
    "DATA_DIRECTORY",
    "DefaultTestsZipInstaller",
    "RetryPolicy",
    "TargetSetupError",
]
