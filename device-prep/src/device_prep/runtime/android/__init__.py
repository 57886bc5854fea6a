"""Android runtime helpers for device-prep.

This package intentionally contains *thin* wrappers around adb operations so
that:
  * the package-manager and tests-zip helpers talk to one explicit device
    interface (`DeviceSession`)
  * instrumentation runs are built and parsed without a live device

Unit tests substitute fake sessions; only `AndroidController` spawns adb.
"""

from __future__ import annotations

from device_prep.runtime.android.controller import (
    AdbResult,
    AndroidController,
    AndroidControllerError,
    DeviceNotAvailableError,
    RecoveryMode,
)
from device_prep.runtime.android.instrumentation import (
    CollectingTestListener,
    InstrumentationResultParser,
    InstrumentationTestRunner,
    TestIdentifier,
    TestResult,
    TestStatus,
)
from device_prep.runtime.android.session import DeviceSession

__all__ = [
    "AdbResult",
    "AndroidController",
    "AndroidControllerError",
    "CollectingTestListener",
    "DeviceNotAvailableError",
    "DeviceSession",
    "InstrumentationResultParser",
    "InstrumentationTestRunner",
    "RecoveryMode",
    "TestIdentifier",
    "TestResult",
    "TestStatus",
]
