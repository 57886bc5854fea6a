from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence

from device_prep.cli.common import (
    EXIT_DEVICE_NOT_AVAILABLE,
    EXIT_FAILED,
    EXIT_OK,
    add_device_args,
    build_controller,
    resolve_config,
    setup_logging,
)
from device_prep.config import ConfigError
from device_prep.package_manager import (
    InstallLocation,
    InstallLocPreference,
    PackageManagerHostTestUtils,
    PackageVerificationError,
)
from device_prep.runtime.android.controller import AndroidControllerError, DeviceNotAvailableError
from device_prep.targetprep.errors import TargetSetupError

logger = logging.getLogger(__name__)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Install an apk and verify which install root it landed in."
    )
    parser.add_argument("--apk", type=Path, required=True, help="apk file to install.")
    parser.add_argument("--package", type=str, required=True, help="Manifest package name.")
    parser.add_argument(
        "--location",
        type=str,
        default=InstallLocation.DEVICE.value,
        choices=[loc.value for loc in InstallLocation],
        help="Expected install location (default: device).",
    )
    parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Reinstall over an existing copy instead of uninstalling first.",
    )
    parser.add_argument(
        "--preference",
        type=str,
        default=None,
        choices=[p.name.lower() for p in InstallLocPreference],
        help="Set the device-wide install location preference before installing.",
    )
    parser.add_argument(
        "--test_package",
        type=str,
        default=None,
        help="Instrumentation package to run after a verified install.",
    )
    parser.add_argument("--test_class", type=str, default=None, help="Test class to run.")
    parser.add_argument(
        "--test_method", type=str, default=None, help="Test method (needs --test_class)."
    )
    add_device_args(parser)
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    try:
        cfg = resolve_config(args)
    except (ConfigError, OSError, ValueError) as e:
        logger.error("bad config: %s", e)
        return EXIT_FAILED

    try:
        controller = build_controller(cfg)
        utils = PackageManagerHostTestUtils(
            controller, max_wait_for_device_ms=cfg.max_wait_for_device_ms
        )
        if args.preference:
            pref = InstallLocPreference[args.preference.upper()]
            utils.set_device_preferred_install_location(pref)
        utils.install_app_and_verify_location(
            args.apk, args.package, args.overwrite, InstallLocation(args.location)
        )
        if args.test_package:
            passed = utils.run_device_tests_did_all_tests_pass(
                args.test_package,
                args.test_class,
                args.test_method,
                cfg.instrumentation_runner,
            )
            if not passed:
                logger.error("instrumentation tests failed in %s", args.test_package)
                return EXIT_FAILED
    except DeviceNotAvailableError as e:
        logger.error("device not available: %s", e)
        return EXIT_DEVICE_NOT_AVAILABLE
    except AndroidControllerError as e:
        logger.error("adb command failed: %s", e)
        return EXIT_FAILED
    except (TargetSetupError, PackageVerificationError) as e:
        logger.error("install verification failed: %s", e)
        return EXIT_FAILED

    print(f"OK: {args.package} installed at {args.location} on {controller.serial}")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
