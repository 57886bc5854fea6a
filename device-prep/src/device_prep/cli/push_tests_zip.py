from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence

from device_prep.build.build_info import DeviceBuildInfo
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
from device_prep.runtime.android.controller import AndroidControllerError, DeviceNotAvailableError
from device_prep.targetprep.errors import TargetSetupError
from device_prep.targetprep.tests_zip_installer import DefaultTestsZipInstaller, RetryPolicy

logger = logging.getLogger(__name__)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Wipe /data on a device and push an unpacked tests zip's DATA dir onto it."
    )
    parser.add_argument(
        "--tests_dir",
        type=Path,
        required=True,
        help="Unpacked tests zip directory (must contain DATA/).",
    )
    parser.add_argument(
        "--skip",
        action="append",
        default=None,
        help="Name under /data to keep (repeatable; added to config data_to_skip).",
    )
    parser.add_argument("--build_id", type=str, default="0", help="Build id (for logging).")
    add_device_args(parser)
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    try:
        cfg = resolve_config(args)
    except (ConfigError, OSError, ValueError) as e:
        logger.error("bad config: %s", e)
        return EXIT_FAILED

    data_to_skip = list(cfg.data_to_skip) + list(args.skip or [])
    installer = DefaultTestsZipInstaller(
        *data_to_skip,
        retry_policy=RetryPolicy(
            max_attempts=cfg.delete_max_attempts, delay_s=cfg.delete_retry_delay_s
        ),
    )
    build_info = DeviceBuildInfo(
        build_id=args.build_id,
        test_target="tests",
        build_name=args.tests_dir.name,
        tests_dir=args.tests_dir,
    )

    try:
        controller = build_controller(cfg)
        installer.push_tests_zip_onto_data(controller, build_info)
    except DeviceNotAvailableError as e:
        logger.error("device not available: %s", e)
        return EXIT_DEVICE_NOT_AVAILABLE
    except AndroidControllerError as e:
        logger.error("adb command failed: %s", e)
        return EXIT_FAILED
    except TargetSetupError as e:
        logger.error("setup failed: %s", e)
        return EXIT_FAILED

    print(f"OK: pushed {build_info.data_dir()} onto {controller.serial}")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
