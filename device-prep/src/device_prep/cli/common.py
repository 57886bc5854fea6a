from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

from device_prep.config import DevicePrepConfig, load_config
from device_prep.runtime.android.controller import AndroidController
from device_prep.tools.device_select import detect_single_device_serial

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_DEVICE_NOT_AVAILABLE = 2


def add_device_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML/JSON config file (default: built-in defaults).",
    )
    parser.add_argument(
        "--serial",
        type=str,
        default=None,
        help="adb device serial (default: config, $DEVICE_PREP_SERIAL, or the only device).",
    )
    parser.add_argument(
        "--adb_path",
        type=str,
        default=None,
        help="Path to adb binary (default: config, $DEVICE_PREP_ADB_PATH, or adb).",
    )
    parser.add_argument(
        "--log_level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO).",
    )


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level), format="[%(levelname)s] %(name)s: %(message)s"
    )


def resolve_config(args: argparse.Namespace) -> DevicePrepConfig:
    cfg = load_config(args.config)
    overrides = {}
    if args.adb_path:
        overrides["adb_path"] = args.adb_path
    if args.serial:
        overrides["serial"] = args.serial
    if overrides:
        cfg = replace(cfg, **overrides)
    return cfg


def build_controller(cfg: DevicePrepConfig) -> AndroidController:
    serial: Optional[str] = cfg.serial or detect_single_device_serial(adb_path=cfg.adb_path)
    return AndroidController(
        adb_path=cfg.adb_path,
        serial=serial,
        timeout_s=cfg.adb_timeout_s,
        recovery_wait_ms=cfg.max_wait_for_device_ms,
    )
