"""device-prep configuration: a YAML/JSON file plus environment overrides.

Example `device_prep.yaml`:

    adb_path: /opt/android-sdk/platform-tools/adb
    serial: emulator-5554
    data_to_skip: [misc, media]
    delete_max_attempts: 3
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from jsonschema import Draft202012Validator

from device_prep.runtime.android.instrumentation import DEFAULT_RUNNER_NAME

ENV_ADB_PATH = "DEVICE_PREP_ADB_PATH"
ENV_SERIAL = "DEVICE_PREP_SERIAL"
ENV_ADB_TIMEOUT_S = "DEVICE_PREP_ADB_TIMEOUT_S"

CONFIG_SCHEMA_V1: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "adb_path": {"type": "string", "minLength": 1},
        "serial": {"type": ["string", "null"]},
        "adb_timeout_s": {"type": "number", "exclusiveMinimum": 0},
        "max_wait_for_device_ms": {"type": "integer", "minimum": 0},
        "data_to_skip": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "delete_max_attempts": {"type": "integer", "minimum": 1},
        "delete_retry_delay_s": {"type": "number", "minimum": 0},
        "instrumentation_runner": {"type": "string", "minLength": 1},
    },
}

_CONFIG_VALIDATOR = Draft202012Validator(CONFIG_SCHEMA_V1)


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class DevicePrepConfig:
    adb_path: str = "adb"
    serial: Optional[str] = None
    adb_timeout_s: float = 30.0
    max_wait_for_device_ms: int = 120 * 1000
    data_to_skip: tuple[str, ...] = field(default_factory=tuple)
    delete_max_attempts: int = 3
    delete_retry_delay_s: float = 0.0
    instrumentation_runner: str = DEFAULT_RUNNER_NAME


def _load_mapping(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)

    if path.suffix.lower() in {".yaml", ".yml"}:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    elif path.suffix.lower() == ".json":
        data = json.loads(path.read_text(encoding="utf-8"))
    else:
        raise ValueError(f"Unsupported config file extension: {path}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level config must be a mapping: {path}")
    return data


def validate_config_data(data: Mapping[str, Any], *, where: str) -> None:
    errors = sorted(_CONFIG_VALIDATOR.iter_errors(dict(data)), key=lambda e: list(e.path))
    if errors:
        msgs = []
        for e in errors:
            loc = "/".join(str(p) for p in e.path)
            msgs.append(f"- {where}:{loc}: {e.message}")
        raise ConfigError("\n".join(msgs))


def config_from_mapping(data: Mapping[str, Any], *, where: str = "<config>") -> DevicePrepConfig:
    validate_config_data(data, where=where)
    values = dict(data)
    if "data_to_skip" in values:
        values["data_to_skip"] = tuple(values["data_to_skip"])
    return DevicePrepConfig(**values)


def apply_env_overrides(
    cfg: DevicePrepConfig, environ: Optional[Mapping[str, str]] = None
) -> DevicePrepConfig:
    env = os.environ if environ is None else environ
    updates: Dict[str, Any] = {}
    if env.get(ENV_ADB_PATH):
        updates["adb_path"] = env[ENV_ADB_PATH]
    if env.get(ENV_SERIAL):
        updates["serial"] = env[ENV_SERIAL]
    raw_timeout = env.get(ENV_ADB_TIMEOUT_S)
    if raw_timeout:
        try:
            timeout = float(raw_timeout)
        except ValueError as e:
            raise ConfigError(f"{ENV_ADB_TIMEOUT_S} must be a number: {raw_timeout!r}") from e
        if timeout <= 0:
            raise ConfigError(f"{ENV_ADB_TIMEOUT_S} must be > 0: {raw_timeout!r}")
        updates["adb_timeout_s"] = timeout
    return replace(cfg, **updates) if updates else cfg


def load_config(
    path: Optional[Path] = None, *, environ: Optional[Mapping[str, str]] = None
) -> DevicePrepConfig:
    """Load a config file (defaults when `path` is None), then apply env overrides."""

    if path is None:
        cfg = DevicePrepConfig()
    else:
        path = Path(path)
        cfg = config_from_mapping(_load_mapping(path), where=str(path))
    return apply_env_overrides(cfg, environ)
