"""Import shim for the src/ layout.

This repo keeps the real package under `device-prep/src/device_prep/`.
When running CLIs directly from the repo root (e.g. `python -m device_prep...`),
Python won't find that path unless PYTHONPATH is set.

This shim extends the package search path to include the src directory.
"""

from __future__ import annotations

from pathlib import Path

_REPO_ROOT = Path(__file__).resolve().parents[1]
_REAL_PKG = _REPO_ROOT / "device-prep" / "src" / "device_prep"
if _REAL_PKG.is_dir():
    __path__.append(str(_REAL_PKG))  # type: ignore[name-defined]

__all__ = [
    "build",
    "cli",
    "config",
    "package_manager",
    "runtime",
    "targetprep",
    "tools",
]
