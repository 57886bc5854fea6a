"""Build artifact metadata (where a build's tests payload lives on the host)."""

from __future__ import annotations

from device_prep.build.build_info import DeviceBuildInfo

__all__ = ["DeviceBuildInfo"]
