"""Host-side helpers for preparing and verifying Android test devices."""

__version__ = "0.1.0"
