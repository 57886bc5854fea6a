from __future__ import annotations


class TargetSetupError(RuntimeError):
    """A precondition for running tests on the device could not be established."""
