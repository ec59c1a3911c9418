"""
stage_escrow — escrow with conditional release, keyed by (target contract, stage).

A depositor locks a fixed amount of the native coin against the stage a
distribution contract currently reports. The deposit goes back to the
depositor either after expiry (admin only) or as soon as the distribution
contract has moved past that stage (anyone may trigger it).

Only re-exports the version here to keep import-time side effects near
zero.
"""

from __future__ import annotations

from .version import __version__


def get_version() -> str:
    """Return the semantic version string for this package."""
    return __version__


__all__ = ["__version__", "get_version"]
