"""
stage_escrow.config — runtime knobs for the local host and the escrow contract.

This module centralizes configuration for the escrow controller. It has NO
third-party deps and is safe to import very early.

Configuration precedence:
  1) Environment variables (STAGE_ESCROW_*)
  2) Hardcoded safe defaults below

Key env vars:
  - STAGE_ESCROW_STAGE_BITS        (int)    default: 8
  - STAGE_ESCROW_ADDRESS_HRP       (str)    default: "anim"
  - STAGE_ESCROW_MAX_KEY_BYTES     (int)    default: 256
  - STAGE_ESCROW_MAX_VALUE_BYTES   (int)    default: 131_072   (128 KiB)
  - STAGE_ESCROW_STATE_FILE        (path)   default: ./stage-escrow.state
  - STAGE_ESCROW_LOG_LEVEL         (str)    default: "INFO"
  - STAGE_ESCROW_LOG_FORMAT        (json|text)

The stage width defaults to 8 bits to stay wire-compatible with deployments
that already store stages as u8; widen it for distributions with more phases.

Usage:
    from stage_escrow.config import load_config
    CFG = load_config()
    CFG.stage_bits
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

# Pagination is part of the query contract, not tunable per deployment.
DEFAULT_LIMIT = 10
MAX_LIMIT = 30

CONTRACT_NAME = "stage-escrow"


# ----------------------------- helpers ---------------------------------------


def _env_int(name: str, default: int, *, min_v: int, max_v: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        v = int(raw, 0)
    except ValueError:
        return default
    if v < min_v:
        return min_v
    if v > max_v:
        return max_v
    return v


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if not raw:
        return default
    return Path(raw).expanduser()


# ------------------------------- config --------------------------------------


@dataclass(frozen=True)
class RuntimeConfig:
    stage_bits: int
    address_hrp: str
    max_storage_key_bytes: int
    max_storage_value_bytes: int
    state_file: Path
    log_level: str

    @property
    def max_stage(self) -> int:
        return (1 << self.stage_bits) - 1

    @property
    def stage_width(self) -> int:
        """Byte width of a stage inside composite storage keys."""
        return (self.stage_bits + 7) // 8

    def as_dict(self) -> Dict[str, Any]:
        return {
            "stage_bits": self.stage_bits,
            "address_hrp": self.address_hrp,
            "max_storage_key_bytes": self.max_storage_key_bytes,
            "max_storage_value_bytes": self.max_storage_value_bytes,
            "state_file": str(self.state_file),
            "log_level": self.log_level,
        }


@lru_cache(maxsize=1)
def load_config() -> RuntimeConfig:
    """
    Build and cache a RuntimeConfig from environment + safe defaults.
    Tests that tweak env vars must call `load_config.cache_clear()`.
    """
    return RuntimeConfig(
        stage_bits=_env_int("STAGE_ESCROW_STAGE_BITS", 8, min_v=1, max_v=64),
        address_hrp=_env_str("STAGE_ESCROW_ADDRESS_HRP", "anim").lower(),
        max_storage_key_bytes=_env_int("STAGE_ESCROW_MAX_KEY_BYTES", 256, min_v=32, max_v=4096),
        max_storage_value_bytes=_env_int(
            "STAGE_ESCROW_MAX_VALUE_BYTES", 131_072, min_v=256, max_v=1_048_576
        ),
        state_file=_env_path("STAGE_ESCROW_STATE_FILE", Path("stage-escrow.state")),
        log_level=_env_str("STAGE_ESCROW_LOG_LEVEL", "INFO").upper(),
    )


__all__ = [
    "DEFAULT_LIMIT",
    "MAX_LIMIT",
    "CONTRACT_NAME",
    "RuntimeConfig",
    "load_config",
]
