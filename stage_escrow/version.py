"""stage_escrow.version — semantic version of the escrow controller.

Resolution order: env override → installed package metadata → BASE_VERSION.

Environment overrides:
- STAGE_ESCROW_VERSION
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import metadata as importlib_metadata

# Bump when stored record layouts or message shapes change.
BASE_VERSION = "0.1.0"


@lru_cache(maxsize=1)
def compute_version() -> str:
    env = os.getenv("STAGE_ESCROW_VERSION")
    if env:
        return env.strip()
    try:
        return importlib_metadata.version("stage-escrow")
    except importlib_metadata.PackageNotFoundError:
        return BASE_VERSION


__version__ = compute_version()

__all__ = ["BASE_VERSION", "compute_version", "__version__"]
