"""
The escrow controller contract: records (`state`), message schema (`msg`)
and entrypoints (`contract`).

`LocalChain(code=stage_escrow.contract.contract)` hosts it in-process.
"""

from __future__ import annotations

from . import contract as contract
from . import msg as msg
from . import state as state

__all__ = ["contract", "msg", "state"]
