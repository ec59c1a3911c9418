"""
address.py — bech32m identities for callers and contracts

Format
------
Address = bech32m( HRP=<configured, default "anim">, data = convertbits(payload, 8->5) )
payload = 20 or 32 raw bytes (account keys hash to 20, contracts derive 32)

The host validates every externally supplied identity through
`validate_address`, which is what the contract's `api.addr_validate` calls.
Validation normalizes to lowercase so equality checks on identities are exact.

Examples
--------
>>> addr = address_from_bytes(b"\\x01" * 20)
>>> validate_address(addr) == addr
True
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Optional

from stage_escrow.config import load_config
from stage_escrow.errors import InvalidAddress
from stage_escrow.utils import bech32 as _b32

PAYLOAD_LENGTHS = (20, 32)


@dataclass(frozen=True)
class AddressRecord:
    hrp: str
    payload: bytes

    def to_string(self) -> str:
        return _b32.bech32_encode(self.hrp, _b32.convertbits(self.payload, 8, 5, True))


def _hrp(hrp: Optional[str]) -> str:
    return hrp or load_config().address_hrp


def address_from_bytes(payload: bytes, *, hrp: Optional[str] = None) -> str:
    """Encode a raw 20/32-byte payload as a bech32m address string."""
    if not isinstance(payload, (bytes, bytearray)) or len(payload) not in PAYLOAD_LENGTHS:
        raise InvalidAddress(payload, "payload must be 20 or 32 bytes")
    return AddressRecord(_hrp(hrp), bytes(payload)).to_string()


def address_from_label(label: str, *, hrp: Optional[str] = None) -> str:
    """
    Deterministic account address derived from a human label (sha3_256, first 20 bytes).
    Used by tooling and tests to name accounts; never by the contract.
    """
    return address_from_bytes(hashlib.sha3_256(label.encode("utf-8")).digest()[:20], hrp=hrp)


def contract_address(code_id: int, instance: int, *, hrp: Optional[str] = None) -> str:
    """Deterministic 32-byte contract address for a (code id, instance counter) pair."""
    seed = b"contract|" + code_id.to_bytes(8, "big") + instance.to_bytes(8, "big")
    return address_from_bytes(hashlib.sha3_256(seed).digest(), hrp=hrp)


def decode_address(addr: str, *, expect_hrp: Optional[str] = None) -> AddressRecord:
    """Parse a bech32m address back to components. Raises InvalidAddress on failure."""
    want = _hrp(expect_hrp)
    try:
        hrp, data5, spec = _b32.bech32_decode(addr)
        payload = bytes(_b32.convertbits(data5, 5, 8, False))
    except _b32.Bech32Error as e:
        raise InvalidAddress(addr, str(e)) from e

    if spec != "bech32m":
        raise InvalidAddress(addr, "addresses must use bech32m")
    if hrp != want:
        raise InvalidAddress(addr, f"HRP mismatch: expected {want!r}, got {hrp!r}")
    if len(payload) not in PAYLOAD_LENGTHS:
        raise InvalidAddress(addr, f"payload length invalid: {len(payload)}")
    return AddressRecord(hrp=hrp, payload=payload)


def validate_address(addr: str, *, expect_hrp: Optional[str] = None) -> str:
    """Return the canonical (lowercase) form of `addr` or raise InvalidAddress."""
    if not isinstance(addr, str) or not addr:
        raise InvalidAddress(addr, "address must be a non-empty string")
    return decode_address(addr, expect_hrp=expect_hrp).to_string()


def short(addr: str, *, keep: int = 6) -> str:
    """Render a short address like anim1q…abcdef (logs/CLI tables)."""
    if len(addr) <= 2 * keep + 3:
        return addr
    return f"{addr[:keep]}…{addr[-keep:]}"


__all__ = [
    "AddressRecord",
    "address_from_bytes",
    "address_from_label",
    "contract_address",
    "decode_address",
    "validate_address",
    "short",
]
