"""
Bech32m primitives for account and contract addresses (anim1…)
==============================================================

BIP-0173/0350 Bech32/Bech32m encode/decode plus the 8↔5 bit conversion
needed to carry raw address payloads.

- Encoding: **Bech32m** (constant 0x2bc830a3) for everything we produce.
- Data: raw payload bytes converted 8→5 bits (no version byte).

Payload shape (length, HRP policy) is enforced by `stage_escrow.utils.address`.

References
----------
BIP-0173: https://github.com/bitcoin/bips/blob/master/bip-0173.mediawiki
BIP-0350: https://github.com/bitcoin/bips/blob/master/bip-0350.mediawiki
"""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

# 32-character alphabet per BIP-0173.
CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
CHARSET_REV = {c: i for i, c in enumerate(CHARSET)}

_BECH32_CONST = 1
_BECH32M_CONST = 0x2BC830A3
_GENERATORS = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)

MAX_LENGTH = 90


class Bech32Error(ValueError):
    pass


def _polymod(values: Sequence[int]) -> int:
    chk = 1
    for v in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ v
        for i in range(5):
            if (top >> i) & 1:
                chk ^= _GENERATORS[i]
    return chk


def _hrp_expand(hrp: str) -> List[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def _create_checksum(hrp: str, data: Sequence[int], bech32m: bool) -> List[int]:
    const = _BECH32M_CONST if bech32m else _BECH32_CONST
    polymod = _polymod(_hrp_expand(hrp) + list(data) + [0, 0, 0, 0, 0, 0]) ^ const
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def _verify_checksum(hrp: str, data: Sequence[int]) -> Tuple[bool, str]:
    """Return (ok, spec); spec is "bech32" or "bech32m" when ok."""
    pm = _polymod(_hrp_expand(hrp) + list(data))
    if pm == _BECH32_CONST:
        return True, "bech32"
    if pm == _BECH32M_CONST:
        return True, "bech32m"
    return False, ""


def bech32_encode(hrp: str, data: Sequence[int], spec: str = "bech32m") -> str:
    """Encode HRP + 5-bit data words into a Bech32/Bech32m string."""
    if not hrp or any((ord(c) < 33 or ord(c) > 126) for c in hrp):
        raise Bech32Error("invalid HRP characters")
    if any(d < 0 or d > 31 for d in data):
        raise Bech32Error("data values must be 5-bit (0..31)")
    if spec not in ("bech32", "bech32m"):
        raise Bech32Error("spec must be 'bech32' or 'bech32m'")

    hrp = hrp.lower()
    checksum = _create_checksum(hrp, data, spec == "bech32m")
    out = hrp + "1" + "".join(CHARSET[d] for d in list(data) + checksum)
    if len(out) > MAX_LENGTH:
        raise Bech32Error("encoded string exceeds bech32 length limit")
    return out


def bech32_decode(bech: str) -> Tuple[str, List[int], str]:
    """
    Decode a Bech32/Bech32m string into (hrp, data, spec).
    Raises Bech32Error on failure.
    """
    if not isinstance(bech, str):
        raise Bech32Error("bech32 input must be str")
    if len(bech) < 8 or len(bech) > MAX_LENGTH:
        raise Bech32Error("bech32 string has invalid length")
    if any(c.isupper() for c in bech) and any(c.islower() for c in bech):
        raise Bech32Error("mixed-case bech32 is invalid")
    bech = bech.lower()

    pos = bech.rfind("1")
    if pos < 1 or pos + 7 > len(bech):
        raise Bech32Error("invalid position of separator '1'")

    hrp = bech[:pos]
    if any((ord(c) < 33 or ord(c) > 126) for c in hrp):
        raise Bech32Error("invalid HRP characters")

    try:
        data = [CHARSET_REV[c] for c in bech[pos + 1 :]]
    except KeyError:
        raise Bech32Error("invalid data character in bech32 string") from None

    ok, spec = _verify_checksum(hrp, data)
    if not ok:
        raise Bech32Error("checksum mismatch")
    return hrp, data[:-6], spec


def convertbits(data: Iterable[int], from_bits: int, to_bits: int, pad: bool = True) -> List[int]:
    """
    General power-of-2 base conversion (BIP-0173 "convertbits").
    If pad=False, leftover bits must be zero (strict mode).
    """
    acc = 0
    bits = 0
    ret: List[int] = []
    maxv = (1 << to_bits) - 1
    max_acc = (1 << (from_bits + to_bits - 1)) - 1

    for value in data:
        if value < 0 or (value >> from_bits):
            raise Bech32Error("invalid value for convertbits")
        acc = ((acc << from_bits) | value) & max_acc
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            ret.append((acc >> bits) & maxv)

    if pad:
        if bits:
            ret.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & maxv) != 0:
        raise Bech32Error("invalid padding")
    return ret


__all__ = [
    "Bech32Error",
    "bech32_encode",
    "bech32_decode",
    "convertbits",
]
