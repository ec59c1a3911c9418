"""
stage_escrow.runtime.bank — deterministic native-currency ledger for local runs.

This module provides the host side of native transfers:

- Bank.balance(addr, denom) -> int
- Bank.credit / Bank.debit            # host & test helpers
- Bank.transfer(frm, to, coins)       # debit sender, credit recipient
- Bank.journal()                      # context manager; rolls back on error

Contracts never touch the Bank directly: they return `BankSend` instructions
in their Response and the host executes them inside the same atomic
boundary as the storage writes.

Notes
-----
* Simulation-only ledger. A real chain performs this accounting itself.
* Deterministic: no wall-clock, no randomness, pure arithmetic with explicit caps.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Tuple

from stage_escrow.errors import ContextError, InsufficientFunds
from stage_escrow.runtime.context import Coin

MAX_BALANCE_BITS = 128


@dataclass(frozen=True)
class BankSend:
    """Transfer instruction emitted by a contract: pay `amount` from the contract to `to_address`."""

    to_address: str
    amount: Tuple[Coin, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {"bank_send": {"to_address": self.to_address, "amount": [c.to_dict() for c in self.amount]}}


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ContextError("amount must be int")
    if amount < 0:
        raise ContextError("amount must be non-negative")
    if amount.bit_length() > MAX_BALANCE_BITS:
        raise ContextError(f"amount exceeds {MAX_BALANCE_BITS}-bit limit")


class Bank:
    """Balances per (address, denom). Thread-safe; journaled writes."""

    def __init__(self) -> None:
        self._balances: Dict[Tuple[str, str], int] = {}
        self._lock = threading.RLock()

    # ------------------------------ reads ------------------------------ #

    def balance(self, address: str, denom: str) -> int:
        with self._lock:
            return self._balances.get((address, denom), 0)

    def all_balances(self, address: str) -> List[Coin]:
        with self._lock:
            return [
                Coin(denom, amt)
                for (addr, denom), amt in sorted(self._balances.items())
                if addr == address and amt > 0
            ]

    def snapshot(self) -> Dict[Tuple[str, str], int]:
        with self._lock:
            return dict(self._balances)

    # ------------------------------ writes ----------------------------- #

    def credit(self, address: str, coin: Coin) -> None:
        _check_amount(coin.amount)
        with self._lock:
            key = (address, coin.denom)
            new = self._balances.get(key, 0) + coin.amount
            if new.bit_length() > MAX_BALANCE_BITS:
                raise ContextError("balance overflow")
            self._balances[key] = new

    def debit(self, address: str, coin: Coin) -> None:
        _check_amount(coin.amount)
        with self._lock:
            key = (address, coin.denom)
            cur = self._balances.get(key, 0)
            if coin.amount > cur:
                raise InsufficientFunds(address, coin.denom, coin.amount, cur)
            self._balances[key] = cur - coin.amount

    def transfer(self, frm: str, to: str, amount: Iterable[Coin]) -> None:
        """Move every coin in `amount` from `frm` to `to`; all or nothing."""
        with self.journal():
            for coin in amount:
                if coin.amount == 0:
                    continue
                self.debit(frm, coin)
                self.credit(to, coin)

    @contextmanager
    def journal(self) -> Iterator["Bank"]:
        """Restore every balance touched inside the block if it raises."""
        with self._lock:
            saved = dict(self._balances)
            try:
                yield self
            except BaseException:
                self._balances = saved
                raise

    def load(self, balances: Dict[Tuple[str, str], int]) -> None:
        with self._lock:
            self._balances = {k: int(v) for k, v in balances.items() if v > 0}


__all__ = ["Bank", "BankSend", "MAX_BALANCE_BITS"]
