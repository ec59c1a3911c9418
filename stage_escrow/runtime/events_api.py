"""
stage_escrow.runtime.events_api — what a contract call hands back to the host.

A handler returns a `Response`: BankSend instructions the host executes after
the handler succeeds, plus an ordered list of string attributes (the audit
trail shown by the CLI and logged on commit). Attribute keys are
identifier-like and values are stringified on insertion, so a Response is
always JSON-safe.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from stage_escrow.errors import ContextError
from stage_escrow.runtime.bank import BankSend

# Bounds on a single response.
MAX_KEY_LEN = 64
MAX_VALUE_LEN = 4096
MAX_ATTRIBUTES = 64

# Keys must be identifier-like: letters/underscore, then letters/digits/underscore.
_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_key(key: Any) -> str:
    if not isinstance(key, str) or not key:
        raise ContextError("attribute key must be a non-empty str", where="key_type")
    if len(key) > MAX_KEY_LEN:
        raise ContextError("attribute key too long", where="key_length", len=len(key))
    if not _KEY_RE.match(key):
        raise ContextError("attribute key has invalid characters", where="key_grammar", key=key)
    return key


def _check_value(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        s = "0x" + bytes(value).hex()
    elif isinstance(value, bool):
        # bool is a subclass of int, so check it before the generic str().
        s = "true" if value else "false"
    else:
        s = str(value)
    if len(s) > MAX_VALUE_LEN:
        raise ContextError("attribute value too long", where="value_length", len=len(s))
    return s


@dataclass
class Response:
    """
    What a contract handler returns to the host:

        messages:   transfer instructions, executed by the host after the handler
        attributes: ordered (key, value) audit trail, values always str
        data:       optional payload for the caller
    """

    messages: List[BankSend] = field(default_factory=list)
    attributes: List[Tuple[str, str]] = field(default_factory=list)
    data: Optional[Any] = None

    def add_message(self, msg: BankSend) -> "Response":
        self.messages.append(msg)
        return self

    def add_attribute(self, key: str, value: Any) -> "Response":
        if len(self.attributes) >= MAX_ATTRIBUTES:
            raise ContextError("too many attributes", where="attributes_count")
        self.attributes.append((_check_key(key), _check_value(value)))
        return self

    def add_attributes(self, pairs: Iterable[Tuple[str, Any]]) -> "Response":
        for k, v in pairs:
            self.add_attribute(k, v)
        return self

    def attr(self, key: str) -> Optional[str]:
        """First value recorded for `key`, if any."""
        for k, v in self.attributes:
            if k == key:
                return v
        return None

    def attributes_dict(self) -> Dict[str, str]:
        return dict(self.attributes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "messages": [m.to_dict() for m in self.messages],
            "attributes": [{"key": k, "value": v} for k, v in self.attributes],
            "data": self.data,
        }


__all__ = [
    "Response",
    "MAX_KEY_LEN",
    "MAX_VALUE_LEN",
    "MAX_ATTRIBUTES",
]
