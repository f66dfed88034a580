# src/chat_sync/utils/normalize.py
"""Convert protocol-shaped values into JSON-storable records."""

from __future__ import annotations

import base64
from collections.abc import Mapping
from decimal import Decimal
from enum import Enum
from numbers import Integral
from typing import Any

_UINT32 = 0xFFFFFFFF
_LONG_KEYS = frozenset({"low", "high"})
_LONG_KEYS_UNSIGNED = frozenset({"low", "high", "unsigned"})


def encode_bytes(value: bytes | bytearray | memoryview) -> str:
    """Return the canonical text form of a byte sequence (standard base64)."""
    return base64.b64encode(bytes(value)).decode("ascii")


def is_long(value: Any) -> bool:
    """Tell whether ``value`` is a split 64-bit integer (``{"low", "high"}``)."""
    if not isinstance(value, Mapping):
        return False
    keys = frozenset(value.keys())
    if keys not in (_LONG_KEYS, _LONG_KEYS_UNSIGNED):
        return False
    return isinstance(value["low"], int) and isinstance(value["high"], int)


def long_to_int(value: Mapping[str, Any]) -> int:
    """Collapse a ``{"low", "high", "unsigned"}`` pair into a Python int."""
    low = value["low"] & _UINT32
    high = value["high"]
    if value.get("unsigned"):
        high &= _UINT32
    return high * (1 << 32) + low


def to_number(value: Any) -> int | float | None:
    """Coerce timestamps and counters of any wire width into a plain number."""
    if value is None:
        return None
    if is_long(value):
        return long_to_int(value)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Integral):
        return int(value)
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (int, float)):
        return value
    return int(value)


def normalize(value: Any) -> Any:
    """Recursively normalize a raw protocol value for storage.

    - byte sequences become base64 text
    - split or platform-specific integers become plain ints
    - enum members become their values
    - ``None`` entries of mappings are dropped
    - mappings and sequences are normalized element-wise

    Anything else passes through unchanged.
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return encode_bytes(value)
    if isinstance(value, bool) or isinstance(value, (str, float)):
        return value
    if isinstance(value, Enum):
        return normalize(value.value)
    if isinstance(value, Integral):
        return int(value)
    if isinstance(value, Decimal):
        return to_number(value)
    if isinstance(value, Mapping):
        if is_long(value):
            return long_to_int(value)
        return {str(k): normalize(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [normalize(item) for item in value]
    return value
