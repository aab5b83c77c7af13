"""
Fast JSON utilities for structured events and ledger metadata.

Uses orjson (3-10x faster than stdlib json). Non-native values such as
Decimal or Enum are stringified.

Usage:
    from gridfleet.core.json_utils import dumps, loads

    log.info(dumps({"event": "order_placed", "wallet": addr}))
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any

import orjson


def _default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if isinstance(obj, BaseException):
        return str(obj)
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


def dumps(obj: Any) -> str:
    """Encode to a compact JSON string."""
    return orjson.dumps(obj, default=_default).decode("utf-8")


def dumps_bytes(obj: Any) -> bytes:
    return orjson.dumps(obj, default=_default)


def loads(s: str | bytes) -> Any:
    return orjson.loads(s)
