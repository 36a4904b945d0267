from __future__ import annotations

import base64
import binascii
from typing import Any

import orjson

from datastore_link.core.errors import InvalidCursor


def _orjson_dumps(obj: Any) -> bytes:
    return orjson.dumps(obj, option=orjson.OPT_SORT_KEYS)


def encode_cursor(offset: int) -> str:
    """Opaque pagination token: base64 of {"offset": n}."""
    if offset < 0:
        raise ValueError("cursor offset must be >= 0")
    return base64.b64encode(_orjson_dumps({"offset": int(offset)})).decode("ascii")


def decode_cursor(token: str | None) -> int:
    if not token:
        return 0
    try:
        info = orjson.loads(base64.b64decode(token, validate=True))
    except (binascii.Error, ValueError, orjson.JSONDecodeError) as e:
        raise InvalidCursor(f"malformed cursor: {token!r}") from e

    offset = info.get("offset") if isinstance(info, dict) else None
    if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
        raise InvalidCursor(f"cursor has no valid offset: {token!r}")
    return offset
