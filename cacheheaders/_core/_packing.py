from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, cast

import msgpack

from cacheheaders._core.models import ETag, ETagStrength, ValidatorValue
from cacheheaders._exceptions import StoreUnavailableError

__all__ = ("pack", "unpack")

# Bumped whenever the packed layout changes; older payloads are rejected.
PACKING_VERSION = 1


def pack(value: ValidatorValue, /) -> bytes:
    return cast(
        bytes,
        msgpack.packb(
            {
                "v": PACKING_VERSION,
                "etag": value.etag.value,
                "weak": value.etag.is_weak,
                "last_modified": int(value.last_modified.timestamp()),
            }
        ),
    )


def unpack(data: bytes, /) -> ValidatorValue:
    try:
        unpacked: Any = msgpack.unpackb(data)
        if not isinstance(unpacked, dict) or unpacked.get("v") != PACKING_VERSION:
            raise ValueError("unknown layout")
        return ValidatorValue(
            etag=ETag(unpacked["etag"], ETagStrength.WEAK if unpacked["weak"] else ETagStrength.STRONG),
            last_modified=datetime.fromtimestamp(unpacked["last_modified"], tz=timezone.utc),
        )
    except (ValueError, KeyError, TypeError, msgpack.UnpackException) as exc:
        raise StoreUnavailableError("A stored validator value could not be decoded.") from exc
