from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional

from cacheheaders._core._headers import Headers

SAFE_METHODS = frozenset(["GET", "HEAD"])


class StoreKey(str):
    """
    Canonical identity of one cacheable request variant.

    A store key is an ordinary string, so it can be used as a mapping key,
    persisted as-is by external stores and searched by substring. Keys are
    built by a `StoreKeyGenerator`; constructing one from a raw string is
    only meant for keys read back from a store.
    """

    __slots__ = ()

    def __repr__(self) -> str:
        return f"StoreKey({str.__repr__(self)})"


class ETagStrength(enum.Enum):
    STRONG = "strong"
    WEAK = "weak"


@dataclass(frozen=True)
class ETag:
    """
    An entity-tag, without the surrounding quotes.

    `str(etag)` renders the header form: `"value"` or `W/"value"`.
    """

    value: str
    strength: ETagStrength = ETagStrength.STRONG

    @property
    def is_weak(self) -> bool:
        return self.strength is ETagStrength.WEAK

    def strong_equals(self, other: "ETag") -> bool:
        """
        Strong comparison (RFC 7232 Section 2.3.2): both tags are strong and their values match.
        """
        return not self.is_weak and not other.is_weak and self.value == other.value

    def weak_equals(self, other: "ETag") -> bool:
        """
        Weak comparison (RFC 7232 Section 2.3.2): values match, strength is ignored.
        """
        return self.value == other.value

    def __str__(self) -> str:
        if self.is_weak:
            return f'W/"{self.value}"'
        return f'"{self.value}"'


def truncate_to_seconds(moment: datetime) -> datetime:
    """
    Drop sub-second precision and normalize to UTC.

    HTTP dates are second-granular, so every timestamp that is stored or
    compared goes through here. Naive datetimes are taken to be UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(microsecond=0)


@dataclass(frozen=True)
class ValidatorValue:
    """
    The `(ETag, Last-Modified)` pair stored for a store key.

    Values are immutable and replaced as a unit.
    """

    etag: ETag
    last_modified: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "last_modified", truncate_to_seconds(self.last_modified))


@dataclass
class Request:
    """
    The normalized request descriptor the engine works with.

    `query` is the raw query string without the leading "?".
    """

    method: str
    path: str
    query: str = ""
    headers: Headers = field(default_factory=Headers)
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.method = self.method.upper()

    @property
    def is_safe(self) -> bool:
        return self.method in SAFE_METHODS

    @property
    def target(self) -> str:
        return f"{self.path}?{self.query}" if self.query else self.path


@dataclass
class Response:
    """
    A rendered response: status, headers and the complete body.
    """

    status_code: int
    headers: Headers = field(default_factory=Headers)
    content: bytes = b""
    validator: Optional[ValidatorValue] = None


# Hands a request to the wrapped application and returns its complete response
CallNext = Callable[[Request], Response]
AsyncCallNext = Callable[[Request], Awaitable[Response]]
