from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from cacheheaders._core._entity_tags import is_etagc
from cacheheaders._core._policies import CachePolicy
from cacheheaders._core.models import ETag, ETagStrength, Request, Response, StoreKey, truncate_to_seconds
from cacheheaders._exceptions import ContractViolationError

__all__ = (
    "ResourceContext",
    "ETagGenerator",
    "StrongETagGenerator",
    "WeakETagGenerator",
    "ensure_valid_etag",
    "ensure_valid_last_modified",
)


@dataclass
class ResourceContext:
    """
    Everything known about a resource once its response has been rendered.
    """

    request: Request
    response: Response
    store_key: StoreKey
    policy: CachePolicy


class ETagGenerator(ABC):
    @abstractmethod
    def generate(self, store_key: StoreKey, content: bytes) -> ETag:
        raise NotImplementedError()


class StrongETagGenerator(ETagGenerator):
    """
    Hashes the store key followed by the response body.

    The result only depends on its inputs, so the same representation gets
    the same tag across processes and restarts. An empty body (HEAD) is
    hashed like any other.
    """

    strength = ETagStrength.STRONG

    def __init__(self, algorithm: str = "md5") -> None:
        self.algorithm = algorithm

    def generate(self, store_key: StoreKey, content: bytes) -> ETag:
        hasher = hashlib.new(self.algorithm)
        hasher.update(store_key.encode("utf-8"))
        hasher.update(content)
        return ETag(hasher.hexdigest(), self.strength)


class WeakETagGenerator(StrongETagGenerator):
    strength = ETagStrength.WEAK


def ensure_valid_etag(etag: object) -> ETag:
    """
    Reject values that would poison the validator store.
    """
    if not isinstance(etag, ETag):
        raise ContractViolationError(f"ETag injectors must return an ETag instance, got {type(etag).__name__}.")
    if not etag.value:
        raise ContractViolationError("ETag injectors must not return an empty ETag.")
    if not all(is_etagc(c) for c in etag.value):
        raise ContractViolationError(f"The ETag value {etag.value!r} contains characters that cannot be sent.")
    return etag


def ensure_valid_last_modified(moment: object) -> datetime:
    if not isinstance(moment, datetime):
        raise ContractViolationError(
            f"Last-Modified injectors must return a datetime instance, got {type(moment).__name__}."
        )
    if moment.tzinfo is None:
        raise ContractViolationError("Last-Modified injectors must return a timezone-aware datetime.")
    return truncate_to_seconds(moment)
