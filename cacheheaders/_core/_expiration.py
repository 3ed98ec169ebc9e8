from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from cacheheaders._core._dates import DateParser, DefaultDateParser, utcnow
from cacheheaders._core._headers import Headers
from cacheheaders._core._policies import CachePolicy, ValidationOptions
from cacheheaders._core.models import ValidatorValue

__all__ = ("ExpirationHeaders", "synthesize_expiration_headers", "vary_header_value", "apply_caching_headers")


@dataclass
class ExpirationHeaders:
    cache_control: List[str] = field(default_factory=list)
    expires: Optional[str] = None

    @property
    def cache_control_value(self) -> Optional[str]:
        return ", ".join(self.cache_control) if self.cache_control else None


def synthesize_expiration_headers(
    policy: CachePolicy,
    now: Optional[datetime] = None,
    date_parser: Optional[DateParser] = None,
) -> ExpirationHeaders:
    """
    Build the `Cache-Control` directives and the `Expires` date for a policy.

    Directive order is stable: location, `max-age`, `s-maxage`, `no-cache`,
    `must-revalidate`, `proxy-revalidate`, `no-transform`. `no-store`
    replaces every other directive and suppresses `Expires`.

    Examples:
        >>> policy = CachePolicy(
        ...     expiration=ExpirationOptions(max_age=0, cache_location=None),
        ...     validation=ValidationOptions(must_revalidate=True),
        ... )
        >>> synthesize_expiration_headers(policy).cache_control_value
        'max-age=0, must-revalidate'
    """
    expiration = policy.expiration
    validation = policy.validation
    date_parser = date_parser if date_parser is not None else DefaultDateParser()

    if expiration.no_store:
        return ExpirationHeaders(cache_control=["no-store"])

    directives: List[str] = []

    if expiration.cache_location is not None:
        directives.append(expiration.cache_location.value)

    if expiration.max_age is not None:
        directives.append(f"max-age={expiration.max_age}")

    if expiration.shared_max_age is not None:
        directives.append(f"s-maxage={expiration.shared_max_age}")

    if validation.no_cache:
        directives.append("no-cache")

    if validation.must_revalidate:
        directives.append("must-revalidate")

    if validation.proxy_revalidate:
        directives.append("proxy-revalidate")

    if expiration.no_transform:
        directives.append("no-transform")

    expires = None
    if expiration.max_age is not None:
        now = now if now is not None else utcnow()
        expires = date_parser.format(now + timedelta(seconds=expiration.max_age))

    return ExpirationHeaders(cache_control=directives, expires=expires)


def vary_header_value(validation: ValidationOptions) -> Optional[str]:
    if validation.vary_by_all:
        return "*"
    names = [name.strip() for name in validation.vary if name.strip()]
    return ", ".join(names) if names else None


def apply_caching_headers(
    headers: Headers,
    policy: CachePolicy,
    validator: Optional[ValidatorValue],
    now: Optional[datetime] = None,
    date_parser: Optional[DateParser] = None,
) -> Headers:
    """
    Write Cache-Control, Expires, Vary, ETag and Last-Modified into `headers`.

    Validator headers are only written when a validator is given and the
    policy does not forbid storing.
    """
    date_parser = date_parser if date_parser is not None else DefaultDateParser()
    expiration_headers = synthesize_expiration_headers(policy, now=now, date_parser=date_parser)

    if expiration_headers.cache_control_value is not None:
        headers["Cache-Control"] = expiration_headers.cache_control_value
    if expiration_headers.expires is not None:
        headers["Expires"] = expiration_headers.expires

    vary = vary_header_value(policy.validation)
    if vary is not None:
        headers["Vary"] = vary

    if validator is not None and not policy.expiration.no_store:
        headers["ETag"] = str(validator.etag)
        headers["Last-Modified"] = date_parser.format(validator.last_modified)

    return headers
