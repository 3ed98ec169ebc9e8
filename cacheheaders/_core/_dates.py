from __future__ import annotations

import calendar
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_tz
from typing import List, Optional

from cacheheaders._core.models import truncate_to_seconds

logger = logging.getLogger("cacheheaders.core.dates")

__all__ = ("DateParser", "DefaultDateParser", "parse_http_date", "format_http_date", "utcnow")


def utcnow() -> datetime:
    return truncate_to_seconds(datetime.now(timezone.utc))


def parse_http_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an HTTP date header value.

    RFC 1123 dates are expected, but the obsolete RFC 850 and asctime
    forms are accepted too (RFC 7231 Section 7.1.1.1). Malformed values
    yield None instead of raising.

    Examples:
        >>> parse_http_date("Sun, 06 Nov 1994 08:49:37 GMT")
        datetime.datetime(1994, 11, 6, 8, 49, 37, tzinfo=datetime.timezone.utc)
        >>> parse_http_date("yesterday") is None
        True
    """
    if not value:
        return None

    try:
        parsed = parsedate_tz(value.strip())
        if parsed is None:
            return None
        timestamp = calendar.timegm(parsed[:6]) - (parsed[9] or 0)
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.debug(f"Ignoring the malformed HTTP date '{value}'.")
        return None


def format_http_date(moment: datetime) -> str:
    """
    Format a datetime as an RFC 1123 date, e.g. `Sun, 06 Nov 1994 08:49:37 GMT`.
    """
    return format_datetime(truncate_to_seconds(moment), usegmt=True)


class DateParser(ABC):
    """
    Reads and writes the date-valued headers the engine cares about.
    """

    @abstractmethod
    def parse(self, value: Optional[str]) -> Optional[datetime]:
        raise NotImplementedError()

    @abstractmethod
    def format(self, moment: datetime) -> str:
        raise NotImplementedError()

    def parse_header(self, values: Optional[List[str]]) -> Optional[datetime]:
        # A date header carrying several values is malformed.
        if not values or len(values) != 1:
            return None
        return self.parse(values[0])


class DefaultDateParser(DateParser):
    def parse(self, value: Optional[str]) -> Optional[datetime]:
        return parse_http_date(value)

    def format(self, moment: datetime) -> str:
        return format_http_date(moment)
