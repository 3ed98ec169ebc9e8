from __future__ import annotations

import typing as tp
from typing import AsyncIterable, AsyncIterator, Callable, Iterable, Iterator
from urllib.parse import parse_qsl, urlencode

HEADERS_ENCODING = "iso-8859-1"

T = tp.TypeVar("T")


class RestartableAsyncIterable(AsyncIterable[T]):
    """
    An async iterable that starts a fresh iteration every time it is iterated.

    Stores use it to hand out key scans: nothing is fetched until the caller
    starts iterating, and iterating again runs the scan again.
    """

    def __init__(self, factory: Callable[[], AsyncIterator[T]]) -> None:
        self._factory = factory

    def __aiter__(self) -> AsyncIterator[T]:
        return self._factory()


class RestartableIterable(Iterable[T]):
    """
    Sync counterpart of :class:`RestartableAsyncIterable`.
    """

    def __init__(self, factory: Callable[[], Iterator[T]]) -> None:
        self._factory = factory

    def __iter__(self) -> Iterator[T]:
        return self._factory()


def normalize_path(path: str) -> str:
    """
    Normalize a request path for use in a store key.

    Paths are compared case-insensitively, repeated slashes are collapsed
    and the trailing slash is dropped (except for the root).

    Examples:
        >>> normalize_path("/Employees//42/")
        '/employees/42'
        >>> normalize_path("")
        '/'
    """
    segments = [segment for segment in path.split("/") if segment]
    return ("/" + "/".join(segments)).lower()


def normalize_query(query: str) -> str:
    """
    Normalize a query string so that parameter order and name casing do not matter.

    Parameter names are lower-cased, values are kept verbatim, and pairs are
    sorted by name first and value second. Blank values are preserved.

    Examples:
        >>> normalize_query("b=2&A=1")
        'a=1&b=2'
        >>> normalize_query("?page=2&page=1")
        'page=1&page=2'
    """
    query = query.lstrip("?")
    if not query:
        return ""
    pairs = [(name.lower(), value) for name, value in parse_qsl(query, keep_blank_values=True)]
    return urlencode(sorted(pairs))


def normalize_header_value(values: tp.Optional[tp.List[str]]) -> str:
    """
    Normalize all the values of one request header into a single string.

    Comma separated members are split, stripped and sorted case-insensitively,
    so `Accept: b, a` and `Accept: a,b` produce the same component. An absent
    header becomes the empty string.
    """
    if not values:
        return ""
    members = [member.strip() for value in values for member in value.split(",")]
    return ",".join(sorted((member for member in members if member), key=str.lower))
