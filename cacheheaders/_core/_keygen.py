from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence
from urllib.parse import quote

from cacheheaders._core.models import Request, StoreKey
from cacheheaders._utils import normalize_header_value, normalize_path, normalize_query

# Request headers that never take part in a vary-by-all key.
# The conditional headers must be excluded, otherwise a revalidation
# request would never map to the key of the response it revalidates.
EXCLUDED_FROM_VARY_BY_ALL = frozenset(
    [
        "if-match",
        "if-none-match",
        "if-modified-since",
        "if-unmodified-since",
        "if-range",
        "cache-control",
        "pragma",
        "connection",
        "keep-alive",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "content-length",
    ]
)

# Characters kept readable in each key component. `|` and `%` are always
# percent-encoded, and so is `?` in paths.
PATH_SAFE = "/:@!$&'()*+,;="
HEADER_NAME_SAFE = "!#$&'*+^`"
HEADER_VALUE_SAFE = " !\"#$&'()*+,/:;<=>?@[\\]^`{}~"


def encode_key_path(path: str) -> str:
    """
    Normalize `path` and escape it for use as the first component of a store key.

    Examples:
        >>> encode_key_path("/Employees/42/")
        '/employees/42'
        >>> encode_key_path("/a?b=1")
        '/a%3Fb=1'
    """
    return quote(normalize_path(path), safe=PATH_SAFE)


class StoreKeyGenerator(ABC):
    @abstractmethod
    def generate(self, request: Request, vary: Sequence[str], vary_by_all: bool = False) -> StoreKey:
        raise NotImplementedError()


class DefaultStoreKeyGenerator(StoreKeyGenerator):
    """
    Builds keys of the form `<path>[?<query>][|<header>=<value>...]`.

    The path is normalized with `normalize_path`, the query with
    `normalize_query`, and every vary-by header contributes one component,
    sorted by lower-cased header name. Missing headers contribute an empty
    value, so the number of components only depends on the configuration.
    Paths and header values are percent-encoded where they contain a
    separator, so distinct requests never share a key.

    Examples:
        >>> request = Request("GET", "/Employees/", "b=2&a=1", Headers({"Accept": "application/json"}))
        >>> DefaultStoreKeyGenerator().generate(request, ["Accept", "Accept-Language"])
        StoreKey('/employees?a=1&b=2|accept=application/json|accept-language=')
    """

    def generate(self, request: Request, vary: Sequence[str], vary_by_all: bool = False) -> StoreKey:
        key = encode_key_path(request.path)

        query = normalize_query(request.query)
        if query:
            key += f"?{query}"

        if vary_by_all:
            header_names = {name.lower() for name in request.headers if name.lower() not in EXCLUDED_FROM_VARY_BY_ALL}
        else:
            header_names = {name.lower() for name in vary if name.strip()}

        for header_name in sorted(header_names):
            value = normalize_header_value(request.headers.get_list(header_name))
            key += f"|{quote(header_name, safe=HEADER_NAME_SAFE)}={quote(value, safe=HEADER_VALUE_SAFE)}"

        return StoreKey(key)
