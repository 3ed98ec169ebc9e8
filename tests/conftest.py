import sqlite3
from typing import Any, List, Optional

import anysqlite
import pytest

from cacheheaders import CachePolicy, ETag, ETagStrength, Headers, Request, ValidatorValue
from cacheheaders._core._dates import parse_http_date


def create_request(
    method: str = "GET",
    path: str = "/employees",
    query: str = "",
    headers: Optional[dict[str, Any]] = None,
) -> Request:
    """Helper to create a request with common defaults."""
    return Request(method=method, path=path, query=query, headers=Headers(headers or {}))


def create_validator(
    etag: str = "abc123",
    weak: bool = False,
    last_modified: str = "Mon, 01 Jan 2024 00:00:00 GMT",
) -> ValidatorValue:
    moment = parse_http_date(last_modified)
    assert moment is not None
    return ValidatorValue(
        etag=ETag(etag, ETagStrength.WEAK if weak else ETagStrength.STRONG),
        last_modified=moment,
    )


def format_validators_table(rows: List[Any]) -> str:
    """
    Render the rows of the validators table for inline snapshots.
    """
    output_lines = ["TABLE: validators", f"Rows: {len(rows)}"]
    for key, data in rows:
        output_lines.append(f"  {key} = (bytes) {len(data)} bytes")
    return "\n".join(output_lines)


def print_validators_table(conn: sqlite3.Connection) -> str:
    cursor = conn.execute("SELECT key, data FROM validators ORDER BY key")
    return format_validators_table(cursor.fetchall())


async def aprint_validators_table(conn: anysqlite.Connection) -> str:
    cursor = await conn.execute("SELECT key, data FROM validators ORDER BY key")
    return format_validators_table(await cursor.fetchall())


@pytest.fixture
def policy() -> CachePolicy:
    return CachePolicy()
