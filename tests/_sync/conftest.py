import fnmatch
from typing import Dict, List, Optional, Tuple

import pytest
from redis.exceptions import ConnectionError


class FakeRedis:
    """
    The subset of the redis client used by the redis store, kept in a dict.

    `scan_calls` records the pages requested by scans. With `fail=True`
    every command raises like a client whose server went away.
    """

    def __init__(self, fail: bool = False) -> None:
        self.data: Dict[str, bytes] = {}
        self.expirations: Dict[str, Optional[int]] = {}
        self.scan_calls: List[Tuple[str, int]] = []
        self.fail = fail
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("Connection refused")

    def get(self, key: str) -> Optional[bytes]:
        self._check()
        return self.data.get(key)

    def set(self, key: str, value: bytes, ex: Optional[int] = None) -> None:
        self._check()
        self.data[key] = value
        self.expirations[key] = ex

    def delete(self, key: str) -> int:
        self._check()
        return 1 if self.data.pop(key, None) is not None else 0

    def scan_iter(self, match: str = "*", count: int = 10):
        self._check()
        self.scan_calls.append((match, count))
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key.encode("utf-8")

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def redis_client() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def failing_redis_client() -> FakeRedis:
    return FakeRedis(fail=True)
