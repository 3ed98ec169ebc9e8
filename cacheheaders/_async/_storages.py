from __future__ import annotations

import abc
import logging
import sqlite3
import typing as tp

# unasync: async-only
try:
    import anysqlite
except ImportError:  # pragma: no cover
    anysqlite = None  # type: ignore
# unasync: end

try:
    import redis.asyncio as redis
    from redis.exceptions import RedisError
except ImportError:  # pragma: no cover
    redis = None  # type: ignore

from cacheheaders._core._packing import pack, unpack
from cacheheaders._core.models import StoreKey, ValidatorValue
from cacheheaders._exceptions import StoreUnavailableError
from cacheheaders._synchronization import AsyncLock
from cacheheaders._utils import RestartableAsyncIterable

logger = logging.getLogger("cacheheaders.storages")

__all__ = (
    "AsyncBaseStore",
    "AsyncInMemoryStore",
    "AsyncSQLiteStore",
    "AsyncRedisStore",
)

# Number of keys fetched per round trip by key scans
SCAN_PAGE_SIZE = 200


def key_part_matches(key: str, part: str, ignore_case: bool) -> bool:
    if ignore_case:
        return part.lower() in key.lower()
    return part in key


class AsyncBaseStore(abc.ABC):
    """
    Persists validator values by store key.

    Every operation is atomic on its own; callers never rely on atomicity
    across operations. Backends that talk to an external service raise
    `StoreUnavailableError` when that service fails.
    """

    @abc.abstractmethod
    async def get(self, key: StoreKey) -> tp.Optional[ValidatorValue]:
        """
        Retrieve the validator value stored under `key`, or None.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def set(self, key: StoreKey, value: ValidatorValue) -> None:
        """
        Store `value` under `key`, replacing any previous value as a whole.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def remove(self, key: StoreKey) -> None:
        """
        Forget the value stored under `key`. Removing a missing key is a no-op.
        """
        raise NotImplementedError()

    def find_keys_by_part(self, part: str, ignore_case: bool = True) -> tp.AsyncIterable[StoreKey]:
        """
        Lazily yield every stored key that contains `part`.

        Nothing is fetched until iteration starts, keys are produced page
        by page, and the returned iterable can be iterated again to run a
        new scan.
        """
        return RestartableAsyncIterable(lambda: self._scan_keys(part, ignore_case))

    @abc.abstractmethod
    def _scan_keys(self, part: str, ignore_case: bool) -> tp.AsyncIterator[StoreKey]:
        raise NotImplementedError()

    async def aclose(self) -> None:
        return


class AsyncInMemoryStore(AsyncBaseStore):
    """
    A process-local store backed by a dictionary.

    Values are immutable, so readers get either the old or the new value of
    a key, never a mix of both.
    """

    def __init__(self) -> None:
        self._values: tp.Dict[StoreKey, ValidatorValue] = {}
        self._lock = AsyncLock()

    async def get(self, key: StoreKey) -> tp.Optional[ValidatorValue]:
        async with self._lock:
            return self._values.get(key)

    async def set(self, key: StoreKey, value: ValidatorValue) -> None:
        async with self._lock:
            self._values[key] = value

    async def remove(self, key: StoreKey) -> None:
        async with self._lock:
            self._values.pop(key, None)

    async def _scan_keys(self, part: str, ignore_case: bool) -> tp.AsyncIterator[StoreKey]:
        # The keys already live in memory; copying the references lets
        # writers proceed while the caller consumes the scan.
        async with self._lock:
            keys = list(self._values)

        for key in keys:
            if key_part_matches(key, part, ignore_case):
                yield key

    def __len__(self) -> int:
        return len(self._values)


class AsyncSQLiteStore(AsyncBaseStore):
    """
    A sqlite store.

    :param connection: A connection for sqlite, defaults to None
    :type connection: tp.Optional[anysqlite.Connection], optional
    :param database_path: Where to create the database when no connection is given
    :type database_path: str
    """

    def __init__(
        self,
        connection: tp.Optional[anysqlite.Connection] = None,
        database_path: str = "cacheheaders.sqlite",
    ) -> None:
        # unasync: async-only
        if anysqlite is None:  # pragma: no cover
            raise RuntimeError(
                f"The `{type(self).__name__}` was used, but the required packages were not found. "
                "Check that you have `cacheheaders` installed with the `sqlite` extension as shown.\n"
                "```pip install cacheheaders[sqlite]```"
            )
        # unasync: end

        self._connection: tp.Optional[anysqlite.Connection] = connection or None
        self._database_path = database_path
        self._setup_lock = AsyncLock()
        self._setup_completed: bool = False
        self._lock = AsyncLock()

    async def _setup(self) -> anysqlite.Connection:
        async with self._setup_lock:
            try:
                if not self._connection:  # pragma: no cover
                    self._connection = await anysqlite.connect(self._database_path, check_same_thread=False)
                if not self._setup_completed:
                    await self._connection.execute(
                        "CREATE TABLE IF NOT EXISTS validators(key TEXT PRIMARY KEY, data BLOB NOT NULL)"
                    )
                    await self._connection.commit()
                    self._setup_completed = True
            except sqlite3.Error as exc:
                raise StoreUnavailableError("The sqlite validator store could not be initialized.") from exc
        return self._connection

    async def get(self, key: StoreKey) -> tp.Optional[ValidatorValue]:
        connection = await self._setup()

        async with self._lock:
            try:
                cursor = await connection.execute("SELECT data FROM validators WHERE key = ?", [str(key)])
                row = await cursor.fetchone()
            except sqlite3.Error as exc:
                raise StoreUnavailableError(f"Could not read the validator for '{key}'.") from exc

        if row is None:
            return None
        return unpack(row[0])

    async def set(self, key: StoreKey, value: ValidatorValue) -> None:
        connection = await self._setup()

        async with self._lock:
            try:
                await connection.execute(
                    "INSERT INTO validators(key, data) VALUES(?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET data = excluded.data",
                    [str(key), pack(value)],
                )
                await connection.commit()
            except sqlite3.Error as exc:
                raise StoreUnavailableError(f"Could not write the validator for '{key}'.") from exc

    async def remove(self, key: StoreKey) -> None:
        connection = await self._setup()

        async with self._lock:
            try:
                await connection.execute("DELETE FROM validators WHERE key = ?", [str(key)])
                await connection.commit()
            except sqlite3.Error as exc:
                raise StoreUnavailableError(f"Could not remove the validator for '{key}'.") from exc

    async def _scan_keys(self, part: str, ignore_case: bool) -> tp.AsyncIterator[StoreKey]:
        connection = await self._setup()
        last_key = ""

        # Keyset pagination: each page starts after the last key seen
        while True:
            async with self._lock:
                try:
                    cursor = await connection.execute(
                        "SELECT key FROM validators WHERE key > ? ORDER BY key LIMIT ?", [last_key, SCAN_PAGE_SIZE]
                    )
                    rows = await cursor.fetchall()
                except sqlite3.Error as exc:
                    raise StoreUnavailableError("Could not scan the validator keys.") from exc

            if not rows:
                return

            for (key,) in rows:
                if key_part_matches(key, part, ignore_case):
                    yield StoreKey(key)
            last_key = rows[-1][0]

    async def aclose(self) -> None:
        if self._connection is not None:
            await self._connection.close()


class AsyncRedisStore(AsyncBaseStore):
    """
    A redis store.

    :param client: A client for redis, defaults to None
    :type client: tp.Optional["redis.Redis"], optional
    :param key_prefix: Prepended to every store key to namespace the validators
    :type key_prefix: str
    :param ttl: Seconds after which redis forgets a validator, defaults to None
    :type ttl: tp.Optional[int], optional
    """

    def __init__(
        self,
        client: tp.Optional[redis.Redis] = None,  # type: ignore
        key_prefix: str = "cacheheaders:",
        ttl: tp.Optional[int] = None,
    ) -> None:
        if redis is None:  # pragma: no cover
            raise RuntimeError(
                f"The `{type(self).__name__}` was used, but the required packages were not found. "
                "Check that you have `cacheheaders` installed with the `redis` extension as shown.\n"
                "```pip install cacheheaders[redis]```"
            )

        if client is None:
            self._client = redis.Redis()  # type: ignore
        else:
            self._client = client
        self._key_prefix = key_prefix
        self._ttl = ttl

    def _redis_key(self, key: StoreKey) -> str:
        return f"{self._key_prefix}{key}"

    async def get(self, key: StoreKey) -> tp.Optional[ValidatorValue]:
        try:
            data = await self._client.get(self._redis_key(key))
        except RedisError as exc:
            raise StoreUnavailableError(f"Could not read the validator for '{key}'.") from exc

        if data is None:
            return None
        return unpack(data)

    async def set(self, key: StoreKey, value: ValidatorValue) -> None:
        try:
            await self._client.set(self._redis_key(key), pack(value), ex=self._ttl)
        except RedisError as exc:
            raise StoreUnavailableError(f"Could not write the validator for '{key}'.") from exc

    async def remove(self, key: StoreKey) -> None:
        try:
            await self._client.delete(self._redis_key(key))
        except RedisError as exc:
            raise StoreUnavailableError(f"Could not remove the validator for '{key}'.") from exc

    async def _scan_keys(self, part: str, ignore_case: bool) -> tp.AsyncIterator[StoreKey]:
        try:
            async for raw_key in self._client.scan_iter(match=f"{self._key_prefix}*", count=SCAN_PAGE_SIZE):
                if isinstance(raw_key, bytes):
                    raw_key = raw_key.decode("utf-8")
                key = raw_key[len(self._key_prefix) :]
                if key_part_matches(key, part, ignore_case):
                    yield StoreKey(key)
        except RedisError as exc:
            raise StoreUnavailableError("Could not scan the validator keys.") from exc

    async def aclose(self) -> None:  # pragma: no cover
        await self._client.aclose()
