from __future__ import annotations

import abc
import logging
import sqlite3
import typing as tp

try:
    import redis
    from redis.exceptions import RedisError
except ImportError:  # pragma: no cover
    redis = None  # type: ignore

from cacheheaders._core._packing import pack, unpack
from cacheheaders._core.models import StoreKey, ValidatorValue
from cacheheaders._exceptions import StoreUnavailableError
from cacheheaders._synchronization import Lock
from cacheheaders._utils import RestartableIterable

logger = logging.getLogger("cacheheaders.storages")

__all__ = (
    "BaseStore",
    "InMemoryStore",
    "SQLiteStore",
    "RedisStore",
)

# Number of keys fetched per round trip by key scans
SCAN_PAGE_SIZE = 200


def key_part_matches(key: str, part: str, ignore_case: bool) -> bool:
    if ignore_case:
        return part.lower() in key.lower()
    return part in key


class BaseStore(abc.ABC):
    """
    Persists validator values by store key.

    Every operation is atomic on its own; callers never rely on atomicity
    across operations. Backends that talk to an external service raise
    `StoreUnavailableError` when that service fails.
    """

    @abc.abstractmethod
    def get(self, key: StoreKey) -> tp.Optional[ValidatorValue]:
        """
        Retrieve the validator value stored under `key`, or None.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    def set(self, key: StoreKey, value: ValidatorValue) -> None:
        """
        Store `value` under `key`, replacing any previous value as a whole.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    def remove(self, key: StoreKey) -> None:
        """
        Forget the value stored under `key`. Removing a missing key is a no-op.
        """
        raise NotImplementedError()

    def find_keys_by_part(self, part: str, ignore_case: bool = True) -> tp.Iterable[StoreKey]:
        """
        Lazily yield every stored key that contains `part`.

        Nothing is fetched until iteration starts, keys are produced page
        by page, and the returned iterable can be iterated again to run a
        new scan.
        """
        return RestartableIterable(lambda: self._scan_keys(part, ignore_case))

    @abc.abstractmethod
    def _scan_keys(self, part: str, ignore_case: bool) -> tp.Iterator[StoreKey]:
        raise NotImplementedError()

    def close(self) -> None:
        return


class InMemoryStore(BaseStore):
    """
    A process-local store backed by a dictionary.

    Values are immutable, so readers get either the old or the new value of
    a key, never a mix of both.
    """

    def __init__(self) -> None:
        self._values: tp.Dict[StoreKey, ValidatorValue] = {}
        self._lock = Lock()

    def get(self, key: StoreKey) -> tp.Optional[ValidatorValue]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: StoreKey, value: ValidatorValue) -> None:
        with self._lock:
            self._values[key] = value

    def remove(self, key: StoreKey) -> None:
        with self._lock:
            self._values.pop(key, None)

    def _scan_keys(self, part: str, ignore_case: bool) -> tp.Iterator[StoreKey]:
        # The keys already live in memory; copying the references lets
        # writers proceed while the caller consumes the scan.
        with self._lock:
            keys = list(self._values)

        for key in keys:
            if key_part_matches(key, part, ignore_case):
                yield key

    def __len__(self) -> int:
        return len(self._values)


class SQLiteStore(BaseStore):
    """
    A sqlite store.

    :param connection: A connection for sqlite, defaults to None
    :type connection: tp.Optional[sqlite3.Connection], optional
    :param database_path: Where to create the database when no connection is given
    :type database_path: str
    """

    def __init__(
        self,
        connection: tp.Optional[sqlite3.Connection] = None,
        database_path: str = "cacheheaders.sqlite",
    ) -> None:
        self._connection: tp.Optional[sqlite3.Connection] = connection or None
        self._database_path = database_path
        self._setup_lock = Lock()
        self._setup_completed: bool = False
        self._lock = Lock()

    def _setup(self) -> sqlite3.Connection:
        with self._setup_lock:
            try:
                if not self._connection:  # pragma: no cover
                    self._connection = sqlite3.connect(self._database_path, check_same_thread=False)
                if not self._setup_completed:
                    self._connection.execute(
                        "CREATE TABLE IF NOT EXISTS validators(key TEXT PRIMARY KEY, data BLOB NOT NULL)"
                    )
                    self._connection.commit()
                    self._setup_completed = True
            except sqlite3.Error as exc:
                raise StoreUnavailableError("The sqlite validator store could not be initialized.") from exc
        return self._connection

    def get(self, key: StoreKey) -> tp.Optional[ValidatorValue]:
        connection = self._setup()

        with self._lock:
            try:
                cursor = connection.execute("SELECT data FROM validators WHERE key = ?", [str(key)])
                row = cursor.fetchone()
            except sqlite3.Error as exc:
                raise StoreUnavailableError(f"Could not read the validator for '{key}'.") from exc

        if row is None:
            return None
        return unpack(row[0])

    def set(self, key: StoreKey, value: ValidatorValue) -> None:
        connection = self._setup()

        with self._lock:
            try:
                connection.execute(
                    "INSERT INTO validators(key, data) VALUES(?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET data = excluded.data",
                    [str(key), pack(value)],
                )
                connection.commit()
            except sqlite3.Error as exc:
                raise StoreUnavailableError(f"Could not write the validator for '{key}'.") from exc

    def remove(self, key: StoreKey) -> None:
        connection = self._setup()

        with self._lock:
            try:
                connection.execute("DELETE FROM validators WHERE key = ?", [str(key)])
                connection.commit()
            except sqlite3.Error as exc:
                raise StoreUnavailableError(f"Could not remove the validator for '{key}'.") from exc

    def _scan_keys(self, part: str, ignore_case: bool) -> tp.Iterator[StoreKey]:
        connection = self._setup()
        last_key = ""

        # Keyset pagination: each page starts after the last key seen
        while True:
            with self._lock:
                try:
                    cursor = connection.execute(
                        "SELECT key FROM validators WHERE key > ? ORDER BY key LIMIT ?", [last_key, SCAN_PAGE_SIZE]
                    )
                    rows = cursor.fetchall()
                except sqlite3.Error as exc:
                    raise StoreUnavailableError("Could not scan the validator keys.") from exc

            if not rows:
                return

            for (key,) in rows:
                if key_part_matches(key, part, ignore_case):
                    yield StoreKey(key)
            last_key = rows[-1][0]

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()


class RedisStore(BaseStore):
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

    def get(self, key: StoreKey) -> tp.Optional[ValidatorValue]:
        try:
            data = self._client.get(self._redis_key(key))
        except RedisError as exc:
            raise StoreUnavailableError(f"Could not read the validator for '{key}'.") from exc

        if data is None:
            return None
        return unpack(data)

    def set(self, key: StoreKey, value: ValidatorValue) -> None:
        try:
            self._client.set(self._redis_key(key), pack(value), ex=self._ttl)
        except RedisError as exc:
            raise StoreUnavailableError(f"Could not write the validator for '{key}'.") from exc

    def remove(self, key: StoreKey) -> None:
        try:
            self._client.delete(self._redis_key(key))
        except RedisError as exc:
            raise StoreUnavailableError(f"Could not remove the validator for '{key}'.") from exc

    def _scan_keys(self, part: str, ignore_case: bool) -> tp.Iterator[StoreKey]:
        try:
            for raw_key in self._client.scan_iter(match=f"{self._key_prefix}*", count=SCAN_PAGE_SIZE):
                if isinstance(raw_key, bytes):
                    raw_key = raw_key.decode("utf-8")
                key = raw_key[len(self._key_prefix) :]
                if key_part_matches(key, part, ignore_case):
                    yield StoreKey(key)
        except RedisError as exc:
            raise StoreUnavailableError("Could not scan the validator keys.") from exc

    def close(self) -> None:  # pragma: no cover
        self._client.close()
