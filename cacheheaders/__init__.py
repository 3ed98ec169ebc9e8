from cacheheaders._async._engine import AsyncCacheHeadersEngine, AsyncStoreKeyAccessor
from cacheheaders._async._injectors import (
    AsyncDefaultETagInjector,
    AsyncDefaultLastModifiedInjector,
    AsyncETagInjector,
    AsyncLastModifiedInjector,
)
from cacheheaders._async._storages import AsyncBaseStore, AsyncInMemoryStore, AsyncRedisStore, AsyncSQLiteStore
from cacheheaders._core._dates import DateParser, DefaultDateParser, format_http_date, parse_http_date
from cacheheaders._core._entity_tags import parse_entity_tag_list
from cacheheaders._core._expiration import ExpirationHeaders, apply_caching_headers, synthesize_expiration_headers
from cacheheaders._core._generators import ETagGenerator, ResourceContext, StrongETagGenerator, WeakETagGenerator
from cacheheaders._core._headers import Headers
from cacheheaders._core._invalidation import InvalidationRegistry
from cacheheaders._core._keygen import DefaultStoreKeyGenerator, StoreKeyGenerator
from cacheheaders._core._policies import (
    CacheLocation,
    CachePolicy,
    ExpirationOptions,
    MiddlewareOptions,
    PolicyOverride,
    PolicyResolver,
    ValidationOptions,
    resolve_policy,
)
from cacheheaders._core._spec import (
    AnyState,
    HasValidator,
    NotModified,
    NoValidator,
    Outcome,
    Pass,
    PreconditionFailed,
    State,
    create_initial_state,
    evaluate,
)
from cacheheaders._core.models import ETag, ETagStrength, Request, Response, StoreKey, ValidatorValue
from cacheheaders._exceptions import (
    CacheHeadersError,
    ConfigurationError,
    ContractViolationError,
    StoreUnavailableError,
)
from cacheheaders._sync._engine import CacheHeadersEngine, StoreKeyAccessor
from cacheheaders._sync._injectors import (
    DefaultETagInjector,
    DefaultLastModifiedInjector,
    ETagInjector,
    LastModifiedInjector,
)
from cacheheaders._sync._storages import BaseStore, InMemoryStore, RedisStore, SQLiteStore

__version__ = "0.1.0"

__all__ = (
    # Models
    "StoreKey",
    "ETag",
    "ETagStrength",
    "ValidatorValue",
    "Request",
    "Response",
    "Headers",
    # States
    "State",
    "AnyState",
    "Outcome",
    "NoValidator",
    "HasValidator",
    "Pass",
    "NotModified",
    "PreconditionFailed",
    "create_initial_state",
    "evaluate",
    # Policies
    "CacheLocation",
    "CachePolicy",
    "ExpirationOptions",
    "ValidationOptions",
    "PolicyOverride",
    "PolicyResolver",
    "MiddlewareOptions",
    "resolve_policy",
    # Generators
    "StoreKeyGenerator",
    "DefaultStoreKeyGenerator",
    "ResourceContext",
    "ETagGenerator",
    "StrongETagGenerator",
    "WeakETagGenerator",
    # Injectors
    "AsyncETagInjector",
    "AsyncDefaultETagInjector",
    "AsyncLastModifiedInjector",
    "AsyncDefaultLastModifiedInjector",
    "ETagInjector",
    "DefaultETagInjector",
    "LastModifiedInjector",
    "DefaultLastModifiedInjector",
    # Headers
    "DateParser",
    "DefaultDateParser",
    "parse_http_date",
    "format_http_date",
    "parse_entity_tag_list",
    "ExpirationHeaders",
    "synthesize_expiration_headers",
    "apply_caching_headers",
    # Invalidation
    "InvalidationRegistry",
    # Stores
    "AsyncBaseStore",
    "AsyncInMemoryStore",
    "AsyncSQLiteStore",
    "AsyncRedisStore",
    "BaseStore",
    "InMemoryStore",
    "SQLiteStore",
    "RedisStore",
    # Engines
    "AsyncCacheHeadersEngine",
    "AsyncStoreKeyAccessor",
    "CacheHeadersEngine",
    "StoreKeyAccessor",
    # Exceptions
    "CacheHeadersError",
    "ConfigurationError",
    "StoreUnavailableError",
    "ContractViolationError",
)
