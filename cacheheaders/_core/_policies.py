from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field, fields, replace
from typing import Dict, FrozenSet, List, Optional, Tuple

from cacheheaders._exceptions import ConfigurationError
from cacheheaders._utils import normalize_path

logger = logging.getLogger("cacheheaders.core.policies")

__all__ = (
    "CacheLocation",
    "ExpirationOptions",
    "ValidationOptions",
    "CachePolicy",
    "PolicyOverride",
    "MiddlewareOptions",
    "PolicyResolver",
    "resolve_policy",
    "CONDITIONAL_HEADERS",
)

CONDITIONAL_HEADERS: FrozenSet[str] = frozenset(
    ["if-match", "if-none-match", "if-modified-since", "if-unmodified-since"]
)
SERVER_ERROR_STATUS_CODES: FrozenSet[int] = frozenset(range(500, 600))


class CacheLocation(enum.Enum):
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True)
class ExpirationOptions:
    """
    Settings that end up in the `Cache-Control` and `Expires` headers.

    Attributes:
    ----------
    max_age : int | None
        Seconds a response stays fresh (`max-age`). Also drives `Expires`.
        Default: 60
    shared_max_age : int | None
        Freshness lifetime for shared caches (`s-maxage`).
        Default: None (not emitted)
    cache_location : CacheLocation | None
        Emits `public` or `private`. None emits neither.
        Default: CacheLocation.PUBLIC
    no_store : bool
        Emits `no-store` alone and disables validator generation.
    no_transform : bool
        Emits `no-transform`.
    """

    max_age: Optional[int] = 60
    shared_max_age: Optional[int] = None
    cache_location: Optional[CacheLocation] = CacheLocation.PUBLIC
    no_store: bool = False
    no_transform: bool = False

    def __post_init__(self) -> None:
        for name in ("max_age", "shared_max_age"):
            value = getattr(self, name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                raise ConfigurationError(f"`{name}` must be a non-negative integer, got {value!r}.")


@dataclass(frozen=True)
class ValidationOptions:
    """
    Settings that control validators and conditional request handling.

    Attributes:
    ----------
    vary : list[str]
        Request headers that select a representation. They are part of the
        store key and are emitted in the `Vary` header.
        Default: ["Accept", "Accept-Language", "Accept-Encoding"]
    vary_by_all : bool
        Emits `Vary: *` and keys on every request header.
    must_revalidate, proxy_revalidate, no_cache : bool
        Emitted verbatim in `Cache-Control` when set.
    weak_etags : bool
        Generate weak (`W/`) entity-tags instead of strong ones.
    honored_conditions : frozenset[str]
        The conditional request headers that are evaluated; any other
        conditional header is ignored.
        Default: all four of If-Match, If-None-Match, If-Modified-Since
        and If-Unmodified-Since.
    """

    vary: List[str] = field(default_factory=lambda: ["Accept", "Accept-Language", "Accept-Encoding"])
    vary_by_all: bool = False
    must_revalidate: bool = False
    proxy_revalidate: bool = False
    no_cache: bool = False
    weak_etags: bool = False
    honored_conditions: FrozenSet[str] = CONDITIONAL_HEADERS

    def __post_init__(self) -> None:
        honored = frozenset(name.lower() for name in self.honored_conditions)
        unknown = honored - CONDITIONAL_HEADERS
        if unknown:
            raise ConfigurationError(f"Unknown conditional headers: {sorted(unknown)}.")
        object.__setattr__(self, "honored_conditions", honored)


@dataclass(frozen=True)
class CachePolicy:
    """
    The merged configuration applied to one route.
    """

    expiration: ExpirationOptions = field(default_factory=ExpirationOptions)
    validation: ValidationOptions = field(default_factory=ValidationOptions)
    ignore: bool = False


@dataclass(frozen=True)
class PolicyOverride:
    """
    A resource- or action-level override.

    Every field left as None is inherited from the less specific level.
    `public` and `private` are shorthands for `cache_location`; setting
    both, or setting one that disagrees with `cache_location`, is a
    configuration error.
    """

    max_age: Optional[int] = None
    shared_max_age: Optional[int] = None
    cache_location: Optional[CacheLocation] = None
    public: Optional[bool] = None
    private: Optional[bool] = None
    no_store: Optional[bool] = None
    no_transform: Optional[bool] = None
    vary: Optional[List[str]] = None
    vary_by_all: Optional[bool] = None
    must_revalidate: Optional[bool] = None
    proxy_revalidate: Optional[bool] = None
    no_cache: Optional[bool] = None
    weak_etags: Optional[bool] = None
    honored_conditions: Optional[FrozenSet[str]] = None
    ignore: Optional[bool] = None

    def resolved_cache_location(self) -> Optional[CacheLocation]:
        if self.public and self.private:
            raise ConfigurationError("A cache policy cannot be both public and private.")

        location = self.cache_location
        for flag, flagged_location in ((self.public, CacheLocation.PUBLIC), (self.private, CacheLocation.PRIVATE)):
            if not flag:
                continue
            if location is not None and location is not flagged_location:
                raise ConfigurationError(
                    f"`{flagged_location.value}` conflicts with cache_location={location.value!r}."
                )
            location = flagged_location
        return location


_EXPIRATION_FIELDS = tuple(f.name for f in fields(ExpirationOptions))
_VALIDATION_FIELDS = tuple(f.name for f in fields(ValidationOptions))


def resolve_policy(base: CachePolicy, *overrides: Optional[PolicyOverride]) -> CachePolicy:
    """
    Merge overrides into `base`, least specific first.

    A later override wins outright for every field it sets. The cache
    location in particular is replaced, never combined. Conflicts are
    raised here, at resolution time, as `ConfigurationError`.

    Examples:
        >>> resource = PolicyOverride(max_age=300, private=True)
        >>> action = PolicyOverride(public=True)
        >>> policy = resolve_policy(CachePolicy(), resource, action)
        >>> policy.expiration.max_age, policy.expiration.cache_location
        (300, <CacheLocation.PUBLIC: 'public'>)
    """
    policy = base
    for override in overrides:
        if override is None:
            continue

        expiration_changes = {
            name: getattr(override, name)
            for name in _EXPIRATION_FIELDS
            if name != "cache_location" and getattr(override, name) is not None
        }
        location = override.resolved_cache_location()
        if location is not None:
            expiration_changes["cache_location"] = location

        validation_changes = {
            name: getattr(override, name) for name in _VALIDATION_FIELDS if getattr(override, name) is not None
        }

        policy = CachePolicy(
            expiration=replace(policy.expiration, **expiration_changes),
            validation=replace(policy.validation, **validation_changes),
            ignore=override.ignore if override.ignore is not None else policy.ignore,
        )
    return policy


@dataclass(frozen=True)
class MiddlewareOptions:
    """
    Engine-wide behaviour that is not part of a route policy.

    Attributes:
    ----------
    disable_global_header_generation : bool
        When True, only routes with a registered override get caching headers.
    ignored_status_codes : frozenset[int]
        Responses with these statuses get no caching headers and never touch
        the validator store. Default: all 5xx codes.
    fail_closed : bool
        When True, store failures propagate instead of degrading to a cache miss.
    """

    disable_global_header_generation: bool = False
    ignored_status_codes: FrozenSet[int] = SERVER_ERROR_STATUS_CODES
    fail_closed: bool = False


def _path_matches_prefix(path: str, prefix: str) -> bool:
    if prefix == "/":
        return True
    return path == prefix or path.startswith(prefix + "/")


class PolicyResolver:
    """
    Resolves the policy for a route: global, then resource, then action.

    Resources are registered by path prefix, actions by method and exact
    path. The most specific resource is the longest matching prefix. Every
    registration resolves its policy immediately, so conflicting settings
    fail at startup and lookups at request time are dictionary hits.
    """

    def __init__(
        self,
        global_policy: Optional[CachePolicy] = None,
        options: Optional[MiddlewareOptions] = None,
    ) -> None:
        self.global_policy = global_policy if global_policy is not None else CachePolicy()
        self.options = options if options is not None else MiddlewareOptions()
        self._resources: Dict[str, PolicyOverride] = {}
        self._actions: Dict[Tuple[str, str], PolicyOverride] = {}
        self._resolved: Dict[Tuple[str, str], CachePolicy] = {}

    def add_resource(self, path_prefix: str, override: PolicyOverride) -> CachePolicy:
        prefix = normalize_path(path_prefix)
        policy = resolve_policy(self.global_policy, override)
        self._resources[prefix] = override
        # Registered actions under this prefix may now resolve differently
        self._resolved.clear()
        for method, path in self._actions:
            self._resolve_and_cache(method, path)
        logger.debug(f"Registered a resource-level cache policy for '{prefix}'.")
        return policy

    def add_action(self, method: str, path: str, override: PolicyOverride) -> CachePolicy:
        route = (method.upper(), normalize_path(path))
        self._actions[route] = override
        policy = self._resolve_and_cache(*route)
        logger.debug(f"Registered an action-level cache policy for {route[0]} '{route[1]}'.")
        return policy

    def resolve(self, method: str, path: str) -> CachePolicy:
        route = (method.upper(), normalize_path(path))
        cached = self._resolved.get(route)
        if cached is not None:
            return cached
        return self._resolve_and_cache(*route)

    def _resource_override(self, path: str) -> Optional[PolicyOverride]:
        matching = [prefix for prefix in self._resources if _path_matches_prefix(path, prefix)]
        if not matching:
            return None
        return self._resources[max(matching, key=len)]

    def _resolve_and_cache(self, method: str, path: str) -> CachePolicy:
        resource = self._resource_override(path)
        action = self._actions.get((method, path))

        if resource is None and action is None and self.options.disable_global_header_generation:
            policy = replace(self.global_policy, ignore=True)
        else:
            policy = resolve_policy(self.global_policy, resource, action)

        # Unregistered routes are resolved on demand; only cache the explicit ones
        if action is not None:
            self._resolved[(method, path)] = policy
        return policy
