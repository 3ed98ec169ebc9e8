from __future__ import annotations

import logging
import typing as tp
from dataclasses import replace

from typing_extensions import assert_never

from cacheheaders._async._injectors import (
    AsyncDefaultETagInjector,
    AsyncDefaultLastModifiedInjector,
    AsyncETagInjector,
    AsyncLastModifiedInjector,
)
from cacheheaders._async._storages import AsyncBaseStore, AsyncInMemoryStore
from cacheheaders._core._dates import DateParser, DefaultDateParser, utcnow
from cacheheaders._core._expiration import apply_caching_headers
from cacheheaders._core._generators import ResourceContext, ensure_valid_etag, ensure_valid_last_modified
from cacheheaders._core._headers import Headers
from cacheheaders._core._invalidation import InvalidationRegistry
from cacheheaders._core._keygen import DefaultStoreKeyGenerator, StoreKeyGenerator, encode_key_path
from cacheheaders._core._policies import CachePolicy, MiddlewareOptions
from cacheheaders._core._spec import NotModified, Outcome, Pass, PreconditionFailed, evaluate
from cacheheaders._core.models import AsyncCallNext, Request, Response, StoreKey, ValidatorValue
from cacheheaders._exceptions import StoreUnavailableError

logger = logging.getLogger("cacheheaders.engine")

__all__ = ("AsyncCacheHeadersEngine", "AsyncStoreKeyAccessor")

# Methods whose successful responses describe the current state of the target resource
VALIDATOR_GENERATING_METHODS = frozenset(["GET", "HEAD", "PUT", "PATCH"])


class AsyncCacheHeadersEngine:
    """
    Decides conditional requests and produces caching headers.

    The engine is meant to be created once and shared by every request:
    it owns no per-request state. The store, the invalidation registry and
    every generator can be replaced through the constructor.

    Args:
        store: Where validator values are kept. Defaults to AsyncInMemoryStore.
        invalidation_registry: Keys marked stale out of band.
        store_key_generator: Computes the store key of a request.
        etag_injector: Supplies the ETag of a rendered response.
        last_modified_injector: Supplies the Last-Modified of a rendered response.
        date_parser: Parses and formats HTTP dates.
        options: Engine-wide behaviour, see `MiddlewareOptions`.
    """

    def __init__(
        self,
        store: AsyncBaseStore | None = None,
        invalidation_registry: InvalidationRegistry | None = None,
        store_key_generator: StoreKeyGenerator | None = None,
        etag_injector: AsyncETagInjector | None = None,
        last_modified_injector: AsyncLastModifiedInjector | None = None,
        date_parser: DateParser | None = None,
        options: MiddlewareOptions | None = None,
    ) -> None:
        self.store = store if store is not None else AsyncInMemoryStore()
        self.invalidation_registry = (
            invalidation_registry if invalidation_registry is not None else InvalidationRegistry()
        )
        self.store_key_generator = (
            store_key_generator if store_key_generator is not None else DefaultStoreKeyGenerator()
        )
        self.etag_injector = etag_injector if etag_injector is not None else AsyncDefaultETagInjector()
        self.last_modified_injector = (
            last_modified_injector if last_modified_injector is not None else AsyncDefaultLastModifiedInjector()
        )
        self.date_parser = date_parser if date_parser is not None else DefaultDateParser()
        self.options = options if options is not None else MiddlewareOptions()

    def get_store_key(self, request: Request, policy: CachePolicy) -> StoreKey:
        return self.store_key_generator.generate(
            request, policy.validation.vary, vary_by_all=policy.validation.vary_by_all
        )

    async def handle_request(
        self,
        request: Request,
        policy: CachePolicy,
        call_next: AsyncCallNext,
    ) -> Response:
        """
        Answer `request`, calling `call_next` only when it has to be processed in full.
        """
        if policy.ignore:
            return await call_next(request)

        outcome = await self.evaluate_request(request, policy)

        if isinstance(outcome, NotModified):
            return self.not_modified_response(outcome)
        elif isinstance(outcome, PreconditionFailed):
            return self.precondition_failed_response(outcome)
        elif isinstance(outcome, Pass):
            response = await call_next(request)
            return await self.process_response(request, response, policy, outcome)
        else:
            assert_never(outcome)

    async def evaluate_request(self, request: Request, policy: CachePolicy) -> Outcome:
        store_key = self.get_store_key(request, policy)
        validator = await self.get_validator(store_key)
        return evaluate(request, policy, store_key, validator, date_parser=self.date_parser)

    async def get_validator(self, store_key: StoreKey) -> tp.Optional[ValidatorValue]:
        """
        Read the validator for `store_key`, honoring invalidation marks.

        A marked key is evicted and reported as missing; the mark is consumed.
        """
        if self.invalidation_registry.consume(store_key):
            logger.debug(f"The store key '{store_key}' was marked for invalidation, evicting its validator.")
            await self._remove_from_store(store_key)
            return None

        try:
            return await self.store.get(store_key)
        except StoreUnavailableError:
            if self.options.fail_closed:
                raise
            logger.warning(
                f"Could not read the validator for '{store_key}', proceeding as if none was stored.", exc_info=True
            )
            return None

    async def process_response(
        self,
        request: Request,
        response: Response,
        policy: CachePolicy,
        outcome: tp.Optional[Pass] = None,
    ) -> Response:
        """
        Add caching headers to a fully processed response and refresh the stored validator.
        """
        if policy.ignore or response.status_code in self.options.ignored_status_codes:
            logger.debug(
                f"Not generating caching headers for the {request.method} request for '{request.target}' "
                f"since its response status ({response.status_code}) is ignored."
            )
            return response

        store_key = outcome.store_key if outcome is not None else self.get_store_key(request, policy)
        validator: tp.Optional[ValidatorValue] = None

        if policy.expiration.no_store:
            logger.debug(f"Skipping validator generation for '{request.target}' since the policy forbids storing.")
        elif not 200 <= response.status_code < 300:
            logger.debug(f"Not generating validators for '{request.target}' since the response was not successful.")
        elif request.method == "DELETE":
            await self._remove_from_store(store_key)
        elif request.method in VALIDATOR_GENERATING_METHODS:
            validator = await self._refresh_validator(request, response, policy, store_key, outcome)

        headers = response.headers.copy()
        apply_caching_headers(headers, policy, validator, now=utcnow(), date_parser=self.date_parser)
        return replace(response, headers=headers, validator=validator)

    async def _refresh_validator(
        self,
        request: Request,
        response: Response,
        policy: CachePolicy,
        store_key: StoreKey,
        outcome: tp.Optional[Pass],
    ) -> ValidatorValue:
        # A HEAD response has no body to hash; reuse what GET produced.
        if request.method == "HEAD" and outcome is not None and outcome.validator is not None:
            return outcome.validator

        context = ResourceContext(request=request, response=response, store_key=store_key, policy=policy)
        etag = ensure_valid_etag(await self.etag_injector.calculate_etag(context))
        last_modified = ensure_valid_last_modified(await self.last_modified_injector.calculate_last_modified(context))

        if outcome is not None and outcome.validator is not None and outcome.validator.etag == etag:
            # Same representation as before: keep the original modification date
            return outcome.validator

        validator = ValidatorValue(etag=etag, last_modified=last_modified)
        try:
            await self.store.set(store_key, validator)
        except StoreUnavailableError:
            if self.options.fail_closed:
                raise
            logger.warning(f"Could not store the validator for '{store_key}'.", exc_info=True)
        else:
            logger.debug(f"Stored the validator {validator.etag} for '{store_key}'.")
        return validator

    async def _remove_from_store(self, store_key: StoreKey) -> None:
        try:
            await self.store.remove(store_key)
        except StoreUnavailableError:
            if self.options.fail_closed:
                raise
            logger.warning(f"Could not evict the validator for '{store_key}'.", exc_info=True)

    def not_modified_response(self, outcome: NotModified) -> Response:
        headers = Headers()
        apply_caching_headers(headers, outcome.policy, outcome.validator, now=utcnow(), date_parser=self.date_parser)
        return Response(status_code=304, headers=headers, validator=outcome.validator)

    def precondition_failed_response(self, outcome: PreconditionFailed) -> Response:
        return Response(status_code=412, headers=Headers({"Content-Length": "0"}))

    async def aclose(self) -> None:
        await self.store.aclose()


class AsyncStoreKeyAccessor:
    """
    Looks up stored keys, typically to mark them for invalidation.

    Example:
        ```python
        accessor = AsyncStoreKeyAccessor(engine.store)
        keys = [key async for key in accessor.find_by_key_part("/employees")]
        engine.invalidation_registry.mark_for_invalidation(keys)
        ```
    """

    def __init__(self, store: AsyncBaseStore) -> None:
        self.store = store

    def find_by_key_part(self, part: str, ignore_case: bool = True) -> tp.AsyncIterable[StoreKey]:
        return self.store.find_keys_by_part(part, ignore_case)

    def find_by_current_resource_path(self, request: Request) -> tp.AsyncIterable[StoreKey]:
        return self.store.find_keys_by_part(encode_key_path(request.path), ignore_case=True)
