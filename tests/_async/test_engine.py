from datetime import datetime, timezone

import pytest
from time_machine import travel

from cacheheaders import (
    AsyncETagInjector,
    AsyncLastModifiedInjector,
    CachePolicy,
    ContractViolationError,
    ETag,
    ExpirationOptions,
    Headers,
    InvalidationRegistry,
    MiddlewareOptions,
    NotModified,
    Pass,
    PreconditionFailed,
    Request,
    Response,
    StoreKey,
    StoreUnavailableError,
)
from cacheheaders._async._engine import AsyncCacheHeadersEngine, AsyncStoreKeyAccessor
from cacheheaders._async._storages import AsyncInMemoryStore, AsyncRedisStore
from tests.conftest import create_request, create_validator

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
BODY = b'[{"id": 1, "name": "Ada"}]'


class StaticETagInjector(AsyncETagInjector):
    def __init__(self, etag):
        self.etag = etag

    async def calculate_etag(self, context):
        return self.etag


class StaticLastModifiedInjector(AsyncLastModifiedInjector):
    def __init__(self, moment):
        self.moment = moment

    async def calculate_last_modified(self, context):
        return self.moment


class Revisions:
    """A stand-in for a database of resource revisions."""

    def __init__(self) -> None:
        self.revisions = {"/employees": 7}
        self.queries = 0

    async def fetch_revision(self, path: str) -> int:
        self.queries += 1
        return self.revisions[path]


class RevisionETagInjector(AsyncETagInjector):
    def __init__(self, revisions: Revisions) -> None:
        self.revisions = revisions

    async def calculate_etag(self, context):
        revision = await self.revisions.fetch_revision(context.request.path)
        return ETag(f"rev-{revision}")


class App:
    """Counts calls and answers with a fixed response."""

    def __init__(self, status_code: int = 200, content: bytes = BODY) -> None:
        self.status_code = status_code
        self.content = content
        self.calls = 0

    async def __call__(self, request: Request) -> Response:
        self.calls += 1
        return Response(
            status_code=self.status_code,
            headers=Headers({"Content-Type": "application/json"}),
            content=self.content,
        )


@pytest.mark.anyio
@travel(NOW, tick=False)
async def test_first_request_generates_validators():
    engine = AsyncCacheHeadersEngine()
    app = App()

    response = await engine.handle_request(create_request(), CachePolicy(), app)

    assert app.calls == 1
    assert response.status_code == 200
    assert response.content == BODY
    assert response.headers["etag"] == str(response.validator.etag)
    assert response.headers["last-modified"] == "Mon, 01 Jan 2024 12:00:00 GMT"
    assert response.headers["cache-control"] == "public, max-age=60"
    assert response.headers["expires"] == "Mon, 01 Jan 2024 12:01:00 GMT"
    assert response.headers["vary"] == "Accept, Accept-Language, Accept-Encoding"
    assert await engine.store.get(engine.get_store_key(create_request(), CachePolicy())) == response.validator


@pytest.mark.anyio
async def test_revalidation_with_etag_is_not_modified():
    engine = AsyncCacheHeadersEngine()
    app = App()
    first = await engine.handle_request(create_request(), CachePolicy(), app)

    second = await engine.handle_request(
        create_request(headers={"If-None-Match": first.headers["etag"]}), CachePolicy(), app
    )

    assert app.calls == 1
    assert second.status_code == 304
    assert second.content == b""
    assert second.headers["etag"] == first.headers["etag"]
    assert second.headers["last-modified"] == first.headers["last-modified"]
    assert "cache-control" in second.headers


@pytest.mark.anyio
async def test_revalidation_with_date_is_not_modified():
    engine = AsyncCacheHeadersEngine()
    app = App()
    first = await engine.handle_request(create_request(), CachePolicy(), app)

    second = await engine.handle_request(
        create_request(headers={"If-Modified-Since": first.headers["last-modified"]}), CachePolicy(), app
    )

    assert app.calls == 1
    assert second.status_code == 304


@pytest.mark.anyio
async def test_unchanged_content_keeps_last_modified():
    engine = AsyncCacheHeadersEngine()
    app = App()

    with travel(NOW, tick=False):
        first = await engine.handle_request(create_request(), CachePolicy(), app)
    with travel(datetime(2024, 1, 2, tzinfo=timezone.utc), tick=False):
        second = await engine.handle_request(create_request(), CachePolicy(), app)

    assert app.calls == 2
    assert second.headers["etag"] == first.headers["etag"]
    assert second.headers["last-modified"] == "Mon, 01 Jan 2024 12:00:00 GMT"


@pytest.mark.anyio
async def test_changed_content_replaces_the_validator():
    engine = AsyncCacheHeadersEngine()
    first = await engine.handle_request(create_request(), CachePolicy(), App(content=b"v1"))

    second = await engine.handle_request(
        create_request(headers={"If-None-Match": first.headers["etag"]}), CachePolicy(), App(content=b"v2")
    )

    # The stored validator still matches, so the client copy is current
    assert second.status_code == 304

    store_key = engine.get_store_key(create_request(), CachePolicy())
    await engine.store.set(store_key, create_validator(etag="def456"))
    third = await engine.handle_request(
        create_request(headers={"If-None-Match": first.headers["etag"]}), CachePolicy(), App(content=b"v2")
    )

    assert third.status_code == 200
    assert third.headers["etag"] != first.headers["etag"]


@pytest.mark.anyio
async def test_stale_if_match_is_rejected_without_calling_the_app():
    engine = AsyncCacheHeadersEngine()
    policy = CachePolicy()
    await engine.store.set(engine.get_store_key(create_request(), policy), create_validator(etag="abc123"))
    app = App()

    response = await engine.handle_request(
        create_request(method="PUT", headers={"If-Match": '"def456"'}), policy, app
    )

    assert app.calls == 0
    assert response.status_code == 412
    assert response.content == b""
    assert response.headers["content-length"] == "0"


@pytest.mark.anyio
async def test_if_unmodified_since_rejects_concurrent_update():
    engine = AsyncCacheHeadersEngine()
    policy = CachePolicy()
    await engine.store.set(
        engine.get_store_key(create_request(), policy),
        create_validator(last_modified="Mon, 01 Jan 2024 00:00:10 GMT"),
    )
    app = App()

    response = await engine.handle_request(
        create_request(method="PUT", headers={"If-Unmodified-Since": "Mon, 01 Jan 2024 00:00:00 GMT"}), policy, app
    )

    assert response.status_code == 412
    assert app.calls == 0


@pytest.mark.anyio
async def test_successful_put_refreshes_the_validator():
    engine = AsyncCacheHeadersEngine()
    policy = CachePolicy()
    store_key = engine.get_store_key(create_request(), policy)
    await engine.store.set(store_key, create_validator(etag="abc123"))

    response = await engine.handle_request(
        create_request(method="PUT", headers={"If-Match": '"abc123"'}), policy, App(content=b"updated")
    )

    assert response.status_code == 200
    stored = await engine.store.get(store_key)
    assert stored == response.validator
    assert stored.etag != ETag("abc123")


@pytest.mark.anyio
async def test_delete_evicts_the_validator():
    engine = AsyncCacheHeadersEngine()
    policy = CachePolicy()
    store_key = engine.get_store_key(create_request(), policy)
    await engine.store.set(store_key, create_validator())

    response = await engine.handle_request(create_request(method="DELETE"), policy, App(status_code=204, content=b""))

    assert response.status_code == 204
    assert "etag" not in response.headers
    assert await engine.store.get(store_key) is None


@pytest.mark.anyio
async def test_post_does_not_touch_the_store():
    engine = AsyncCacheHeadersEngine()

    response = await engine.handle_request(create_request(method="POST"), CachePolicy(), App(status_code=201))

    assert "etag" not in response.headers
    assert len(engine.store) == 0


@pytest.mark.anyio
async def test_head_reuses_the_get_validator():
    engine = AsyncCacheHeadersEngine()
    get = await engine.handle_request(create_request(), CachePolicy(), App())

    head = await engine.handle_request(create_request(method="HEAD"), CachePolicy(), App(content=b""))

    assert head.headers["etag"] == get.headers["etag"]


@pytest.mark.anyio
async def test_ignored_status_codes_pass_through():
    engine = AsyncCacheHeadersEngine()

    response = await engine.handle_request(create_request(), CachePolicy(), App(status_code=503))

    assert response.status_code == 503
    assert "cache-control" not in response.headers
    assert "etag" not in response.headers
    assert len(engine.store) == 0


@pytest.mark.anyio
async def test_unsuccessful_responses_get_no_validators():
    engine = AsyncCacheHeadersEngine()

    response = await engine.handle_request(create_request(), CachePolicy(), App(status_code=404))

    assert response.headers["cache-control"] == "public, max-age=60"
    assert "etag" not in response.headers
    assert len(engine.store) == 0


@pytest.mark.anyio
async def test_no_store_policy():
    engine = AsyncCacheHeadersEngine()
    policy = CachePolicy(expiration=ExpirationOptions(no_store=True))

    response = await engine.handle_request(create_request(), policy, App())

    assert response.headers["cache-control"] == "no-store"
    assert "etag" not in response.headers
    assert "expires" not in response.headers
    assert len(engine.store) == 0


@pytest.mark.anyio
async def test_ignored_policy_passes_everything_through():
    engine = AsyncCacheHeadersEngine()
    policy = CachePolicy(ignore=True)
    app = App()

    response = await engine.handle_request(create_request(headers={"If-None-Match": "*"}), policy, app)

    assert app.calls == 1
    assert response.status_code == 200
    assert "cache-control" not in response.headers


@pytest.mark.anyio
async def test_invalidation_mark_is_consumed_once():
    registry = InvalidationRegistry()
    engine = AsyncCacheHeadersEngine(invalidation_registry=registry)
    app = App()
    first = await engine.handle_request(create_request(), CachePolicy(), app)
    store_key = engine.get_store_key(create_request(), CachePolicy())
    revalidation = create_request(headers={"If-None-Match": first.headers["etag"]})

    registry.mark_for_invalidation(store_key)
    second = await engine.handle_request(revalidation, CachePolicy(), app)
    third = await engine.handle_request(revalidation, CachePolicy(), app)

    assert second.status_code == 200
    assert third.status_code == 304
    assert store_key not in registry
    assert app.calls == 2


@pytest.mark.anyio
async def test_store_failure_degrades_to_a_miss(failing_redis_client, caplog):
    engine = AsyncCacheHeadersEngine(store=AsyncRedisStore(client=failing_redis_client))
    app = App()

    with caplog.at_level("WARNING", logger="cacheheaders.engine"):
        response = await engine.handle_request(create_request(headers={"If-None-Match": "*"}), CachePolicy(), app)

    assert app.calls == 1
    assert response.status_code == 200
    assert "etag" in response.headers
    assert any("Could not read the validator" in record.getMessage() for record in caplog.records)


@pytest.mark.anyio
async def test_store_failure_propagates_when_failing_closed(failing_redis_client):
    engine = AsyncCacheHeadersEngine(
        store=AsyncRedisStore(client=failing_redis_client),
        options=MiddlewareOptions(fail_closed=True),
    )

    with pytest.raises(StoreUnavailableError):
        await engine.handle_request(create_request(), CachePolicy(), App())


@pytest.mark.anyio
async def test_invalid_etag_from_injector():
    engine = AsyncCacheHeadersEngine(etag_injector=StaticETagInjector('"quoted"'))

    with pytest.raises(ContractViolationError):
        await engine.handle_request(create_request(), CachePolicy(), App())
    assert len(engine.store) == 0


@pytest.mark.anyio
async def test_naive_last_modified_from_injector():
    engine = AsyncCacheHeadersEngine(last_modified_injector=StaticLastModifiedInjector(datetime(2024, 1, 1)))

    with pytest.raises(ContractViolationError):
        await engine.handle_request(create_request(), CachePolicy(), App())


@pytest.mark.anyio
async def test_custom_injectors():
    engine = AsyncCacheHeadersEngine(
        etag_injector=StaticETagInjector(ETag("rev-7")),
        last_modified_injector=StaticLastModifiedInjector(datetime(2024, 1, 1, 8, 30, 15, 500, tzinfo=timezone.utc)),
    )

    response = await engine.handle_request(create_request(), CachePolicy(), App())

    assert response.headers["etag"] == '"rev-7"'
    assert response.headers["last-modified"] == "Mon, 01 Jan 2024 08:30:15 GMT"


@pytest.mark.anyio
async def test_etag_injector_reads_the_resource_revision():
    revisions = Revisions()
    engine = AsyncCacheHeadersEngine(etag_injector=RevisionETagInjector(revisions))
    app = App()

    first = await engine.handle_request(create_request(), CachePolicy(), app)
    revisions.revisions["/employees"] = 8
    second = await engine.handle_request(create_request(headers={"If-None-Match": '"rev-7"'}), CachePolicy(), app)

    assert first.headers["etag"] == '"rev-7"'
    assert second.status_code == 304
    assert revisions.queries == 1

    third = await engine.handle_request(create_request(method="PUT"), CachePolicy(), app)

    assert third.headers["etag"] == '"rev-8"'
    stored = await engine.store.get(engine.get_store_key(create_request(), CachePolicy()))
    assert stored.etag == ETag("rev-8")


@pytest.mark.anyio
async def test_evaluate_request():
    engine = AsyncCacheHeadersEngine()
    policy = CachePolicy()
    await engine.store.set(engine.get_store_key(create_request(), policy), create_validator())

    assert isinstance(await engine.evaluate_request(create_request(), policy), Pass)
    assert isinstance(
        await engine.evaluate_request(create_request(headers={"If-None-Match": '"abc123"'}), policy), NotModified
    )
    assert isinstance(
        await engine.evaluate_request(create_request(headers={"If-Match": '"def456"'}), policy), PreconditionFailed
    )


@pytest.mark.anyio
async def test_find_by_current_resource_path():
    store = AsyncInMemoryStore()
    engine = AsyncCacheHeadersEngine(store=store)
    app = App()
    for request in [
        create_request(path="/employees", headers={"Accept": "application/json"}),
        create_request(path="/employees", headers={"Accept": "text/html"}),
        create_request(path="/departments"),
    ]:
        await engine.handle_request(request, CachePolicy(), app)

    accessor = AsyncStoreKeyAccessor(store)
    keys = [key async for key in accessor.find_by_current_resource_path(create_request(path="/Employees/"))]
    engine.invalidation_registry.mark_for_invalidation(keys)

    assert len(keys) == 2
    assert all(key.startswith("/employees|") for key in keys)
    assert engine.invalidation_registry.keys_marked_for_invalidation == frozenset(keys)


@pytest.mark.anyio
async def test_find_by_current_resource_path_with_escaped_characters():
    store = AsyncInMemoryStore()
    engine = AsyncCacheHeadersEngine(store=store)
    await engine.handle_request(create_request(path="/reports/q1?draft"), CachePolicy(), App())
    await engine.handle_request(create_request(path="/reports/q1", query="draft"), CachePolicy(), App())

    accessor = AsyncStoreKeyAccessor(store)
    keys = [key async for key in accessor.find_by_current_resource_path(create_request(path="/reports/q1?draft"))]

    assert len(store) == 2
    assert len(keys) == 1
    assert keys[0].startswith("/reports/q1%3Fdraft")


@pytest.mark.anyio
async def test_find_by_key_part():
    store = AsyncInMemoryStore()
    await store.set(StoreKey("/employees|accept=application/json"), create_validator())
    await store.set(StoreKey("/employees|accept=text/html"), create_validator())

    keys = [key async for key in AsyncStoreKeyAccessor(store).find_by_key_part("ACCEPT=TEXT/HTML")]

    assert keys == ["/employees|accept=text/html"]
