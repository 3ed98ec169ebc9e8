from __future__ import annotations

import logging
import typing as t

from cacheheaders._async._engine import AsyncCacheHeadersEngine
from cacheheaders._async._storages import AsyncBaseStore
from cacheheaders._core._headers import Headers
from cacheheaders._core._policies import CachePolicy, MiddlewareOptions, PolicyResolver
from cacheheaders._core.models import Request, Response
from cacheheaders._utils import HEADERS_ENCODING

logger = logging.getLogger("cacheheaders.asgi")

__all__ = ("ASGICacheHeadersMiddleware",)


class _ASGIScope(t.TypedDict, total=False):
    """ASGI HTTP scope type."""

    type: str
    asgi: dict[str, str]
    http_version: str
    method: str
    scheme: str
    path: str
    query_string: bytes
    root_path: str
    headers: list[tuple[bytes, bytes]]
    server: tuple[str, int | None] | None
    client: tuple[str, int] | None
    state: dict[str, t.Any]
    extensions: dict[str, t.Any]


_Scope = _ASGIScope
_Receive = t.Callable[[], t.Awaitable[dict[str, t.Any]]]
_Send = t.Callable[[dict[str, t.Any]], t.Awaitable[None]]
_ASGIApp = t.Callable[[_Scope, _Receive, _Send], t.Awaitable[None]]


class ASGICacheHeadersMiddleware:
    """
    ASGI middleware that adds caching headers and answers conditional requests.

    Requests whose preconditions can be decided from the stored validator
    are answered with 304 or 412 without calling the wrapped application.
    Every other response is buffered so its ETag can be computed, gets its
    caching headers and is then sent to the client.

    The middleware holds no per-request state: each request gets its own
    closures over `scope` and `receive`.

    Args:
        app: The ASGI application to wrap.
        engine: The engine deciding requests. Defaults to an engine built
            around `store` and `options`.
        store: Where validators are kept when no engine is given.
        resolver: Resolves the policy of each route. Defaults to a resolver
            applying `global_policy` everywhere.
        global_policy: The policy used when no resolver is given.
        options: Engine-wide behaviour when no engine is given.

    Example:
        ```python
        from cacheheaders import PolicyOverride, PolicyResolver
        from cacheheaders.asgi import ASGICacheHeadersMiddleware

        resolver = PolicyResolver()
        resolver.add_resource("/employees", PolicyOverride(max_age=300, private=True))

        app = ASGICacheHeadersMiddleware(app=my_asgi_app, resolver=resolver)
        ```
    """

    def __init__(
        self,
        app: _ASGIApp,
        engine: AsyncCacheHeadersEngine | None = None,
        store: AsyncBaseStore | None = None,
        resolver: PolicyResolver | None = None,
        global_policy: CachePolicy | None = None,
        options: MiddlewareOptions | None = None,
    ) -> None:
        self.app = app
        self.engine = engine if engine is not None else AsyncCacheHeadersEngine(store=store, options=options)
        self.resolver = (
            resolver
            if resolver is not None
            else PolicyResolver(global_policy=global_policy, options=options or self.engine.options)
        )

        logger.info(
            "Initialized ASGICacheHeadersMiddleware with store=%s, fail_closed=%s",
            type(self.engine.store).__name__,
            self.engine.options.fail_closed,
        )

    async def __call__(self, scope: _Scope, receive: _Receive, send: _Send) -> None:
        # Only handle HTTP requests
        if scope["type"] != "http":
            logger.debug("Skipping non-HTTP request: type=%s", scope["type"])
            await self.app(scope, receive, send)
            return

        request = self._asgi_to_internal_request(scope)
        policy = self.resolver.resolve(request.method, request.path)

        logger.debug("Incoming HTTP request: method=%s path=%s", request.method, request.target)

        async def send_request_to_app(request: Request) -> Response:
            """
            Run the wrapped application and buffer its complete response.

            The request body is read by the application straight from `receive`.
            """
            status_code = 200
            response_headers: list[tuple[bytes, bytes]] = []
            response_body_chunks: list[bytes] = []

            async def inner_send(message: dict[str, t.Any]) -> None:
                nonlocal status_code, response_headers
                if message["type"] == "http.response.start":
                    status_code = message["status"]
                    response_headers = message.get("headers", [])
                    logger.debug("Application response started: status=%d", status_code)
                elif message["type"] == "http.response.body":
                    body_chunk = message.get("body", b"")
                    if body_chunk:
                        response_body_chunks.append(body_chunk)

            await self.app(scope, receive, inner_send)

            return Response(
                status_code=status_code,
                headers=Headers.from_raw(response_headers),
                content=b"".join(response_body_chunks),
            )

        try:
            response = await self.engine.handle_request(request, policy, send_request_to_app)
        except Exception as e:
            logger.error(
                "Error processing request: method=%s path=%s error=%s",
                request.method,
                request.target,
                str(e),
                exc_info=True,
            )
            raise

        logger.info(
            "Request processed: method=%s path=%s status=%d",
            request.method,
            request.target,
            response.status_code,
        )
        await self._send_internal_response(response, send)

    def _asgi_to_internal_request(self, scope: _Scope) -> Request:
        return Request(
            method=scope.get("method", "GET"),
            path=scope.get("path", "/"),
            query=scope.get("query_string", b"").decode(HEADERS_ENCODING),
            headers=Headers.from_raw(scope.get("headers", [])),
            # Extensions such as the ASGI state are exposed to injectors
            metadata={"scope": scope},
        )

    async def _send_internal_response(self, response: Response, send: _Send) -> None:
        headers = response.headers.copy()
        # A buffered response is sent in one piece
        headers.pop("transfer-encoding", None)

        await send(
            {
                "type": "http.response.start",
                "status": response.status_code,
                "headers": headers.raw(),
            }
        )
        await send(
            {
                "type": "http.response.body",
                "body": response.content,
                "more_body": False,
            }
        )

    async def aclose(self) -> None:
        """Close the engine and release its store."""
        logger.info("Closing ASGICacheHeadersMiddleware and its store")
        await self.engine.aclose()
