from __future__ import annotations

import abc
from datetime import datetime

from cacheheaders._core._dates import utcnow
from cacheheaders._core._generators import ETagGenerator, ResourceContext, StrongETagGenerator, WeakETagGenerator
from cacheheaders._core.models import ETag

__all__ = (
    "AsyncETagInjector",
    "AsyncDefaultETagInjector",
    "AsyncLastModifiedInjector",
    "AsyncDefaultLastModifiedInjector",
)


class AsyncETagInjector(abc.ABC):
    """
    Supplies the ETag of a freshly rendered response.

    Replace the default to take tags from the resource itself, for example
    a revision stamp kept in a database.

    Example:
        ```python
        class RevisionETagInjector(AsyncETagInjector):
            async def calculate_etag(self, context: ResourceContext) -> ETag:
                revision = await db.fetch_revision(context.request.path)
                return ETag(f"rev-{revision}")
        ```
    """

    @abc.abstractmethod
    async def calculate_etag(self, context: ResourceContext) -> ETag:
        raise NotImplementedError()


class AsyncDefaultETagInjector(AsyncETagInjector):
    def __init__(
        self,
        strong_generator: ETagGenerator | None = None,
        weak_generator: ETagGenerator | None = None,
    ) -> None:
        self.strong_generator = strong_generator if strong_generator is not None else StrongETagGenerator()
        self.weak_generator = weak_generator if weak_generator is not None else WeakETagGenerator()

    async def calculate_etag(self, context: ResourceContext) -> ETag:
        generator = self.weak_generator if context.policy.validation.weak_etags else self.strong_generator
        return generator.generate(context.store_key, context.response.content)


class AsyncLastModifiedInjector(abc.ABC):
    @abc.abstractmethod
    async def calculate_last_modified(self, context: ResourceContext) -> datetime:
        raise NotImplementedError()


class AsyncDefaultLastModifiedInjector(AsyncLastModifiedInjector):
    """
    Uses the time the response was generated.

    Caveat: without a real modification time, date based validation can
    only tell responses apart when they were generated in different
    seconds. Two different payloads produced within the same second look
    unchanged to `If-Modified-Since`. Resources that know when they last
    changed should provide their own injector.
    """

    async def calculate_last_modified(self, context: ResourceContext) -> datetime:
        return utcnow()
