"""Batched and cached data operations built on the MCP call primitive."""

import asyncio
import copy
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from acto_mcp.config import get_settings
from acto_mcp.data.cache import ResponseCache, make_key
from acto_mcp.data.filters import any_of
from acto_mcp.rpc.client import McpClient, extract_records
from acto_mcp.rpc.errors import McpClientError, TransportError

logger = structlog.get_logger(__name__)


@dataclass
class BatchItemResult:
    """Outcome of one create in a batch."""

    index: int
    item: dict[str, Any]
    value: Any = None
    error: McpClientError | None = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.error is None


class DataAccess:
    """Cached reads, batched existence checks and bounded bulk creation.

    The read cache has no write-through invalidation: a create or update
    followed by a cached read of the same data can see the old rows until
    the TTL lapses. Pass ``bypass_cache=True`` or call ``invalidate_cache``
    when a read must reflect a write that was just made.
    """

    def __init__(
        self,
        client: McpClient,
        cache_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self.client = client
        self.cache = ResponseCache(
            ttl=cache_ttl if cache_ttl is not None else settings.mcp_cache_ttl,
            clock=clock,
        )
        self._default_concurrency = settings.mcp_batch_concurrency
        self._logger = logger.bind(server=client.name)

    # === Reads ===

    async def read(
        self,
        entity: str,
        options: dict[str, Any] | None = None,
        auth_token: str | None = None,
    ) -> Any:
        """Uncached read. `options` holds read_records arguments (filter, first, ...)."""
        return await self.client.read_records(entity, auth_token=auth_token, **(options or {}))

    async def read_cached(
        self,
        entity: str,
        options: dict[str, Any] | None = None,
        auth_token: str | None = None,
        bypass_cache: bool = False,
    ) -> Any:
        """Read through the short-TTL cache.

        Failures are never cached and propagate unchanged. Callers get their
        own copy of the rows, so mutating a result never changes the cache.
        """
        key = make_key(self._cache_prefix(entity), options, scope=auth_token)
        if not bypass_cache:
            hit, value = self.cache.lookup(key)
            if hit:
                self._logger.debug("cache_hit", entity=entity)
                return copy.deepcopy(value)

        value = await self.read(entity, options, auth_token=auth_token)
        self.cache.set(key, copy.deepcopy(value))
        return value

    def invalidate_cache(self, entity: str | None = None) -> int:
        """Drop cached reads for one entity, or all of them."""
        prefix = f"{self._cache_prefix(entity)}:" if entity else None
        return self.cache.invalidate(prefix)

    @staticmethod
    def _cache_prefix(entity: str | None) -> str:
        return f"read_records/{entity}"

    # === Existence checks ===

    async def batch_check_existing(
        self,
        entity: str,
        field: str,
        values: Iterable[Any],
        id_field: str = "Id",
        auth_token: str | None = None,
    ) -> dict[str, Any]:
        """Look up which values of `field` already exist, in one query.

        Returns a map holding every distinct input value (as a string) exactly
        once, pointing at the matching record's id or None.
        """
        # First-seen original value per string key; numbers stay unquoted in the filter
        originals: dict[str, Any] = {}
        for value in values:
            originals.setdefault(str(value), value)
        if not originals:
            return {}

        found: dict[str, Any] = dict.fromkeys(originals)
        payload = await self.client.read_records(
            entity,
            select=f"{id_field},{field}",
            filter=any_of(field, originals.values()),
            first=len(originals),
            auth_token=auth_token,
        )

        for record in extract_records(payload):
            if record.get(field) is None:
                continue
            key = str(record[field])
            if key in found and found[key] is None:
                found[key] = record.get(id_field)

        self._logger.debug(
            "batch_existence_checked",
            entity=entity,
            field=field,
            checked=len(found),
            existing=sum(1 for v in found.values() if v is not None),
        )
        return found

    # === Bulk creation ===

    async def create_batch(
        self,
        entity: str,
        items: Sequence[dict[str, Any]],
        concurrency: int | None = None,
        auth_token: str | None = None,
        retry_failed: bool = False,
    ) -> list[BatchItemResult]:
        """Create records in waves of at most `concurrency` concurrent calls.

        Each wave finishes before the next starts. Results come back in input
        order. With `retry_failed`, an item whose create hit a transport error
        is sent one more time.
        """
        if concurrency is None:
            concurrency = self._default_concurrency
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        results: list[BatchItemResult] = []
        for start in range(0, len(items), concurrency):
            window = items[start:start + concurrency]
            results.extend(
                await asyncio.gather(
                    *(
                        self._create_one(entity, start + offset, item, auth_token, retry_failed)
                        for offset, item in enumerate(window)
                    )
                )
            )

        self._logger.info(
            "batch_created",
            entity=entity,
            total=len(results),
            failed=sum(1 for r in results if not r.ok),
            concurrency=concurrency,
        )
        return results

    async def _create_one(
        self,
        entity: str,
        index: int,
        item: dict[str, Any],
        auth_token: str | None,
        retry_failed: bool,
    ) -> BatchItemResult:
        try:
            value = await self.client.create_record(entity, item, auth_token=auth_token)
            return BatchItemResult(index=index, item=item, value=value)
        except TransportError as e:
            if not retry_failed:
                return BatchItemResult(index=index, item=item, error=e)
            self._logger.warning("batch_item_retry", entity=entity, index=index, error=str(e))
        except McpClientError as e:
            return BatchItemResult(index=index, item=item, error=e)

        try:
            value = await self.client.create_record(entity, item, auth_token=auth_token)
            return BatchItemResult(index=index, item=item, value=value, attempts=2)
        except McpClientError as e:
            return BatchItemResult(index=index, item=item, error=e, attempts=2)
