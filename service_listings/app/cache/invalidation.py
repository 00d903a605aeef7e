"""
Cache invalidation after listing mutations.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .backend import CacheBackend
from ..query.cache_keys import LIST_NAMESPACE, owner_namespace, record_cache_key


@dataclass
class InvalidationReport:
    """Outcome of invalidating the caches touched by one mutated listing."""
    listing_id: str
    owner_id: str
    removed: int = 0
    failed: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failed


class InvalidationCoordinator:
    """Drops every cached view that may include a mutated listing.

    All list entries are dropped on every mutation: a changed record can
    enter or leave any filter/sort/page combination. Each step is attempted
    independently and failures are only logged; if a step fails, the stale
    entries age out with their TTL.
    """

    def __init__(self, cache: CacheBackend, metrics: Optional[MetricsCollector] = None):
        self.cache = cache
        self.metrics = metrics
        self.logger = get_logger("listings.cache.invalidation")

    async def on_created(self, listing_id: str, owner_id: str) -> InvalidationReport:
        return await self._invalidate(listing_id, owner_id, drop_record=False)

    async def on_updated(self, listing_id: str, owner_id: str) -> InvalidationReport:
        return await self._invalidate(listing_id, owner_id, drop_record=True)

    async def on_deleted(self, listing_id: str, owner_id: str) -> InvalidationReport:
        return await self._invalidate(listing_id, owner_id, drop_record=True)

    async def on_bulk_deleted(self, listing_ids: Iterable[str], owner_id: str) -> List[InvalidationReport]:
        return [await self.on_deleted(listing_id, owner_id) for listing_id in listing_ids]

    async def _invalidate(self, listing_id: str, owner_id: str, drop_record: bool) -> InvalidationReport:
        report = InvalidationReport(listing_id=listing_id, owner_id=owner_id)

        await self._step(report, "list", self.cache.delete_by_prefix, LIST_NAMESPACE)
        if drop_record:
            await self._step(report, "record", self.cache.delete, record_cache_key(listing_id))
        await self._step(report, "owner", self.cache.delete_by_prefix, owner_namespace(owner_id))

        if report.succeeded:
            self.logger.info(
                "Invalidated listing caches",
                listing_id=listing_id,
                owner_id=owner_id,
                removed=report.removed
            )
        return report

    async def _step(self, report: InvalidationReport, namespace: str, operation, target: str) -> None:
        try:
            report.removed += await operation(target)
            result = "ok"
        except Exception as exc:
            report.failed.append(namespace)
            result = "error"
            self.logger.error(
                "Cache invalidation step failed; entries expire with their TTL",
                namespace=namespace,
                target=target,
                listing_id=report.listing_id,
                error=str(exc)
            )

        if self.metrics:
            self.metrics.increment_counter("cache_invalidations_total", namespace=namespace, result=result)
