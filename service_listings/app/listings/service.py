"""
Read-through listing service.

Reads go cache first and fall back to the durable store; writes go to the
store and then invalidate every cached view that could include the changed
listing. Cache failures never reach the caller: a failed read is a miss and
a failed write or delete is logged and dropped.
"""

import asyncio
import json
from contextlib import nullcontext
from typing import Any, Dict, List, Mapping, Optional

from shared.errors import AuthorizationError, NotFoundError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..cache.backend import CacheBackend
from ..cache.invalidation import InvalidationCoordinator
from ..persistence.base import ListingStore
from ..query.cache_keys import list_cache_key, owner_cache_key, record_cache_key
from ..query.filters import FilterCriteria, build_filter_criteria
from ..query.pagination import Pagination, SortSpec, resolve_pagination, resolve_sort
from .models import IMMUTABLE_FIELDS, validate_listing_id


DEFAULT_LIST_TTL = 300
DEFAULT_RECORD_TTL = 600
DEFAULT_OWNER_TTL = 180


class ListingService:
    """Cache-first queries and cache-invalidating mutations over listings."""

    def __init__(
        self,
        store: ListingStore,
        cache: CacheBackend,
        invalidator: Optional[InvalidationCoordinator] = None,
        *,
        list_ttl: int = DEFAULT_LIST_TTL,
        record_ttl: int = DEFAULT_RECORD_TTL,
        owner_ttl: int = DEFAULT_OWNER_TTL,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.cache = cache
        self.invalidator = invalidator or InvalidationCoordinator(cache, metrics)
        self.list_ttl = list_ttl
        self.record_ttl = record_ttl
        self.owner_ttl = owner_ttl
        self.metrics = metrics
        self.logger = get_logger("listings.service")

    # Reads

    async def list_listings(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """Filtered, sorted, paginated listings."""
        criteria = build_filter_criteria(params)
        pagination = resolve_pagination(params)
        sort = resolve_sort(params)
        cache_key = list_cache_key(criteria, pagination, sort)

        cached = await self._safe_get("list", cache_key)
        if cached is not None:
            return {**cached, "fromCache": True}

        records, total_count = await self._query_page(criteria, pagination, sort)
        envelope = {
            "success": True,
            "data": records,
            "pagination": pagination.describe(total_count),
            "appliedFilters": {
                **criteria.applied(),
                "sortBy": sort.field,
                "sortOrder": sort.order,
            },
        }

        await self._safe_put(cache_key, envelope, self.list_ttl)
        return envelope

    async def get_listing(self, listing_id: str) -> Dict[str, Any]:
        """Single listing by id."""
        listing_id = validate_listing_id(listing_id)
        cache_key = record_cache_key(listing_id)

        cached = await self._safe_get("record", cache_key)
        if cached is not None:
            return {"success": True, "data": cached, "fromCache": True}

        record = await self.store.find_by_id(listing_id)
        if record is None:
            raise NotFoundError("Listing not found", {"id": listing_id})

        await self._safe_put(cache_key, record, self.record_ttl)
        return {"success": True, "data": record}

    async def list_owner_listings(self, owner_id: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        """Listings created by one owner, sorted and paginated."""
        pagination = resolve_pagination(params)
        sort = resolve_sort(params)
        cache_key = owner_cache_key(owner_id, pagination, sort)

        cached = await self._safe_get("owner", cache_key)
        if cached is not None:
            return {**cached, "fromCache": True}

        records, total_count = await self._query_page(FilterCriteria(), pagination, sort, owner_id=owner_id)
        envelope = {
            "success": True,
            "data": records,
            "pagination": pagination.describe(total_count),
        }

        await self._safe_put(cache_key, envelope, self.owner_ttl)
        return envelope

    async def _query_page(
        self,
        criteria: FilterCriteria,
        pagination: Pagination,
        sort: SortSpec,
        owner_id: Optional[str] = None,
    ):
        timer = nullcontext()
        if self.metrics:
            timer = self.metrics.time_operation("store_query_duration_seconds", operation="page")
        with timer:
            find_task = asyncio.ensure_future(
                self.store.find(criteria, sort, pagination.skip, pagination.limit, owner_id=owner_id)
            )
            count_task = asyncio.ensure_future(self.store.count(criteria, owner_id=owner_id))
            try:
                records, total_count = await asyncio.gather(find_task, count_task)
            except BaseException:
                # One query failed or the request was cancelled; stop the other and reap both
                find_task.cancel()
                count_task.cancel()
                await asyncio.gather(find_task, count_task, return_exceptions=True)
                raise
        return records, total_count

    # Mutations

    async def create_listing(self, owner_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        fields = {name: value for name, value in data.items() if name not in IMMUTABLE_FIELDS}
        record = await self.store.insert(owner_id, fields)
        await self.invalidator.on_created(record["id"], owner_id)
        self.logger.info("Listing created", listing_id=record["id"], owner_id=owner_id)
        return record

    async def update_listing(self, listing_id: str, owner_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        listing_id = validate_listing_id(listing_id)
        await self._require_owned(listing_id, owner_id, "update")

        fields = {name: value for name, value in changes.items() if name not in IMMUTABLE_FIELDS}
        record = await self.store.update_by_id(listing_id, fields)
        if record is None:
            raise NotFoundError("Listing not found", {"id": listing_id})

        await self.invalidator.on_updated(listing_id, owner_id)
        self.logger.info("Listing updated", listing_id=listing_id, fields=sorted(fields))
        return record

    async def delete_listing(self, listing_id: str, owner_id: str) -> None:
        listing_id = validate_listing_id(listing_id)
        await self._require_owned(listing_id, owner_id, "delete")

        if not await self.store.delete_by_id(listing_id):
            raise NotFoundError("Listing not found", {"id": listing_id})

        await self.invalidator.on_deleted(listing_id, owner_id)
        self.logger.info("Listing deleted", listing_id=listing_id)

    async def bulk_delete_listings(self, listing_ids: List[str], owner_id: str) -> int:
        if not listing_ids:
            raise ValidationError("Listing IDs array is required")

        canonical: List[str] = []
        invalid: List[str] = []
        for listing_id in listing_ids:
            try:
                value = validate_listing_id(listing_id)
            except ValidationError:
                invalid.append(listing_id)
                continue
            if value not in canonical:
                canonical.append(value)
        if invalid:
            raise ValidationError("Invalid listing ID format", {"invalidIds": invalid})

        owned = await self.store.find_owned(canonical, owner_id)
        if len(owned) != len(canonical):
            raise AuthorizationError(
                "You can only delete listings you created or some listings were not found"
            )

        deleted = await self.store.delete_many(canonical, owner_id)
        await self.invalidator.on_bulk_deleted(canonical, owner_id)
        self.logger.info("Listings bulk deleted", owner_id=owner_id, deleted=deleted)
        return deleted

    async def _require_owned(self, listing_id: str, owner_id: str, action: str) -> Dict[str, Any]:
        record = await self.store.find_by_id(listing_id)
        if record is None:
            raise NotFoundError("Listing not found", {"id": listing_id})
        if record["ownerId"] != owner_id:
            raise AuthorizationError(f"You can only {action} listings you created")
        return record

    # Cache access

    async def _safe_get(self, namespace: str, key: str) -> Optional[Any]:
        """Cached payload for ``key``; any failure counts as a miss."""
        try:
            raw = await self.cache.get(key)
        except Exception as exc:
            self.logger.warning("Cache read failed; serving from store", key=key, error=str(exc))
            self._count("cache_errors_total", operation="get")
            raw = None

        if raw is not None:
            try:
                payload = json.loads(raw)
            except (TypeError, ValueError):
                self.logger.warning("Discarding undecodable cache entry", key=key)
                payload = None
            if payload is not None:
                self.logger.debug("Cache hit", key=key)
                self._count("cache_hits_total", namespace=namespace)
                return payload

        self._count("cache_misses_total", namespace=namespace)
        return None

    async def _safe_put(self, key: str, payload: Any, ttl: int) -> None:
        try:
            await self.cache.put(key, json.dumps(payload), ttl)
        except Exception as exc:
            self.logger.warning("Cache write failed", key=key, error=str(exc))
            self._count("cache_errors_total", operation="put")

    def _count(self, metric_name: str, **labels) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)
