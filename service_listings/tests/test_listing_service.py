"""
Unit tests for the read-through listing service.
"""

import asyncio
import json
import pytest
from unittest.mock import AsyncMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import (
    AuthorizationError,
    CacheBackendError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from shared.metrics import MetricsCollector
from service_listings.app.cache.backend import MemoryCacheBackend
from service_listings.app.listings.service import ListingService
from service_listings.app.persistence.memory import InMemoryListingStore
from service_listings.app.query.cache_keys import record_cache_key
from service_listings.app.query.filters import FilterCriteria


MISSING_ID = "00000000-0000-4000-8000-000000000000"


def listing_data(**overrides):
    data = {
        "title": "Downtown loft",
        "type": "Apartment",
        "price": 250000.0,
        "state": "Texas",
        "city": "Austin",
        "areaSqFt": 900.0,
        "bedrooms": 2,
        "bathrooms": 1,
        "amenities": "gym|pool",
        "furnished": "Furnished",
        "availableFrom": "2025-01-01",
        "listedBy": "Owner",
        "tags": "downtown",
        "colorTheme": "#ffffff",
        "rating": 4.5,
        "isVerified": True,
        "listingType": "sale",
    }
    data.update(overrides)
    return data


def without_cache_flag(envelope):
    return {key: value for key, value in envelope.items() if key != "fromCache"}


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class UninvalidatableCache(MemoryCacheBackend):
    """Serves reads and writes but fails every delete."""

    async def delete(self, key):
        raise CacheBackendError("delete", "connection reset")

    async def delete_by_prefix(self, prefix):
        raise CacheBackendError("delete_by_prefix", "connection reset")


class StalledCountStore(InMemoryListingStore):
    """Fails every find while count waits indefinitely."""

    def __init__(self):
        super().__init__()
        self.count_cancelled = False

    async def find(self, *args, **kwargs):
        await asyncio.sleep(0)
        raise StoreError("Listing store query failed")

    async def count(self, *args, **kwargs):
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.count_cancelled = True
            raise
        return 0


def failing_cache():
    cache = AsyncMock()
    for name in ("get", "put", "delete", "delete_by_prefix"):
        getattr(cache, name).side_effect = CacheBackendError(name, "connection refused")
    return cache


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryListingStore()


@pytest.fixture
def cache(clock):
    return MemoryCacheBackend(clock=clock)


@pytest.fixture
def metrics():
    return MetricsCollector("listings")


@pytest.fixture
def service(store, cache, metrics):
    return ListingService(store, cache, metrics=metrics)


def counter_value(metrics, name, **labels):
    return metrics.get_metric(name).labels(**labels)._value.get()


class TestListListings:
    """Test cases for filtered list queries."""

    @pytest.mark.asyncio
    async def test_miss_then_hit_returns_same_payload(self, service, metrics):
        await service.create_listing("user-1", listing_data())
        params = {"city": "Austin", "minPrice": "100000"}

        miss = await service.list_listings(params)
        hit = await service.list_listings(params)

        assert "fromCache" not in miss
        assert hit["fromCache"] is True
        assert without_cache_flag(hit) == miss
        assert counter_value(metrics, "cache_misses_total", namespace="list") == 1
        assert counter_value(metrics, "cache_hits_total", namespace="list") == 1

    @pytest.mark.asyncio
    async def test_envelope_shape(self, service):
        await service.create_listing("user-1", listing_data())

        envelope = await service.list_listings({"city": "austin", "sortBy": "price", "sortOrder": "asc"})

        assert envelope["success"] is True
        assert len(envelope["data"]) == 1
        assert envelope["pagination"]["totalCount"] == 1
        assert envelope["appliedFilters"] == {"city": "austin", "sortBy": "price", "sortOrder": "asc"}

    @pytest.mark.asyncio
    async def test_filters_sort_and_paginate(self, service):
        for price in (300000.0, 100000.0, 200000.0):
            await service.create_listing("user-1", listing_data(price=price))
        await service.create_listing("user-1", listing_data(city="Dallas", price=50000.0))

        first = await service.list_listings({"city": "Austin", "sortBy": "price", "sortOrder": "asc", "limit": "2"})
        second = await service.list_listings({
            "city": "Austin", "sortBy": "price", "sortOrder": "asc", "limit": "2", "page": "2"
        })

        assert [record["price"] for record in first["data"]] == [100000.0, 200000.0]
        assert [record["price"] for record in second["data"]] == [300000.0]
        assert first["pagination"]["totalPages"] == 2
        assert first["pagination"]["hasNext"] is True
        assert second["pagination"]["hasPrev"] is True

    @pytest.mark.asyncio
    async def test_created_listing_is_visible_to_cached_query(self, service):
        params = {"city": "Austin", "state": "Texas"}
        before = await service.list_listings(params)
        assert before["pagination"]["totalCount"] == 0
        assert (await service.list_listings(params))["fromCache"] is True

        await service.create_listing("user-1", listing_data())

        after = await service.list_listings(params)
        assert "fromCache" not in after
        assert after["pagination"]["totalCount"] == 1

    @pytest.mark.asyncio
    async def test_cache_outage_serves_from_store(self, store, metrics):
        service = ListingService(store, failing_cache(), metrics=metrics)
        await service.create_listing("user-1", listing_data())

        envelope = await service.list_listings({"city": "Austin"})

        assert envelope["pagination"]["totalCount"] == 1
        assert "fromCache" not in envelope
        assert counter_value(metrics, "cache_errors_total", operation="get") == 1
        assert counter_value(metrics, "cache_errors_total", operation="put") == 1

    @pytest.mark.asyncio
    async def test_write_failure_still_returns_result(self, store):
        cache = AsyncMock()
        cache.get.return_value = None
        cache.put.side_effect = CacheBackendError("put", "timeout")
        service = ListingService(store, cache)
        await store.insert("user-1", listing_data())

        envelope = await service.list_listings({})

        assert envelope["pagination"]["totalCount"] == 1
        cache.put.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_undecodable_entry_counts_as_miss(self, service, cache, store):
        await store.insert("user-1", listing_data())
        await service.list_listings({})
        [key] = cache.keys()
        await cache.put(key, "{not json", 300)

        envelope = await service.list_listings({})

        assert "fromCache" not in envelope
        assert envelope["pagination"]["totalCount"] == 1
        assert json.loads(await cache.get(key)) == envelope

    @pytest.mark.asyncio
    async def test_store_errors_propagate(self, cache):
        store = AsyncMock()
        store.find.side_effect = StoreError("Listing store query failed")
        store.count.return_value = 0
        service = ListingService(store, cache)

        with pytest.raises(StoreError):
            await service.list_listings({})
        assert cache.keys() == []

    @pytest.mark.asyncio
    async def test_failed_find_cancels_pending_count(self, cache):
        store = StalledCountStore()
        service = ListingService(store, cache)

        with pytest.raises(StoreError):
            await service.list_listings({})
        assert store.count_cancelled is True

    @pytest.mark.asyncio
    async def test_query_duration_is_recorded(self, service, metrics):
        await service.list_listings({})
        await service.list_listings({})

        observed = metrics.registry.get_sample_value(
            "store_query_duration_seconds_count", {"operation": "page"}
        )
        assert observed == 1

    @pytest.mark.asyncio
    async def test_staleness_is_bounded_by_ttl(self, store, clock):
        cache = UninvalidatableCache(clock=clock)
        service = ListingService(store, cache, list_ttl=300)
        record = await service.create_listing("user-1", listing_data(price=100000.0))
        params = {"city": "Austin"}
        await service.list_listings(params)

        await service.update_listing(record["id"], "user-1", {"price": 120000.0})

        stale = await service.list_listings(params)
        assert stale["fromCache"] is True
        assert stale["data"][0]["price"] == 100000.0

        clock.advance(300)
        fresh = await service.list_listings(params)
        assert "fromCache" not in fresh
        assert fresh["data"][0]["price"] == 120000.0


class TestGetListing:
    """Test cases for single listing reads."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, service, cache):
        record = await service.create_listing("user-1", listing_data())

        miss = await service.get_listing(record["id"])
        hit = await service.get_listing(record["id"])

        assert miss == {"success": True, "data": record}
        assert hit == {"success": True, "data": record, "fromCache": True}
        assert record_cache_key(record["id"]) in cache.keys()

    @pytest.mark.asyncio
    async def test_malformed_id(self, service):
        with pytest.raises(ValidationError):
            await service.get_listing("not-a-uuid")

    @pytest.mark.asyncio
    async def test_missing_listing(self, service, cache):
        with pytest.raises(NotFoundError):
            await service.get_listing(MISSING_ID)
        assert cache.keys() == []

    @pytest.mark.asyncio
    async def test_id_is_canonicalised(self, service):
        record = await service.create_listing("user-1", listing_data())

        envelope = await service.get_listing(record["id"].upper())

        assert envelope["data"]["id"] == record["id"]

    @pytest.mark.asyncio
    async def test_cache_outage_serves_from_store(self, store, metrics):
        service = ListingService(store, failing_cache(), metrics=metrics)
        record = await store.insert("user-1", listing_data())

        envelope = await service.get_listing(record["id"])

        assert envelope == {"success": True, "data": record}
        assert counter_value(metrics, "cache_errors_total", operation="get") == 1


class TestOwnerListings:
    """Test cases for per-owner listing reads."""

    @pytest.mark.asyncio
    async def test_only_owner_records_are_returned(self, service):
        await service.create_listing("user-1", listing_data(title="mine"))
        await service.create_listing("user-2", listing_data(title="theirs"))

        envelope = await service.list_owner_listings("user-1", {})

        assert [record["title"] for record in envelope["data"]] == ["mine"]
        assert "appliedFilters" not in envelope

    @pytest.mark.asyncio
    async def test_owner_view_refreshes_after_create(self, service):
        await service.create_listing("user-1", listing_data())
        await service.list_owner_listings("user-1", {})
        assert (await service.list_owner_listings("user-1", {}))["fromCache"] is True

        await service.create_listing("user-1", listing_data(title="second"))

        envelope = await service.list_owner_listings("user-1", {})
        assert "fromCache" not in envelope
        assert envelope["pagination"]["totalCount"] == 2

    @pytest.mark.asyncio
    async def test_cache_outage_serves_from_store(self, store, metrics):
        service = ListingService(store, failing_cache(), metrics=metrics)
        await store.insert("user-1", listing_data(title="mine"))
        await store.insert("user-2", listing_data(title="theirs"))

        envelope = await service.list_owner_listings("user-1", {})

        assert [record["title"] for record in envelope["data"]] == ["mine"]
        assert "fromCache" not in envelope
        assert counter_value(metrics, "cache_errors_total", operation="get") == 1


class TestMutations:
    """Test cases for writes."""

    @pytest.mark.asyncio
    async def test_create_assigns_identity(self, service):
        record = await service.create_listing("user-1", listing_data(id="forged", ownerId="someone-else"))

        assert record["ownerId"] == "user-1"
        assert record["id"] != "forged"
        assert record["createdAt"] == record["updatedAt"]

    @pytest.mark.asyncio
    async def test_update_ignores_immutable_fields(self, service):
        record = await service.create_listing("user-1", listing_data())

        updated = await service.update_listing(
            record["id"], "user-1", {"price": 1.0, "ownerId": "user-2", "id": MISSING_ID}
        )

        assert updated["price"] == 1.0
        assert updated["ownerId"] == "user-1"
        assert updated["id"] == record["id"]

    @pytest.mark.asyncio
    async def test_update_refreshes_cached_record(self, service):
        record = await service.create_listing("user-1", listing_data())
        await service.get_listing(record["id"])

        await service.update_listing(record["id"], "user-1", {"title": "Renovated loft"})

        envelope = await service.get_listing(record["id"])
        assert "fromCache" not in envelope
        assert envelope["data"]["title"] == "Renovated loft"

    @pytest.mark.asyncio
    async def test_update_by_other_user_is_rejected(self, service):
        record = await service.create_listing("user-1", listing_data())

        with pytest.raises(AuthorizationError):
            await service.update_listing(record["id"], "user-2", {"price": 1.0})

    @pytest.mark.asyncio
    async def test_update_missing_listing(self, service):
        with pytest.raises(NotFoundError):
            await service.update_listing(MISSING_ID, "user-1", {"price": 1.0})

    @pytest.mark.asyncio
    async def test_delete(self, service):
        record = await service.create_listing("user-1", listing_data())
        await service.get_listing(record["id"])

        await service.delete_listing(record["id"], "user-1")

        with pytest.raises(NotFoundError):
            await service.get_listing(record["id"])

    @pytest.mark.asyncio
    async def test_delete_by_other_user_is_rejected(self, service, store):
        record = await service.create_listing("user-1", listing_data())

        with pytest.raises(AuthorizationError):
            await service.delete_listing(record["id"], "user-2")
        assert await store.find_by_id(record["id"]) is not None

    @pytest.mark.asyncio
    async def test_mutations_succeed_during_cache_outage(self, store):
        service = ListingService(store, failing_cache())

        record = await service.create_listing("user-1", listing_data())
        await service.update_listing(record["id"], "user-1", {"price": 1.0})
        await service.delete_listing(record["id"], "user-1")

        assert await store.find_by_id(record["id"]) is None


class TestBulkDelete:
    """Test cases for bulk deletes."""

    @pytest.mark.asyncio
    async def test_deletes_owned_listings(self, service, store):
        first = await service.create_listing("user-1", listing_data())
        second = await service.create_listing("user-1", listing_data())

        deleted = await service.bulk_delete_listings([first["id"], second["id"], first["id"]], "user-1")

        assert deleted == 2
        assert await store.count(FilterCriteria()) == 0

    @pytest.mark.asyncio
    async def test_empty_input(self, service):
        with pytest.raises(ValidationError):
            await service.bulk_delete_listings([], "user-1")

    @pytest.mark.asyncio
    async def test_invalid_ids_are_reported(self, service):
        record = await service.create_listing("user-1", listing_data())

        with pytest.raises(ValidationError) as exc_info:
            await service.bulk_delete_listings([record["id"], "bad-1", "bad-2"], "user-1")
        assert exc_info.value.details == {"invalidIds": ["bad-1", "bad-2"]}

    @pytest.mark.asyncio
    async def test_foreign_listing_aborts_everything(self, service, store):
        mine = await service.create_listing("user-1", listing_data())
        theirs = await service.create_listing("user-2", listing_data())

        with pytest.raises(AuthorizationError):
            await service.bulk_delete_listings([mine["id"], theirs["id"]], "user-1")
        assert await store.find_by_id(mine["id"]) is not None

    @pytest.mark.asyncio
    async def test_missing_listing_aborts_everything(self, service, store):
        mine = await service.create_listing("user-1", listing_data())

        with pytest.raises(AuthorizationError):
            await service.bulk_delete_listings([mine["id"], MISSING_ID], "user-1")
        assert await store.find_by_id(mine["id"]) is not None