"""
Listings service: property listings behind a read-through cache.
"""

from typing import Dict, Optional

from fastapi import Depends, Header, Request

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import AuthenticationError
from shared.logging import set_user_context

from .cache.backend import CacheBackend, MemoryCacheBackend, RedisCacheBackend
from .cache.invalidation import InvalidationCoordinator
from .listings.models import BulkDeleteRequest, ListingCreateRequest, ListingUpdateRequest
from .listings.service import ListingService
from .persistence.base import ListingStore
from .persistence.memory import InMemoryListingStore
from .persistence.postgres import PostgreSQLListingStore


API_PREFIX = "/api/v1/properties"


async def require_user(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """Caller identity forwarded by the gateway."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise AuthenticationError("Missing user identity")
    set_user_context(user_id)
    return user_id


class ListingsApiService(BaseService):
    """Listings service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        store: Optional[ListingStore] = None,
        cache: Optional[CacheBackend] = None,
    ):
        super().__init__("listings", 8020, config)

        # Initialize components
        self.store = store or self._build_store()
        self.cache = cache or self._build_cache()
        self.invalidator = InvalidationCoordinator(self.cache, self.metrics)
        self.listings = ListingService(
            self.store,
            self.cache,
            self.invalidator,
            list_ttl=self.config.list_cache_ttl,
            record_ttl=self.config.record_cache_ttl,
            owner_ttl=self.config.owner_cache_ttl,
            metrics=self.metrics,
        )

        self._setup_listings_routes()

    def _build_store(self) -> ListingStore:
        if self.config.storage_backend == "memory":
            return InMemoryListingStore()
        return PostgreSQLListingStore(self.config.postgres_dsn)

    def _build_cache(self) -> CacheBackend:
        if self.config.cache_backend == "memory":
            return MemoryCacheBackend()
        return RedisCacheBackend(
            self.config.redis_url,
            failure_threshold=self.config.cache_failure_threshold,
            recovery_timeout=self.config.cache_recovery_timeout,
            socket_timeout=self.config.cache_socket_timeout,
        )

    def _setup_listings_routes(self):
        """Set up listings-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "listings",
                "message": "Listings Platform - Listings Service",
                "version": "1.0.0",
                "capabilities": ["filtered_queries", "read_through_cache", "cache_invalidation"]
            }

        @self.app.get(API_PREFIX)
        async def list_listings(request: Request):
            """Filtered, sorted, paginated listings."""
            return await self.listings.list_listings(dict(request.query_params))

        # Registered before /{listing_id} so the literal paths win
        @self.app.get(f"{API_PREFIX}/user/my-properties")
        async def list_my_listings(request: Request, user_id: str = Depends(require_user)):
            """Listings created by the caller."""
            return await self.listings.list_owner_listings(user_id, dict(request.query_params))

        @self.app.delete(f"{API_PREFIX}/bulk/delete")
        async def bulk_delete_listings(body: BulkDeleteRequest, user_id: str = Depends(require_user)):
            """Delete several of the caller's listings."""
            deleted = await self.listings.bulk_delete_listings(body.propertyIds, user_id)
            return {
                "success": True,
                "message": f"{deleted} listings deleted successfully",
                "deletedCount": deleted
            }

        @self.app.post(API_PREFIX, status_code=201)
        async def create_listing(body: ListingCreateRequest, user_id: str = Depends(require_user)):
            """Create a listing owned by the caller."""
            record = await self.listings.create_listing(user_id, body.model_dump())
            return {"success": True, "message": "Listing created successfully", "data": record}

        @self.app.get(f"{API_PREFIX}/{{listing_id}}")
        async def get_listing(listing_id: str):
            """Single listing by id."""
            return await self.listings.get_listing(listing_id)

        @self.app.put(f"{API_PREFIX}/{{listing_id}}")
        async def update_listing(
            listing_id: str,
            body: ListingUpdateRequest,
            user_id: str = Depends(require_user)
        ):
            """Update one of the caller's listings."""
            record = await self.listings.update_listing(
                listing_id, user_id, body.model_dump(exclude_unset=True)
            )
            return {"success": True, "message": "Listing updated successfully", "data": record}

        @self.app.delete(f"{API_PREFIX}/{{listing_id}}")
        async def delete_listing(listing_id: str, user_id: str = Depends(require_user)):
            """Delete one of the caller's listings."""
            await self.listings.delete_listing(listing_id, user_id)
            return {"success": True, "message": "Listing deleted successfully"}

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies."""
        dependencies = {}

        try:
            dependencies["store"] = "ok" if await self.store.health_check() else "error"
        except Exception:
            dependencies["store"] = "error"

        # A cache outage degrades latency, not correctness
        try:
            dependencies["cache"] = "ok" if await self.cache.health_check() else "error"
        except Exception:
            dependencies["cache"] = "error"

        return dependencies

    async def start(self):
        """Start service components."""
        await self.store.start()
        await self.cache.start()
        self.logger.info(
            "Listings service started",
            storage_backend=type(self.store).__name__,
            cache_backend=type(self.cache).__name__
        )

    async def stop(self):
        """Stop service components."""
        await self.cache.stop()
        await self.store.stop()
        self.logger.info("Listings service stopped")


def create_app(config: Optional[ServiceConfig] = None):
    """Create the ASGI application."""
    return ListingsApiService(config).app


if __name__ == "__main__":
    service = ListingsApiService()
    service.run()
