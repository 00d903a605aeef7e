"""
PostgreSQL persistence layer for the Listings Service.
"""

import uuid
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from shared.errors import StoreError
from shared.logging import get_logger
from ..listings.models import LISTING_COLUMNS, SORT_COLUMNS
from ..query.filters import (
    BooleanFilter,
    DateFilter,
    DateRangeFilter,
    ExactFilter,
    FilterCriteria,
    RangeFilter,
    TextFilter,
)
from ..query.pagination import SortSpec


STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so user text only ever matches literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_where_clause(
    criteria: FilterCriteria,
    owner_id: Optional[str] = None,
    first_param: int = 1,
) -> Tuple[str, List[Any]]:
    """Render criteria as a parameterized WHERE clause.

    Returns the clause (empty when there is nothing to filter on) and its
    positional arguments, numbered from ``first_param``.
    """
    conditions: List[str] = []
    args: List[Any] = []

    def param(value: Any) -> str:
        args.append(value)
        return f"${first_param + len(args) - 1}"

    if owner_id is not None:
        conditions.append(f"owner_id = {param(owner_id)}")

    for item in criteria:
        column = LISTING_COLUMNS[item.dimension]
        if isinstance(item, TextFilter):
            conditions.append(f"{column} ILIKE {param('%' + escape_like(item.value) + '%')}")
        elif isinstance(item, (ExactFilter, BooleanFilter, DateFilter)):
            conditions.append(f"{column} = {param(item.value)}")
        elif isinstance(item, RangeFilter):
            if item.minimum is not None:
                conditions.append(f"{column} >= {param(item.minimum)}")
            if item.maximum is not None:
                conditions.append(f"{column} <= {param(item.maximum)}")
        elif isinstance(item, DateRangeFilter):
            if item.start is not None:
                conditions.append(f"{column} >= {param(item.start)}")
            if item.end is not None:
                conditions.append(f"{column} <= {param(item.end)}")
        else:
            raise TypeError(f"Unsupported filter type: {type(item).__name__}")

    if not conditions:
        return "", args
    return "WHERE " + " AND ".join(conditions), args


def build_order_clause(sort: SortSpec) -> str:
    column = SORT_COLUMNS[sort.field]
    direction = "DESC" if sort.descending else "ASC"
    return f"ORDER BY {column} {direction}, id ASC"


def parse_row_count(status: str) -> int:
    """Row count from a command status such as ``DELETE 3``."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


class PostgreSQLListingStore:
    """PostgreSQL-backed listing store."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("listings.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30
            )

            await self._create_tables()

            self.logger.info("PostgreSQL listing store started")

        except STORE_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL listing store", error=str(e))
            raise StoreError("Failed to start listing store", {"error": str(e)}) from e

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL listing store stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS listings (
                    id UUID PRIMARY KEY,
                    owner_id VARCHAR(255) NOT NULL,
                    title TEXT NOT NULL,
                    type VARCHAR(100) NOT NULL,
                    price DOUBLE PRECISION NOT NULL,
                    state VARCHAR(100) NOT NULL,
                    city VARCHAR(100) NOT NULL,
                    area_sq_ft DOUBLE PRECISION NOT NULL,
                    bedrooms INTEGER NOT NULL,
                    bathrooms INTEGER NOT NULL,
                    amenities TEXT NOT NULL DEFAULT '',
                    furnished VARCHAR(50) NOT NULL DEFAULT '',
                    available_from VARCHAR(32) NOT NULL,
                    listed_by VARCHAR(50) NOT NULL DEFAULT '',
                    tags TEXT NOT NULL DEFAULT '',
                    color_theme VARCHAR(32) NOT NULL DEFAULT '',
                    rating DOUBLE PRECISION NOT NULL DEFAULT 0,
                    is_verified BOOLEAN NOT NULL DEFAULT FALSE,
                    listing_type VARCHAR(20) NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)

            # Create indexes
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_listings_owner ON listings(owner_id, created_at DESC);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_listings_location ON listings(state, city);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_listings_price ON listings(price);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_listings_created ON listings(created_at DESC);
            """)

    async def _run(self, operation: str, method: str, query: str, *args):
        """Run one statement on a pooled connection, mapping driver failures to StoreError."""
        if self.pool is None:
            raise StoreError("Listing store is not started", {"operation": operation})
        try:
            async with self.pool.acquire() as conn:
                return await getattr(conn, method)(query, *args)
        except STORE_ERRORS as e:
            self.logger.error("Listing store query failed", operation=operation, error=str(e))
            raise StoreError("Listing store query failed", {"operation": operation}) from e

    async def insert(self, owner_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        fields = [name for name in data if name in LISTING_COLUMNS]
        columns = ["id", "owner_id"] + [LISTING_COLUMNS[name] for name in fields]
        values = [str(uuid.uuid4()), owner_id] + [data[name] for name in fields]
        placeholders = ", ".join(f"${index}" for index in range(1, len(values) + 1))

        row = await self._run(
            "insert",
            "fetchrow",
            f"INSERT INTO listings ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *",
            *values
        )
        return self._row_to_listing(row)

    async def find(
        self,
        criteria: FilterCriteria,
        sort: SortSpec,
        skip: int,
        limit: int,
        owner_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        where, args = build_where_clause(criteria, owner_id)
        offset_param = len(args) + 1
        query = " ".join(part for part in (
            "SELECT * FROM listings",
            where,
            build_order_clause(sort),
            f"OFFSET ${offset_param} LIMIT ${offset_param + 1}",
        ) if part)
        rows = await self._run("find", "fetch", query, *args, skip, limit)
        return [self._row_to_listing(row) for row in rows]

    async def count(self, criteria: FilterCriteria, owner_id: Optional[str] = None) -> int:
        where, args = build_where_clause(criteria, owner_id)
        total = await self._run("count", "fetchval", f"SELECT COUNT(*) FROM listings {where}".rstrip(), *args)
        return total or 0

    async def find_by_id(self, listing_id: str) -> Optional[Dict[str, Any]]:
        row = await self._run("find_by_id", "fetchrow", "SELECT * FROM listings WHERE id = $1", listing_id)
        if not row:
            return None
        return self._row_to_listing(row)

    async def find_owned(self, listing_ids: List[str], owner_id: str) -> List[str]:
        rows = await self._run(
            "find_owned",
            "fetch",
            "SELECT id FROM listings WHERE id = ANY($1::uuid[]) AND owner_id = $2",
            listing_ids,
            owner_id
        )
        return [str(row["id"]) for row in rows]

    async def update_by_id(self, listing_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        fields = [name for name in changes if name in LISTING_COLUMNS]
        assignments = [f"{LISTING_COLUMNS[name]} = ${index}" for index, name in enumerate(fields, start=2)]
        assignments.append("updated_at = NOW()")

        row = await self._run(
            "update",
            "fetchrow",
            f"UPDATE listings SET {', '.join(assignments)} WHERE id = $1 RETURNING *",
            listing_id,
            *[changes[name] for name in fields]
        )
        if not row:
            return None
        return self._row_to_listing(row)

    async def delete_by_id(self, listing_id: str) -> bool:
        result = await self._run("delete", "execute", "DELETE FROM listings WHERE id = $1", listing_id)
        return parse_row_count(result) > 0

    async def delete_many(self, listing_ids: List[str], owner_id: str) -> int:
        result = await self._run(
            "delete_many",
            "execute",
            "DELETE FROM listings WHERE id = ANY($1::uuid[]) AND owner_id = $2",
            listing_ids,
            owner_id
        )
        return parse_row_count(result)

    def _row_to_listing(self, row) -> Dict[str, Any]:
        """Convert database row to an API-shaped listing."""
        listing = {name: row[column] for name, column in LISTING_COLUMNS.items()}
        listing["id"] = str(row["id"])
        listing["ownerId"] = row["owner_id"]
        listing["createdAt"] = row["created_at"].isoformat()
        listing["updatedAt"] = row["updated_at"].isoformat()
        return listing

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except STORE_ERRORS:
            return False
