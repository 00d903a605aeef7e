"""
In-process listing store for local runs and tests.
"""

import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from shared.logging import get_logger
from ..query.filters import FilterCriteria
from ..query.pagination import SortSpec


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryListingStore:
    """Dict-backed store with the same ordering rules as the SQL store."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or _utcnow
        self._records: Dict[str, Dict[str, Any]] = {}
        self.logger = get_logger("listings.persistence.memory")

    async def start(self) -> None:
        self.logger.info("In-memory listing store started")

    async def stop(self) -> None:
        return None

    async def health_check(self) -> bool:
        return True

    async def insert(self, owner_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        timestamp = self._clock().isoformat()
        record = {
            **data,
            "id": str(uuid.uuid4()),
            "ownerId": owner_id,
            "createdAt": timestamp,
            "updatedAt": timestamp,
        }
        self._records[record["id"]] = record
        return copy.deepcopy(record)

    def _matching(self, criteria: FilterCriteria, owner_id: Optional[str]) -> List[Dict[str, Any]]:
        return [
            record for record in self._records.values()
            if (owner_id is None or record["ownerId"] == owner_id) and criteria.matches(record)
        ]

    async def find(
        self,
        criteria: FilterCriteria,
        sort: SortSpec,
        skip: int,
        limit: int,
        owner_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        records = sorted(self._matching(criteria, owner_id), key=lambda record: record["id"])
        # Stable sort keeps id order among equal values in both directions
        records.sort(
            key=lambda record: (record.get(sort.field) is not None, record.get(sort.field)),
            reverse=sort.descending,
        )
        return [copy.deepcopy(record) for record in records[skip:skip + limit]]

    async def count(self, criteria: FilterCriteria, owner_id: Optional[str] = None) -> int:
        return len(self._matching(criteria, owner_id))

    async def find_by_id(self, listing_id: str) -> Optional[Dict[str, Any]]:
        record = self._records.get(listing_id)
        return copy.deepcopy(record) if record is not None else None

    async def find_owned(self, listing_ids: List[str], owner_id: str) -> List[str]:
        return [
            listing_id for listing_id in listing_ids
            if listing_id in self._records and self._records[listing_id]["ownerId"] == owner_id
        ]

    async def update_by_id(self, listing_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        record = self._records.get(listing_id)
        if record is None:
            return None
        record.update(changes)
        record["updatedAt"] = self._clock().isoformat()
        return copy.deepcopy(record)

    async def delete_by_id(self, listing_id: str) -> bool:
        return self._records.pop(listing_id, None) is not None

    async def delete_many(self, listing_ids: List[str], owner_id: str) -> int:
        deleted = 0
        for listing_id in listing_ids:
            record = self._records.get(listing_id)
            if record is not None and record["ownerId"] == owner_id:
                del self._records[listing_id]
                deleted += 1
        return deleted
