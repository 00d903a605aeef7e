"""
Durable listing store contract.
"""

from typing import Any, Dict, List, Optional, Protocol

from ..query.filters import FilterCriteria
from ..query.pagination import SortSpec


class ListingStore(Protocol):
    """Source of truth for listings.

    Records are plain dicts keyed by API field names (``id``, ``ownerId``,
    ``price``, ``createdAt``...). Every method raises ``StoreError`` when the
    store cannot be reached.
    """

    async def insert(self, owner_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def find(
        self,
        criteria: FilterCriteria,
        sort: SortSpec,
        skip: int,
        limit: int,
        owner_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Matching records ordered by ``sort`` with ties broken by id ascending."""
        ...

    async def count(self, criteria: FilterCriteria, owner_id: Optional[str] = None) -> int:
        ...

    async def find_by_id(self, listing_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def find_owned(self, listing_ids: List[str], owner_id: str) -> List[str]:
        """Subset of ``listing_ids`` that exist and belong to ``owner_id``."""
        ...

    async def update_by_id(self, listing_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    async def delete_by_id(self, listing_id: str) -> bool:
        ...

    async def delete_many(self, listing_ids: List[str], owner_id: str) -> int:
        ...

    async def health_check(self) -> bool:
        ...

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...
