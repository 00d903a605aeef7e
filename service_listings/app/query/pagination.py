"""
Pagination and sort resolution for listing queries.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from shared.errors import ValidationError
from .filters import raw_param, parse_int


DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 50
MAX_REPRESENTABLE = 2 ** 31 - 1

SORTABLE_FIELDS: Tuple[str, ...] = (
    "createdAt",
    "updatedAt",
    "price",
    "areaSqFt",
    "rating",
    "bedrooms",
    "bathrooms",
    "title",
    "state",
    "city",
)
DEFAULT_SORT_FIELD = "createdAt"
DEFAULT_SORT_ORDER = "desc"


@dataclass(frozen=True)
class Pagination:
    """Resolved page window."""
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def total_pages(self, total_count: int) -> int:
        return -(-total_count // self.limit)

    def describe(self, total_count: int) -> Dict[str, Any]:
        """Pagination block of a list envelope."""
        total_pages = self.total_pages(total_count)
        return {
            "currentPage": self.page,
            "totalPages": total_pages,
            "totalCount": total_count,
            "limit": self.limit,
            "hasNext": self.page < total_pages,
            "hasPrev": self.page > 1,
        }


@dataclass(frozen=True)
class SortSpec:
    """Resolved sort field and direction."""
    field: str = DEFAULT_SORT_FIELD
    order: str = DEFAULT_SORT_ORDER

    @property
    def descending(self) -> bool:
        return self.order == "desc"


def _bounded_int(params: Mapping[str, Any], name: str) -> Optional[int]:
    value = parse_int(raw_param(params, name))
    if value is not None and value > MAX_REPRESENTABLE:
        raise ValidationError(
            f"{name} is out of range",
            {"parameter": name, "max": MAX_REPRESENTABLE}
        )
    return value


def resolve_pagination(params: Mapping[str, Any]) -> Pagination:
    """Clamp page to >= 1 and limit to [1, MAX_LIMIT]; malformed values fall back to defaults."""
    page = _bounded_int(params, "page")
    limit = _bounded_int(params, "limit")

    page = DEFAULT_PAGE if page is None else max(1, page)
    limit = DEFAULT_LIMIT if limit is None else min(MAX_LIMIT, max(1, limit))
    return Pagination(page=page, limit=limit)


def resolve_sort(params: Mapping[str, Any]) -> SortSpec:
    """Unknown sort fields are corrected to the default rather than rejected.

    An absent ``sortBy`` defaults the field but keeps the requested order.
    """
    field = raw_param(params, "sortBy")
    if field is None:
        field = DEFAULT_SORT_FIELD
    elif field not in SORTABLE_FIELDS:
        return SortSpec(DEFAULT_SORT_FIELD, DEFAULT_SORT_ORDER)

    order = (raw_param(params, "sortOrder") or DEFAULT_SORT_ORDER).lower()
    if order not in ("asc", "desc"):
        order = DEFAULT_SORT_ORDER
    return SortSpec(field, order)
