"""
Cache key derivation.

A key is a pure function of its namespace and the resolved dimension values:
dimension names are sorted, each pair is rendered as ``name:<json value>``,
pairs are joined with ``|`` and the result is URL-safe base64 encoded. The
JSON rendering keeps separator characters inside values from colliding with
the separator itself, and the encoding keeps glob characters and ``:`` out of
the part that follows the namespace.
"""

import base64
import json
from typing import Any, Dict, Mapping

from .filters import FilterCriteria
from .pagination import Pagination, SortSpec


LIST_NAMESPACE = "listings:list"
RECORD_NAMESPACE = "listing"
OWNER_NAMESPACE = "owner"
KEY_SEPARATOR = "|"


def _render(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _encode(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii")


def derive_cache_key(namespace: str, dimensions: Mapping[str, Any]) -> str:
    """Derive the key for a namespace and a set of (dimension, value) pairs."""
    present = {name: value for name, value in dimensions.items() if value is not None}
    if not present:
        return namespace

    rendered = KEY_SEPARATOR.join(
        f"{name}:{_render(present[name])}" for name in sorted(present)
    )
    return f"{namespace}:{_encode(rendered)}"


def pagination_dimensions(pagination: Pagination, sort: SortSpec) -> Dict[str, Any]:
    return {
        "page": pagination.page,
        "limit": pagination.limit,
        "sortBy": sort.field,
        "sortOrder": sort.order,
    }


def list_cache_key(criteria: FilterCriteria, pagination: Pagination, sort: SortSpec) -> str:
    dimensions = criteria.dimensions()
    dimensions.update(pagination_dimensions(pagination, sort))
    return derive_cache_key(LIST_NAMESPACE, dimensions)


def record_cache_key(listing_id: str) -> str:
    return derive_cache_key(f"{RECORD_NAMESPACE}:{listing_id}", {})


def owner_namespace(owner_id: str) -> str:
    # Owner ids come from request headers; encoding keeps one owner's prefix from matching another's
    return f"{OWNER_NAMESPACE}:{_encode(owner_id)}:listings"


def owner_cache_key(owner_id: str, pagination: Pagination, sort: SortSpec) -> str:
    return derive_cache_key(owner_namespace(owner_id), pagination_dimensions(pagination, sort))
