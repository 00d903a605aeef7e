"""
Listing data models for the Listings Service.
"""

import uuid
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from shared.errors import ValidationError


# API field name -> storage column
LISTING_COLUMNS: Dict[str, str] = {
    "title": "title",
    "type": "type",
    "price": "price",
    "state": "state",
    "city": "city",
    "areaSqFt": "area_sq_ft",
    "bedrooms": "bedrooms",
    "bathrooms": "bathrooms",
    "amenities": "amenities",
    "furnished": "furnished",
    "availableFrom": "available_from",
    "listedBy": "listed_by",
    "tags": "tags",
    "colorTheme": "color_theme",
    "rating": "rating",
    "isVerified": "is_verified",
    "listingType": "listing_type",
}

# Sortable fields -> storage column
SORT_COLUMNS: Dict[str, str] = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    **{name: LISTING_COLUMNS[name] for name in (
        "price", "areaSqFt", "rating", "bedrooms", "bathrooms", "title", "state", "city"
    )},
}

IMMUTABLE_FIELDS = ("id", "ownerId", "createdAt", "updatedAt")


def validate_listing_id(listing_id: str) -> str:
    """Return the canonical form of a listing id, or raise for a malformed one."""
    try:
        return str(uuid.UUID(str(listing_id)))
    except ValueError:
        raise ValidationError("Invalid listing ID format", {"id": listing_id}) from None


class ListingCreateRequest(BaseModel):
    """Request model for creating a listing."""
    title: str = Field(..., min_length=1, description="Listing title")
    type: str = Field(..., min_length=1, description="Property type")
    price: float = Field(..., ge=0, description="Asking price")
    state: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    areaSqFt: float = Field(..., ge=0, description="Area in square feet")
    bedrooms: int = Field(..., ge=0)
    bathrooms: int = Field(..., ge=0)
    amenities: str = Field(..., description="Pipe or comma separated amenities")
    furnished: str = Field(...)
    availableFrom: str = Field(..., description="ISO-8601 date")
    listedBy: str = Field(...)
    tags: str = Field(...)
    colorTheme: str = Field(...)
    rating: float = Field(..., ge=0, le=5)
    isVerified: bool = Field(False)
    listingType: str = Field(..., description="rent or sale")


class ListingUpdateRequest(BaseModel):
    """Request model for updating a listing; only provided fields change."""
    title: Optional[str] = Field(None, min_length=1)
    type: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    state: Optional[str] = Field(None, min_length=1)
    city: Optional[str] = Field(None, min_length=1)
    areaSqFt: Optional[float] = Field(None, ge=0)
    bedrooms: Optional[int] = Field(None, ge=0)
    bathrooms: Optional[int] = Field(None, ge=0)
    amenities: Optional[str] = None
    furnished: Optional[str] = None
    availableFrom: Optional[str] = None
    listedBy: Optional[str] = None
    tags: Optional[str] = None
    colorTheme: Optional[str] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    isVerified: Optional[bool] = None
    listingType: Optional[str] = None


class BulkDeleteRequest(BaseModel):
    """Request model for deleting several listings at once."""
    propertyIds: List[str] = Field(default_factory=list, description="Listing IDs to delete")
