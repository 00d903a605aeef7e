"""
Filter predicate builder.

Turns raw query parameters into a canonical ``FilterCriteria``: a closed set
of typed filters, one per present dimension. Building is pure and
deterministic, so the same parameters always produce an equal criteria.

Parsing policy for malformed input is *fail open*: a numeric parameter that
does not parse (``minPrice=abc``) is treated as if it had not been sent, and
the remaining filters still apply. Empty or whitespace-only values are
likewise omitted rather than turned into empty-string predicates.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union


TEXT_DIMENSIONS: Tuple[str, ...] = (
    "state",
    "city",
    "type",
    "furnished",
    "listingType",
    "listedBy",
    "colorTheme",
    "amenities",
    "tags",
)

EXACT_DIMENSIONS: Tuple[str, ...] = ("bedrooms", "bathrooms")

# dimension -> (min parameter, max parameter)
RANGE_DIMENSIONS: Dict[str, Tuple[str, str]] = {
    "price": ("minPrice", "maxPrice"),
    "areaSqFt": ("minAreaSqFt", "maxAreaSqFt"),
    "rating": ("minRating", "maxRating"),
}

BOOLEAN_DIMENSIONS: Tuple[str, ...] = ("isVerified",)

DATE_DIMENSION = "availableFrom"
DATE_RANGE_PARAMS: Tuple[str, str] = ("availableFromStart", "availableFromEnd")


@dataclass(frozen=True)
class TextFilter:
    """Case-insensitive substring match."""
    dimension: str
    value: str

    def key_value(self) -> Any:
        return self.value

    def applied_value(self) -> Any:
        return self.value

    def matches(self, candidate: Any) -> bool:
        if candidate is None:
            return False
        return self.value.lower() in str(candidate).lower()


@dataclass(frozen=True)
class ExactFilter:
    """Integer equality."""
    dimension: str
    value: int

    def key_value(self) -> Any:
        return self.value

    def applied_value(self) -> Any:
        return self.value

    def matches(self, candidate: Any) -> bool:
        return not isinstance(candidate, bool) and candidate == self.value


@dataclass(frozen=True)
class RangeFilter:
    """Inclusive numeric range; either bound may be open."""
    dimension: str
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def __post_init__(self):
        if self.minimum is None and self.maximum is None:
            raise ValueError(f"Range filter on {self.dimension} needs at least one bound")

    def key_value(self) -> Any:
        bounds = {}
        if self.minimum is not None:
            bounds["min"] = self.minimum
        if self.maximum is not None:
            bounds["max"] = self.maximum
        return bounds

    def applied_value(self) -> Any:
        return self.key_value()

    def matches(self, candidate: Any) -> bool:
        if candidate is None or isinstance(candidate, bool):
            return False
        if self.minimum is not None and candidate < self.minimum:
            return False
        if self.maximum is not None and candidate > self.maximum:
            return False
        return True


@dataclass(frozen=True)
class BooleanFilter:
    """Exact boolean equality."""
    dimension: str
    value: bool

    def key_value(self) -> Any:
        return self.value

    def applied_value(self) -> Any:
        return self.value

    def matches(self, candidate: Any) -> bool:
        return candidate is self.value


@dataclass(frozen=True)
class DateFilter:
    """Exact match on a date-like string."""
    dimension: str
    value: str

    def key_value(self) -> Any:
        return self.value

    def applied_value(self) -> Any:
        return self.value

    def matches(self, candidate: Any) -> bool:
        return candidate is not None and str(candidate) == self.value


@dataclass(frozen=True)
class DateRangeFilter:
    """Inclusive range over date-like strings, compared lexicographically (ISO-8601)."""
    dimension: str
    start: Optional[str] = None
    end: Optional[str] = None

    def __post_init__(self):
        if self.start is None and self.end is None:
            raise ValueError(f"Date range filter on {self.dimension} needs at least one bound")

    def key_value(self) -> Any:
        bounds = {}
        if self.start is not None:
            bounds["start"] = self.start
        if self.end is not None:
            bounds["end"] = self.end
        return bounds

    def applied_value(self) -> Any:
        return self.key_value()

    def matches(self, candidate: Any) -> bool:
        if candidate is None:
            return False
        value = str(candidate)
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True


Filter = Union[TextFilter, ExactFilter, RangeFilter, BooleanFilter, DateFilter, DateRangeFilter]


@dataclass(frozen=True)
class FilterCriteria:
    """Canonical predicate: at most one filter per dimension, ordered by dimension name."""
    filters: Tuple[Filter, ...] = ()

    def __post_init__(self):
        ordered = tuple(sorted(self.filters, key=lambda item: item.dimension))
        names = [item.dimension for item in ordered]
        if len(names) != len(set(names)):
            raise ValueError("Duplicate filter dimension")
        object.__setattr__(self, "filters", ordered)

    def __iter__(self) -> Iterator[Filter]:
        return iter(self.filters)

    def __len__(self) -> int:
        return len(self.filters)

    def get(self, dimension: str) -> Optional[Filter]:
        for item in self.filters:
            if item.dimension == dimension:
                return item
        return None

    def dimensions(self) -> Dict[str, Any]:
        """Dimension name to canonical value, as folded into cache keys."""
        return {item.dimension: item.key_value() for item in self.filters}

    def applied(self) -> Dict[str, Any]:
        """Resolved filter values as echoed back to clients."""
        return {item.dimension: item.applied_value() for item in self.filters}

    def matches(self, record: Mapping[str, Any]) -> bool:
        return all(item.matches(record.get(item.dimension)) for item in self.filters)


def raw_param(params: Mapping[str, Any], name: str) -> Optional[str]:
    """Fetch a parameter as trimmed text; absent and blank both become None."""
    value = params.get(name)
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ASCII decimal only: no digit separators, no other scripts
_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_FLOAT_PATTERN = re.compile(r"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")


def parse_int(text: Optional[str]) -> Optional[int]:
    """Parse an integer, returning None for anything malformed."""
    if text is None:
        return None
    if not _INT_PATTERN.fullmatch(text):
        return None
    return int(text)


def parse_float(text: Optional[str]) -> Optional[float]:
    """Parse a finite number, returning None for anything malformed."""
    if text is None:
        return None
    if not _FLOAT_PATTERN.fullmatch(text):
        return None
    value = float(text)
    if not math.isfinite(value):
        return None
    return value


def parse_bool(text: Optional[str]) -> Optional[bool]:
    """Loose coercion: ``true`` in any case is True, any other present value is False."""
    if text is None:
        return None
    return text.lower() == "true"


def build_filter_criteria(params: Mapping[str, Any]) -> FilterCriteria:
    """Build the canonical filter criteria for raw query parameters."""
    filters = []

    for dimension in TEXT_DIMENSIONS:
        value = raw_param(params, dimension)
        if value is not None:
            filters.append(TextFilter(dimension, value))

    for dimension in EXACT_DIMENSIONS:
        value = parse_int(raw_param(params, dimension))
        if value is not None:
            filters.append(ExactFilter(dimension, value))

    for dimension, (min_param, max_param) in RANGE_DIMENSIONS.items():
        minimum = parse_float(raw_param(params, min_param))
        maximum = parse_float(raw_param(params, max_param))
        if minimum is not None or maximum is not None:
            filters.append(RangeFilter(dimension, minimum, maximum))

    for dimension in BOOLEAN_DIMENSIONS:
        value = parse_bool(raw_param(params, dimension))
        if value is not None:
            filters.append(BooleanFilter(dimension, value))

    exact_date = raw_param(params, DATE_DIMENSION)
    if exact_date is not None:
        filters.append(DateFilter(DATE_DIMENSION, exact_date))
    else:
        start = raw_param(params, DATE_RANGE_PARAMS[0])
        end = raw_param(params, DATE_RANGE_PARAMS[1])
        if start is not None or end is not None:
            filters.append(DateRangeFilter(DATE_DIMENSION, start, end))

    return FilterCriteria(tuple(filters))
