"""
Filtered view of scored detours.

Derived synchronously from the accumulated results; changing filters never
triggers new upstream calls and never changes the ranking order.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from mapetite.models import DetourResult, POI

# Keywords offered as quick filters; each is annotated with a live count
CUISINE_KEYWORDS = (
    "pizza",
    "burger",
    "sushi",
    "ramen",
    "mexican",
    "taco",
    "chinese",
    "thai",
    "indian",
    "italian",
    "korean",
    "vietnamese",
    "mediterranean",
    "bbq",
    "seafood",
    "steak",
    "sandwich",
    "breakfast",
    "vegan",
    "vegetarian",
    "cafe",
    "coffee",
    "bakery",
    "dessert",
    "bar",
    "fast_food",
)


@dataclass
class ResultFilters:
    keyword: str = ""
    min_price: Optional[int] = None
    max_price: Optional[int] = None

    @property
    def has_price_bounds(self) -> bool:
        return self.min_price is not None or self.max_price is not None


@dataclass
class ResultView:
    results: List[DetourResult] = field(default_factory=list)
    category_counts: Dict[str, int] = field(default_factory=dict)
    total_count: int = 0


def matches_keyword(poi: POI, keyword: str) -> bool:
    """Case-insensitive substring match against the name or any category tag."""
    needle = (keyword or "").strip().lower()
    if not needle:
        return True
    if needle in poi.name.lower():
        return True
    return any(needle in tag.lower() for tag in poi.categories)


def passes_price_filter(poi: POI, filters: ResultFilters) -> bool:
    """
    Inclusive price range check.

    Unknown prices only pass while no bound is set; any explicit bound
    excludes POIs without price data.
    """
    if not filters.has_price_bounds:
        return True
    if poi.price_level is None:
        return False
    if filters.min_price is not None and poi.price_level < filters.min_price:
        return False
    if filters.max_price is not None and poi.price_level > filters.max_price:
        return False
    return True


def build_view(
    results: Sequence[DetourResult],
    filters: Optional[ResultFilters] = None,
    vocabulary: Sequence[str] = CUISINE_KEYWORDS,
) -> ResultView:
    filters = filters or ResultFilters()

    price_filtered = [r for r in results if passes_price_filter(r.poi, filters)]
    visible = [r for r in price_filtered if matches_keyword(r.poi, filters.keyword)]

    counts = {
        kw: sum(1 for r in price_filtered if matches_keyword(r.poi, kw))
        for kw in vocabulary
    }

    return ResultView(results=visible, category_counts=counts, total_count=len(results))
