"""Search, browsing and recommendation over registered capabilities."""

from .categories import CategoryManager
from .engine import DiscoveryEngine
from .index import SearchIndex, tokenize
from .models import (
    CategoryDiscoveryResult,
    CategoryFilter,
    CategoryMetadata,
    CategorySummary,
    SearchCriteria,
    SearchResult,
    ToolRecommendation,
)

__all__ = [
    "CategoryDiscoveryResult",
    "CategoryFilter",
    "CategoryManager",
    "CategoryMetadata",
    "CategorySummary",
    "DiscoveryEngine",
    "SearchCriteria",
    "SearchIndex",
    "SearchResult",
    "ToolRecommendation",
    "tokenize",
]
