"""
Search Module - Hybrid course search over a cached snapshot.
============================================================

- keyword: department aliases; exact, prefix and fuzzy code/name/description matching
- filters: tenant attribute filters and experience predicates
- ranking: fused ranking score and result sorting
- engine: candidate selection, ranking and pagination
"""

from campusfy.search.engine import HybridSearchEngine, activate_gpa_sort, build_topic_sentence
from campusfy.search.filters import FilterRegistry, passes_experience_filters
from campusfy.search.keyword import KeywordMatcher, normalize_query
from campusfy.search.ranking import RankingFlags, rank, sort_courses, toggle_direction

__all__ = [
    "HybridSearchEngine",
    "activate_gpa_sort",
    "build_topic_sentence",
    "FilterRegistry",
    "passes_experience_filters",
    "KeywordMatcher",
    "normalize_query",
    "RankingFlags",
    "rank",
    "sort_courses",
    "toggle_direction",
]
