"""
Engine Module - Hybrid course search.
=====================================

Candidate selection, by priority:

1. Free-text query (2+ characters): keyword matching alone decides the
   candidates; topics and experience filters are ignored
2. Topics: "Class covers T1, T2" is embedded and matched against the vector
   index; only courses above the similarity floor survive
3. Otherwise every course in the snapshot

Without a free-text query, experience filters are hard predicates. Tenant
attribute filters are applied last. Survivors are ranked, sorted and paged.
"""

import math
from typing import Optional, Sequence

from campusfy.indexing.embeddings_base import CachedEmbeddingClient
from campusfy.indexing.vector_index import VectorIndex
from campusfy.search.filters import FilterRegistry, passes_experience_filters
from campusfy.search.keyword import KeywordMatcher
from campusfy.search.ranking import RankingFlags, apply_ranking, sort_courses
from campusfy.shared.config import SearchConfig, TenantConfig, get_settings
from campusfy.shared.errors import EmbeddingDimensionError
from campusfy.shared.logging import get_logger
from campusfy.shared.schemas import (
    CacheSnapshot,
    ScoredCourse,
    SearchQuerySpec,
    SearchResult,
    SortDirection,
    SortField,
    SortState,
)

logger = get_logger(__name__)


def build_topic_sentence(topics: Sequence[str], prefix: str = "Class covers") -> str:
    """
    Sentence embedded for a topic search.

    Example:
        >>> build_topic_sentence(["machine learning", " statistics "])
        'Class covers machine learning, statistics'
    """
    cleaned = [topic.strip() for topic in topics if topic and topic.strip()]
    return f"{prefix} {', '.join(cleaned)}"


def activate_gpa_sort(spec: SearchQuerySpec) -> SearchQuerySpec:
    """
    Toggle the GPA sort.

    Turning it on clears the experience filters and sorts by GPA, highest
    first. Turning it off restores the default ordering.
    """
    if spec.sort.is_gpa_sort:
        return spec.model_copy(update={"sort": SortState(), "page": 1})
    return spec.model_copy(
        update={
            "sort": SortState(field=SortField.GPA, direction=SortDirection.DESC),
            "experience_filters": [],
            "page": 1,
        }
    )


def paginate(courses: Sequence[ScoredCourse], page: int, limit: int) -> SearchResult:
    """Slice one page; total_pages is at least 1 even for empty results."""
    total = len(courses)
    total_pages = max(1, math.ceil(total / limit))
    start = (page - 1) * limit
    return SearchResult(
        courses=list(courses[start : start + limit]),
        total=total,
        total_pages=total_pages,
        page=page,
        limit=limit,
    )


class HybridSearchEngine:
    """
    Keyword, semantic and structured search over one tenant's snapshot.

    Args:
        embedder: Client used to embed topic sentences
        search_config: Thresholds and sizes (defaults to settings)
        tenant_config: Tenant whose attribute filters apply

    Example:
        >>> engine = HybridSearchEngine(embedder, tenant_config=settings.get_tenant("wisco"))
        >>> result = await engine.search(snapshot, index, SearchQuerySpec(topics=["robotics"]))
        >>> result.total
        12
    """

    def __init__(
        self,
        embedder: Optional[CachedEmbeddingClient],
        search_config: Optional[SearchConfig] = None,
        tenant_config: Optional[TenantConfig] = None,
    ):
        self.embedder = embedder
        self.config = search_config or get_settings().search
        self.tenant_config = tenant_config
        self.keyword = KeywordMatcher(search_config=self.config)
        self.filters = FilterRegistry.for_tenant(tenant_config) if tenant_config else None

    async def semantic_candidates(
        self,
        snapshot: CacheSnapshot,
        index: Optional[VectorIndex],
        topics: Sequence[str],
    ) -> list[ScoredCourse]:
        """Courses similar to the topics; empty on any embedding problem."""
        if index is None or not index.is_built or self.embedder is None:
            logger.warning("Topic search requested without a vector index or embedder")
            return []
        if index.source_id != snapshot.snapshot_id:
            logger.error(
                f"Vector index for {snapshot.tenant} was built from snapshot {index.source_id}, "
                f"not {snapshot.snapshot_id}; skipping topic search"
            )
            return []

        sentence = build_topic_sentence(topics, self.config.topic_sentence_prefix)
        vector = await self.embedder.embed(sentence)
        if vector is None:
            logger.warning(f"No embedding for '{sentence}', topic search yields nothing")
            return []

        try:
            hits = index.search(
                vector,
                top_k=self.config.topic_top_k,
                min_score=self.config.topic_similarity_threshold,
            )
        except EmbeddingDimensionError as e:
            logger.warning(f"Topic search skipped: {e}")
            return []

        candidates = []
        for hit in hits:
            record = snapshot.get(hit.class_code)
            if record is not None:
                candidates.append(ScoredCourse(record=record, vector_score=hit.score))
        logger.debug(f"Topic search '{sentence}': {len(candidates)} candidates")
        return candidates

    async def search(
        self,
        snapshot: CacheSnapshot,
        index: Optional[VectorIndex],
        spec: SearchQuerySpec,
    ) -> SearchResult:
        """
        Run one search.

        Args:
            snapshot: Catalog to search
            index: Vector index built from the same snapshot
            spec: Query, topics, filters, sort and page

        Returns:
            The requested page with total and total_pages over all matches
        """
        has_search = spec.has_search(self.config.min_query_length)
        has_topics = spec.has_topics and not has_search

        if has_search:
            candidates = self.keyword.match(snapshot.records, spec.query)
        elif has_topics:
            candidates = await self.semantic_candidates(snapshot, index, spec.topics)
        else:
            candidates = [ScoredCourse(record=record) for record in snapshot.records]

        experience = () if has_search else tuple(spec.experience_filters)
        if experience and candidates:
            candidates = [
                c for c in candidates if passes_experience_filters(c.record, experience)
            ]

        if spec.filters and candidates:
            candidates = self._apply_filters(candidates, spec)

        flags = RankingFlags(
            has_search=has_search,
            has_topics=has_topics,
            experience_filters=experience,
        )
        ranked = apply_ranking(candidates, flags)

        if spec.sort.is_active:
            ordered = sort_courses(ranked, spec.sort)
        else:
            ordered = sort_courses(
                ranked, SortState(field=SortField.RANKING_SCORE, direction=SortDirection.DESC)
            )

        result = paginate(ordered, spec.page, spec.limit)
        logger.debug(
            f"Search on {snapshot.tenant}: {result.total} matches, "
            f"page {result.page}/{result.total_pages}"
        )
        return result

    def _apply_filters(
        self, candidates: list[ScoredCourse], spec: SearchQuerySpec
    ) -> list[ScoredCourse]:
        registry = self.filters
        if registry is None:
            registry = FilterRegistry(TenantConfig(id="default", name="default", schema_name=""))
        predicates = registry.build(spec.filters)
        if not predicates:
            return candidates
        return [c for c in candidates if registry.matches(c.record, predicates)]
