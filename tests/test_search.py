"""
Tests for Search Module.
========================

Tests for:
- KeywordMatcher: exact, prefix and fuzzy passes
- FilterRegistry: tenant filters, generic fallback, experience predicates
- HybridSearchEngine: candidate precedence, ranking, sorting, pagination
"""

import pytest


# ─────────────────────────────────────────────────────────────────────────────
# Keyword Matcher Tests
# ─────────────────────────────────────────────────────────────────────────────


class TestKeywordMatcher:
    """Tests for KeywordMatcher."""

    @pytest.fixture
    def matcher(self, search_config):
        from campusfy.search.keyword import KeywordMatcher

        return KeywordMatcher(search_config=search_config)

    def test_short_query_lists_everything_by_popularity(self, matcher, sample_records):
        """Test that a one-character query returns the catalog by grade count."""
        hits = matcher.match(sample_records, "c")

        assert [h.class_code for h in hits] == [
            "MATH 221",
            "COMP SCI 200",
            "COMP SCI 300",
            "COMP SCI 220",
            "HISTORY 101",
            "MUSIC 113",
        ]

    @pytest.mark.parametrize("query", ["COMP SCI 300", "comp sci 300", "compsci300", "CompSci 300"])
    def test_exact_code_variants(self, matcher, sample_records, query):
        """Test that case and whitespace do not matter for exact codes."""
        hits = matcher.match(sample_records, query)

        assert [h.class_code for h in hits] == ["COMP SCI 300"]
        assert hits[0].search_score == 1.0

    @pytest.mark.parametrize("query", ["cs 300", "CS300", "compsci 300", "Computer Science 300"])
    def test_department_aliases(self, matcher, sample_records, query):
        """Test that common department spellings resolve to the catalog code."""
        hits = matcher.match(sample_records, query)

        assert [h.class_code for h in hits] == ["COMP SCI 300"]
        assert hits[0].search_score == 1.0

    def test_department_alias_prefix(self, matcher, sample_records):
        """Test that an aliased department still prefix-matches."""
        hits = matcher.match(sample_records, "cs 2")

        assert [h.class_code for h in hits] == ["COMP SCI 200", "COMP SCI 220"]

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("cs", "COMP SCI"),
            ("Risk Management 300", "R M I 300"),
            ("acct is 100", "ACCT I S 100"),
            ("e p d 150", "E P D 150"),
            ("math221", "MATH 221"),
            ("comp sci 300", "COMP SCI 300"),
            ("300", "300"),
            ("programing", "programing"),
        ],
    )
    def test_normalize_query(self, raw, expected):
        """Test alias rewriting and code spacing."""
        from campusfy.search.keyword import normalize_query

        assert normalize_query(raw) == expected

    def test_prefix_orders_by_course_number(self, matcher, sample_records, record_factory):
        """Test prefix matches and their numeric ordering."""
        records = [record_factory("COMP SCI 240")] + list(sample_records)

        hits = matcher.match(records, "comp sci 2")

        assert [h.class_code for h in hits] == ["COMP SCI 200", "COMP SCI 220", "COMP SCI 240"]
        assert all(0.9 < h.search_score < 1.0 for h in hits)

    def test_fuzzy_matches_names_with_typos(self, matcher, sample_records):
        """Test that a misspelled title still finds the course."""
        hits = matcher.match(sample_records, "programing")
        codes = [h.class_code for h in hits]

        assert "COMP SCI 200" in codes
        assert "COMP SCI 300" in codes
        assert "MATH 221" not in codes
        assert all(0.0 < h.search_score <= 1.0 for h in hits)
        scores = [h.search_score for h in hits]
        assert scores == sorted(scores, reverse=True)

    def test_no_match(self, matcher, sample_records):
        """Test that unrelated text matches nothing."""
        assert matcher.match(sample_records, "zzqxv") == []


# ─────────────────────────────────────────────────────────────────────────────
# Filter Registry Tests
# ─────────────────────────────────────────────────────────────────────────────


class TestFilterRegistry:
    """Tests for FilterRegistry."""

    def test_membership_filter(self, wisco_tenant, sample_records):
        """Test string membership on a tenant column."""
        from campusfy.search.filters import FilterRegistry

        registry = FilterRegistry.for_tenant(wisco_tenant)
        matches = registry.apply(sample_records, {"breadth": ["Humanities"]})

        assert {r.class_code for r in matches} == {"MUSIC 113", "HISTORY 101"}

    def test_numeric_membership_filter(self, wisco_tenant, sample_records):
        """Test numeric membership tolerates string values."""
        from campusfy.search.filters import FilterRegistry

        registry = FilterRegistry.for_tenant(wisco_tenant)

        assert [r.class_code for r in registry.apply(sample_records, {"level": ["2"]})] == [
            "COMP SCI 300"
        ]

    def test_credits_string_ranges(self, wisco_tenant, sample_records):
        """Test overlap of '1-3' style credits with the requested range."""
        from campusfy.search.filters import FilterRegistry

        registry = FilterRegistry.for_tenant(wisco_tenant)

        four_plus = registry.apply(sample_records, {"credits": {"credits_min": 4, "credits_max": 5}})
        one = registry.apply(sample_records, {"credits": [1, 1]})

        assert {r.class_code for r in four_plus} == {"COMP SCI 220", "MATH 221"}
        assert [r.class_code for r in one] == ["MUSIC 113"]

    def test_no_prerequisites(self, wisco_tenant, sample_records):
        """Test that blank or missing requisites pass."""
        from campusfy.search.filters import FilterRegistry

        registry = FilterRegistry.for_tenant(wisco_tenant)
        matches = registry.apply(sample_records, {"no_prerequisites": True})

        assert {r.class_code for r in matches} == {
            "COMP SCI 200",
            "COMP SCI 220",
            "MUSIC 113",
            "HISTORY 101",
        }
        assert len(registry.apply(sample_records, {"no_prerequisites": False})) == 6

    def test_boolean_filter(self, wisco_tenant, record_factory):
        """Test boolean columns, including string encodings and missing values."""
        from campusfy.search.filters import FilterRegistry

        records = [
            record_factory("A 1", ethnic=True),
            record_factory("B 1", ethnic="false"),
            record_factory("C 1"),
        ]
        registry = FilterRegistry.for_tenant(wisco_tenant)

        assert [r.class_code for r in registry.apply(records, {"ethnic": True})] == ["A 1"]
        assert [r.class_code for r in registry.apply(records, {"ethnic": False})] == ["B 1"]

    def test_any_true_and_min_max_credits(self, utah_tenant, record_factory):
        """Test boolean attribute columns and min/max credit columns."""
        from campusfy.search.filters import FilterRegistry

        records = [
            record_factory("CS 1410", min_credits=4, max_credits=4, QL=True),
            record_factory("MUSC 1010", min_credits=1, max_credits=3, QI=1),
            record_factory("HIST 1700", min_credits=3, max_credits=3, QL=False, QI=0),
            record_factory("ART 1010"),
        ]
        registry = FilterRegistry.for_tenant(utah_tenant)

        quantitative = registry.apply(records, {"quantitative": ["QL", "QI"]})
        three = registry.apply(records, {"credits": {"credits_min": 3, "credits_max": 3}})

        assert [r.class_code for r in quantitative] == ["CS 1410", "MUSC 1010"]
        assert [r.class_code for r in three] == ["MUSC 1010", "HIST 1700"]

    def test_filters_are_conjunctive(self, wisco_tenant, sample_records):
        """Test that every active filter must pass."""
        from campusfy.search.filters import FilterRegistry

        registry = FilterRegistry.for_tenant(wisco_tenant)
        matches = registry.apply(
            sample_records, {"breadth": ["Humanities"], "credits": [3, 3]}
        )

        assert {r.class_code for r in matches} == {"MUSIC 113", "HISTORY 101"}

        matches = registry.apply(sample_records, {"breadth": ["Humanities"], "credits": [4, 5]})
        assert matches == []

    def test_generic_fallback(self, wisco_tenant, record_factory):
        """Test unregistered keys: list means membership, scalar equality, missing fails."""
        from campusfy.search.filters import FilterRegistry

        records = [
            record_factory("A 1", department="COMP SCI"),
            record_factory("B 1", department="MATH"),
            record_factory("C 1"),
        ]
        registry = FilterRegistry.for_tenant(wisco_tenant)

        assert [r.class_code for r in registry.apply(records, {"department": "MATH"})] == ["B 1"]
        assert [
            r.class_code for r in registry.apply(records, {"department": ["MATH", "COMP SCI"]})
        ] == ["A 1", "B 1"]

    def test_empty_values_are_inactive(self, wisco_tenant, sample_records):
        """Test that None and empty selections do not filter."""
        from campusfy.search.filters import FilterRegistry

        registry = FilterRegistry.for_tenant(wisco_tenant)

        assert registry.build({"breadth": [], "ethnic": None, "level": ""}) == []
        assert len(registry.apply(sample_records, {"breadth": []})) == len(sample_records)

    def test_parse_credits(self):
        """Test credit string parsing."""
        from campusfy.search.filters import parse_credits

        assert parse_credits("1-3") == (1.0, 3.0)
        assert parse_credits("4") == (4.0, 4.0)
        assert parse_credits(2) == (2.0, 2.0)
        assert parse_credits("variable") is None
        assert parse_credits(None) is None


class TestExperiencePredicates:
    """Tests for the experience filter thresholds."""

    def test_thresholds(self, record_factory):
        """Test the boundary values of every experience filter."""
        from campusfy.search.filters import experience_predicate
        from campusfy.shared.schemas import ExperienceFilter

        edge = record_factory(
            "A 1", indexed_difficulty=3, indexed_workload=3, indexed_fun=3, gpa=3.0
        )
        beyond = record_factory(
            "B 1", indexed_difficulty=3.1, indexed_workload=3.1, indexed_fun=2.9, gpa=2.99
        )

        for name in ExperienceFilter:
            assert experience_predicate(name)(edge) is True
            assert experience_predicate(name)(beyond) is False

    def test_missing_metrics_fail(self, record_factory):
        """Test that a missing or unparseable metric fails its predicate."""
        from campusfy.search.filters import passes_experience_filters
        from campusfy.shared.schemas import ExperienceFilter

        record = record_factory("A 1", gpa="n/a")

        assert passes_experience_filters(record, [ExperienceFilter.HIGH_GPA]) is False
        assert passes_experience_filters(record, ["Easy"]) is False
        assert passes_experience_filters(record, []) is True

    def test_unknown_filter_raises(self):
        """Test that unknown experience names are rejected."""
        from campusfy.search.filters import experience_predicate

        with pytest.raises(ValueError):
            experience_predicate("Bogus")


# ─────────────────────────────────────────────────────────────────────────────
# Hybrid Search Engine Tests
# ─────────────────────────────────────────────────────────────────────────────


class TestHybridSearchEngine:
    """Tests for HybridSearchEngine.search()."""

    @pytest.fixture
    def engine(self, embedder, search_config, wisco_tenant):
        from campusfy.search.engine import HybridSearchEngine

        return HybridSearchEngine(embedder, search_config, wisco_tenant)

    @pytest.fixture
    def run(self, engine, sample_snapshot, sample_index):
        async def _run(**spec_fields):
            from campusfy.shared.schemas import SearchQuerySpec

            return await engine.search(
                sample_snapshot, sample_index, SearchQuerySpec(**spec_fields)
            )

        return _run

    @pytest.mark.asyncio
    async def test_exact_code_query(self, run):
        """Test that an exact code returns that course alone."""
        result = await run(query="comp sci 300")

        assert result.class_codes == ["COMP SCI 300"]
        assert result.courses[0].ranking_score == pytest.approx(0.1 * 800 + 0.9 * 1.0)

    @pytest.mark.asyncio
    async def test_prefix_query_ranked(self, run):
        """Test prefix matches ranked by the keyword weighting."""
        result = await run(query="COMP SCI 2")

        assert result.class_codes == ["COMP SCI 200", "COMP SCI 220"]
        assert result.total == 2

    @pytest.mark.asyncio
    async def test_query_ignores_topics_and_experience(self, run, fake_provider):
        """Test that free text takes over candidate selection."""
        result = await run(
            query="comp sci 300", topics=["music"], experience_filters=["Easy"]
        )

        assert result.class_codes == ["COMP SCI 300"]
        assert fake_provider.calls == []

    @pytest.mark.asyncio
    async def test_topic_search(self, run):
        """Test semantic candidates above the similarity floor."""
        result = await run(topics=["machine learning"])

        assert result.class_codes == ["COMP SCI 200", "COMP SCI 220"]
        assert result.courses[0].ranking_score == pytest.approx(1.0)
        assert result.courses[1].vector_score == pytest.approx(0.9 / (0.82 ** 0.5))

    @pytest.mark.asyncio
    async def test_topic_search_below_floor(self, run):
        """Test that similarities under the floor are discarded."""
        result = await run(topics=["calculus", "music"])

        assert result.total == 0
        assert result.total_pages == 1

    @pytest.mark.asyncio
    async def test_topics_with_experience(self, run):
        """Test the blended ranking of topics and experience."""
        result = await run(topics=["machine learning"], experience_filters=["Easy"])

        assert result.class_codes == ["COMP SCI 200", "COMP SCI 220"]
        first = result.courses[0]
        assert first.ranking_score == pytest.approx(0.1 * 1000 + 0.7 * 1.0 + 0.2 * 0.5)

    @pytest.mark.asyncio
    async def test_experience_only(self, run):
        """Test experience filters as hard predicates without a query."""
        result = await run(experience_filters=["Easy"])

        assert result.class_codes == ["COMP SCI 200", "COMP SCI 220", "MUSIC 113"]
        assert result.courses[0].ranking_score == pytest.approx(0.5 * 1000 + 0.5 * 0.5)

    @pytest.mark.asyncio
    async def test_high_gpa_excludes_missing_gpa(self, run):
        """Test that courses without a GPA fail High GPA."""
        result = await run(experience_filters=["High GPA"])

        assert set(result.class_codes) == {
            "COMP SCI 200",
            "COMP SCI 220",
            "COMP SCI 300",
            "MUSIC 113",
        }

    @pytest.mark.asyncio
    async def test_no_criteria_orders_by_popularity(self, run):
        """Test the default ordering with nothing selected."""
        result = await run()

        assert result.class_codes == [
            "MATH 221",
            "COMP SCI 200",
            "COMP SCI 300",
            "COMP SCI 220",
            "HISTORY 101",
            "MUSIC 113",
        ]

    @pytest.mark.asyncio
    async def test_attribute_filters_apply_last(self, run):
        """Test tenant filters on top of a topic search."""
        result = await run(topics=["music"], filters={"breadth": ["Humanities"]})
        assert result.class_codes == ["MUSIC 113"]

        result = await run(topics=["music"], filters={"breadth": ["Natural Science"]})
        assert result.total == 0

    @pytest.mark.asyncio
    async def test_attribute_filters_with_query(self, run):
        """Test that attribute filters still apply to keyword results."""
        result = await run(query="comp sci 2", filters={"credits": [4, 4]})

        assert result.class_codes == ["COMP SCI 220"]

    @pytest.mark.asyncio
    async def test_embedding_failure_yields_nothing(self, run):
        """Test that an unavailable embedding degrades to zero results."""
        result = await run(topics=["quantum basket weaving"])

        assert result.courses == []
        assert result.total == 0
        assert result.total_pages == 1

    @pytest.mark.asyncio
    async def test_dimension_mismatch_yields_nothing(self, run):
        """Test that a wrong-sized topic vector degrades to zero results."""
        result = await run(topics=["flat vectors"])

        assert result.total == 0

    @pytest.mark.asyncio
    async def test_missing_index_yields_nothing(self, engine, sample_snapshot):
        """Test topic search without an index."""
        from campusfy.shared.schemas import SearchQuerySpec

        result = await engine.search(sample_snapshot, None, SearchQuerySpec(topics=["music"]))

        assert result.total == 0

    @pytest.mark.asyncio
    async def test_index_from_other_snapshot_yields_nothing(
        self, engine, sample_index, sample_records, fake_provider
    ):
        """Test that an index built from another snapshot is never queried."""
        from campusfy.shared.schemas import CacheSnapshot, SearchQuerySpec

        newer = CacheSnapshot(tenant="wisco", records=tuple(sample_records[:2]))
        assert sample_index.source_id != newer.snapshot_id

        candidates = await engine.semantic_candidates(newer, sample_index, ["machine learning"])
        result = await engine.search(
            newer, sample_index, SearchQuerySpec(topics=["machine learning"])
        )

        assert candidates == []
        assert result.total == 0
        assert fake_provider.calls == []

    @pytest.mark.asyncio
    async def test_pagination(self, run):
        """Test page slicing and metadata."""
        page_two = await run(limit=2, page=2)
        beyond = await run(limit=2, page=9)

        assert page_two.class_codes == ["COMP SCI 300", "COMP SCI 220"]
        assert page_two.total == 6
        assert page_two.total_pages == 3
        assert beyond.courses == []
        assert beyond.total == 6
        assert beyond.page == 9

    @pytest.mark.asyncio
    async def test_gpa_sort_clears_experience(self, run):
        """Test that activating GPA sort resets experience filters."""
        from campusfy.search.engine import activate_gpa_sort
        from campusfy.shared.schemas import SearchQuerySpec

        spec = activate_gpa_sort(SearchQuerySpec(experience_filters=["Easy"], page=3))

        assert spec.experience_filters == []
        assert spec.sort.is_gpa_sort
        assert spec.page == 1

        result = await run(**spec.model_dump())

        assert result.class_codes == [
            "MUSIC 113",
            "COMP SCI 220",
            "COMP SCI 200",
            "COMP SCI 300",
            "MATH 221",
            "HISTORY 101",
        ]

    def test_gpa_sort_toggles_off(self):
        """Test that activating GPA sort twice turns it off."""
        from campusfy.search.engine import activate_gpa_sort
        from campusfy.shared.schemas import SearchQuerySpec

        spec = activate_gpa_sort(activate_gpa_sort(SearchQuerySpec()))

        assert not spec.sort.is_active

    def test_topic_sentence(self):
        """Test the synthetic sentence used for topic embeddings."""
        from campusfy.search.engine import build_topic_sentence

        assert build_topic_sentence(["machine learning", " ", "statistics "]) == (
            "Class covers machine learning, statistics"
        )
