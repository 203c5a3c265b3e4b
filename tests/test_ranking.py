"""
Tests for Ranking Module.
=========================

Tests for:
- Sub-scores: grade, metric and GPA normalization, experience score
- rank(): the fixed weighting per active search mode
- sort_courses() and toggle_direction()
"""

import pytest


def scored(record, search_score=0.0, vector_score=0.0, ranking_score=0.0):
    from campusfy.shared.schemas import ScoredCourse

    return ScoredCourse(
        record=record,
        search_score=search_score,
        vector_score=vector_score,
        ranking_score=ranking_score,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Sub-score Tests
# ─────────────────────────────────────────────────────────────────────────────


class TestSubScores:
    """Tests for the normalized sub-scores."""

    def test_normalize_metric(self):
        """Test scaling, string parsing and invalid values."""
        from campusfy.search.ranking import normalize_metric

        assert normalize_metric(5) == pytest.approx(1.0)
        assert normalize_metric("2.5") == pytest.approx(0.5)
        assert normalize_metric(None) == 0.0
        assert normalize_metric("n/a") == 0.0
        assert normalize_metric(-1) == 0.0

    def test_normalize_gpa(self):
        """Test GPA scaling against 4.0."""
        from campusfy.search.ranking import normalize_gpa

        assert normalize_gpa(3.0) == pytest.approx(0.75)
        assert normalize_gpa(None) == 0.0

    def test_grade_score_is_raw_count(self, record_factory):
        """Test that the grade count is not normalized."""
        from campusfy.search.ranking import grade_score

        assert grade_score(record_factory("A 1", grade_count=1234)) == 1234
        assert grade_score(record_factory("A 1")) == 0.0

    def test_experience_score_inverts_difficulty_and_workload(self, record_factory):
        """Test that lower difficulty and workload score higher."""
        from campusfy.search.ranking import experience_score
        from campusfy.shared.schemas import ExperienceFilter

        record = record_factory(
            "A 1", indexed_difficulty=1, indexed_workload=2, indexed_fun=4, gpa=3.2
        )

        assert experience_score(record, [ExperienceFilter.EASY]) == pytest.approx(0.8)
        assert experience_score(record, [ExperienceFilter.LIGHT_WORKLOAD]) == pytest.approx(0.6)
        assert experience_score(record, [ExperienceFilter.FUN]) == pytest.approx(0.8)
        assert experience_score(record, [ExperienceFilter.HIGH_GPA]) == pytest.approx(0.8)
        assert experience_score(
            record, [ExperienceFilter.EASY, ExperienceFilter.LIGHT_WORKLOAD]
        ) == pytest.approx(0.7)
        assert experience_score(record, []) == 0.0


# ─────────────────────────────────────────────────────────────────────────────
# Fusion Tests
# ─────────────────────────────────────────────────────────────────────────────


class TestRank:
    """Tests for rank()."""

    @pytest.fixture
    def candidate(self, record_factory):
        record = record_factory(
            "COMP SCI 300",
            grade_count=10,
            indexed_difficulty=2,
            indexed_workload=2,
            indexed_fun=4,
            gpa=3.6,
        )
        return scored(record, search_score=0.8, vector_score=0.9)

    def test_search_only(self, candidate):
        """Test the keyword weighting."""
        from campusfy.search.ranking import RankingFlags, rank

        assert rank(candidate, RankingFlags(has_search=True)) == pytest.approx(0.1 * 10 + 0.9 * 0.8)

    def test_search_ignores_other_modes(self, candidate):
        """Test that free-text relevance takes precedence over topics and experience."""
        from campusfy.search.ranking import RankingFlags, rank
        from campusfy.shared.schemas import ExperienceFilter

        flags = RankingFlags(
            has_search=True, has_topics=True, experience_filters=(ExperienceFilter.FUN,)
        )

        assert rank(candidate, flags) == pytest.approx(1.72)

    def test_topics_only(self, candidate):
        """Test that topic similarity is used unweighted."""
        from campusfy.search.ranking import RankingFlags, rank

        assert rank(candidate, RankingFlags(has_topics=True)) == pytest.approx(0.9)

    def test_experience_only(self, candidate):
        """Test the experience weighting."""
        from campusfy.search.ranking import RankingFlags, rank
        from campusfy.shared.schemas import ExperienceFilter

        flags = RankingFlags(experience_filters=(ExperienceFilter.EASY,))

        assert rank(candidate, flags) == pytest.approx(0.5 * 10 + 0.5 * 0.6)

    def test_topics_and_experience(self, candidate):
        """Test the blended weighting."""
        from campusfy.search.ranking import RankingFlags, rank
        from campusfy.shared.schemas import ExperienceFilter

        flags = RankingFlags(has_topics=True, experience_filters=(ExperienceFilter.FUN,))

        assert rank(candidate, flags) == pytest.approx(0.1 * 10 + 0.7 * 0.9 + 0.2 * 0.8)

    def test_nothing_active(self, candidate):
        """Test that bare popularity is used."""
        from campusfy.search.ranking import RankingFlags, rank

        assert rank(candidate, RankingFlags()) == pytest.approx(10)

    @pytest.mark.parametrize("has_search", [False, True])
    @pytest.mark.parametrize("has_topics", [False, True])
    @pytest.mark.parametrize("experience", [(), ("Easy",), ("Easy", "Fun", "High GPA")])
    def test_rank_is_deterministic(self, candidate, has_search, has_topics, experience):
        """Test that repeated ranking of the same candidate gives the same score."""
        from campusfy.search.ranking import RankingFlags, rank
        from campusfy.shared.schemas import ExperienceFilter

        flags = RankingFlags(
            has_search=has_search,
            has_topics=has_topics,
            experience_filters=tuple(ExperienceFilter(value) for value in experience),
        )

        scores = {rank(candidate, flags) for _ in range(5)}

        assert len(scores) == 1

    def test_apply_ranking_returns_copies(self, candidate):
        """Test that inputs are left untouched."""
        from campusfy.search.ranking import RankingFlags, apply_ranking

        ranked = apply_ranking([candidate], RankingFlags())

        assert ranked[0].ranking_score == pytest.approx(10)
        assert candidate.ranking_score == 0.0


# ─────────────────────────────────────────────────────────────────────────────
# Sorting Tests
# ─────────────────────────────────────────────────────────────────────────────


class TestSorting:
    """Tests for sort_courses() and toggle_direction()."""

    @pytest.fixture
    def courses(self, record_factory):
        return [
            scored(record_factory("A 1", gpa=3.0, grade_count=5), ranking_score=0.2),
            scored(record_factory("B 1", grade_count=50), ranking_score=0.9),
            scored(record_factory("C 1", gpa=3.8, grade_count=1), ranking_score=0.5),
        ]

    def test_gpa_descending_puts_missing_last(self, courses):
        """Test that a missing GPA sorts as -1."""
        from campusfy.search.ranking import sort_courses
        from campusfy.shared.schemas import SortDirection, SortField, SortState

        ordered = sort_courses(courses, SortState(field=SortField.GPA, direction=SortDirection.DESC))

        assert [c.class_code for c in ordered] == ["C 1", "A 1", "B 1"]

    def test_gpa_ascending_puts_missing_first(self, courses):
        """Test ascending GPA order."""
        from campusfy.search.ranking import sort_courses
        from campusfy.shared.schemas import SortDirection, SortField, SortState

        ordered = sort_courses(courses, SortState(field=SortField.GPA, direction=SortDirection.ASC))

        assert [c.class_code for c in ordered] == ["B 1", "A 1", "C 1"]

    def test_other_fields(self, courses):
        """Test ranking score and grade count sorts."""
        from campusfy.search.ranking import sort_courses
        from campusfy.shared.schemas import SortDirection, SortField, SortState

        by_rank = sort_courses(
            courses, SortState(field=SortField.RANKING_SCORE, direction=SortDirection.DESC)
        )
        by_grades = sort_courses(
            courses, SortState(field=SortField.GRADE_COUNT, direction=SortDirection.ASC)
        )

        assert [c.class_code for c in by_rank] == ["B 1", "C 1", "A 1"]
        assert [c.class_code for c in by_grades] == ["C 1", "A 1", "B 1"]

    def test_inactive_sort_keeps_order(self, courses):
        """Test that direction none is a no-op."""
        from campusfy.search.ranking import sort_courses
        from campusfy.shared.schemas import SortState

        assert [c.class_code for c in sort_courses(courses, SortState())] == ["A 1", "B 1", "C 1"]

    def test_toggle_direction_cycle(self):
        """Test none -> desc -> asc -> none."""
        from campusfy.search.ranking import toggle_direction
        from campusfy.shared.schemas import SortDirection

        assert toggle_direction(None) == SortDirection.DESC
        assert toggle_direction(SortDirection.NONE) == SortDirection.DESC
        assert toggle_direction(SortDirection.DESC) == SortDirection.ASC
        assert toggle_direction(SortDirection.ASC) == SortDirection.NONE
