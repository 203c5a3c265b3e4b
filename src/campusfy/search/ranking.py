"""
Ranking Module - Fused ranking score and result sorting.
========================================================

rank() turns a candidate's sub-scores into one scalar. The weights depend
on which search modes are active and are fixed:

    search active             0.10 * grade + 0.90 * search
    topics only               vector
    experience only           0.50 * grade + 0.50 * experience
    topics + experience       0.10 * grade + 0.70 * vector + 0.20 * experience
    nothing active            grade

grade is the raw historical grade count (a popularity prior, not scaled to
[0, 1]). experience is the mean of the selected experience metrics, each
normalized to [0, 1] with difficulty and workload inverted.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from campusfy.shared.schemas import (
    CourseRecord,
    ExperienceFilter,
    ScoredCourse,
    SortDirection,
    SortField,
    SortState,
)
from campusfy.shared.utils import to_number

# Metrics are stored on a 0-5 scale, GPA on a 4.0 scale
METRIC_SCALE = 5.0
GPA_SCALE = 4.0


@dataclass(frozen=True)
class RankingFlags:
    """Which search modes contributed to the candidate set."""

    has_search: bool = False
    has_topics: bool = False
    experience_filters: tuple[ExperienceFilter, ...] = field(default_factory=tuple)


# ─────────────────────────────────────────────────────────────────────────────
# Sub-scores
# ─────────────────────────────────────────────────────────────────────────────


def grade_score(record: CourseRecord) -> float:
    """Raw grade count; missing or non-positive counts score 0."""
    count = to_number(record.grade_count)
    if math.isnan(count) or count <= 0:
        return 0.0
    return count


def normalize_metric(value: Any) -> float:
    """
    Scale a 0-5 metric to [0, 1].

    Missing, unparseable and negative values count as 0.

    Example:
        >>> normalize_metric(2), normalize_metric("4"), normalize_metric(None)
        (0.4, 0.8, 0.0)
    """
    number = to_number(value)
    if math.isnan(number) or number < 0:
        return 0.0
    return number / METRIC_SCALE


def normalize_gpa(value: Any) -> float:
    """Scale a GPA to [0, 1]; missing or negative GPAs count as 0."""
    number = to_number(value)
    if math.isnan(number) or number < 0:
        return 0.0
    return number / GPA_SCALE


def experience_score(record: CourseRecord, filters: Iterable[ExperienceFilter]) -> float:
    """Mean of the selected experience metrics, 0 when none are selected."""
    selected = set(filters)
    scores: list[float] = []

    if ExperienceFilter.FUN in selected:
        scores.append(normalize_metric(record.indexed_fun))
    if ExperienceFilter.LIGHT_WORKLOAD in selected:
        scores.append(1 - normalize_metric(record.indexed_workload))
    if ExperienceFilter.EASY in selected:
        scores.append(1 - normalize_metric(record.indexed_difficulty))
    if ExperienceFilter.HIGH_GPA in selected:
        scores.append(normalize_gpa(record.gpa))

    return sum(scores) / len(scores) if scores else 0.0


# ─────────────────────────────────────────────────────────────────────────────
# Fusion
# ─────────────────────────────────────────────────────────────────────────────


def rank(candidate: ScoredCourse, flags: RankingFlags) -> float:
    """
    Fused ranking score for one candidate.

    Args:
        candidate: Record with its keyword and vector sub-scores
        flags: Active search modes

    Returns:
        The fused score (unbounded above, since grade counts are raw)
    """
    grade = grade_score(candidate.record)

    if flags.has_search:
        return 0.10 * grade + 0.90 * candidate.search_score

    has_experience = bool(flags.experience_filters)

    if flags.has_topics and not has_experience:
        return candidate.vector_score

    if has_experience and not flags.has_topics:
        return 0.50 * grade + 0.50 * experience_score(candidate.record, flags.experience_filters)

    if flags.has_topics and has_experience:
        experience = experience_score(candidate.record, flags.experience_filters)
        return 0.10 * grade + 0.70 * candidate.vector_score + 0.20 * experience

    return grade


def apply_ranking(candidates: Iterable[ScoredCourse], flags: RankingFlags) -> list[ScoredCourse]:
    """Copies of `candidates` with ranking_score filled in."""
    return [
        candidate.model_copy(update={"ranking_score": rank(candidate, flags)})
        for candidate in candidates
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Sorting
# ─────────────────────────────────────────────────────────────────────────────


def _gpa_key(course: ScoredCourse) -> float:
    gpa = to_number(course.record.gpa)
    return -1.0 if math.isnan(gpa) else gpa


def _sort_key(sort_field: SortField):
    if sort_field == SortField.GPA:
        return _gpa_key
    if sort_field == SortField.GRADE_COUNT:
        return lambda course: grade_score(course.record)
    return lambda course: course.ranking_score


def sort_courses(courses: Sequence[ScoredCourse], sort: SortState) -> list[ScoredCourse]:
    """
    Sort results by the active sort; inactive sorts keep the input order.

    Courses without a GPA sort as if their GPA were -1. Sorting is stable.
    """
    if not sort.is_active:
        return list(courses)
    return sorted(
        courses,
        key=_sort_key(sort.field),
        reverse=sort.direction == SortDirection.DESC,
    )


def toggle_direction(current: Optional[SortDirection]) -> SortDirection:
    """
    Next direction when a sort header is clicked: none, desc, asc, none.

    Example:
        >>> toggle_direction(SortDirection.NONE)
        <SortDirection.DESC: 'desc'>
    """
    if current is None or current == SortDirection.NONE:
        return SortDirection.DESC
    if current == SortDirection.DESC:
        return SortDirection.ASC
    return SortDirection.NONE
