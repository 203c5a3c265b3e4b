"""
Keyword Module - Free-text course matching.
===========================================

Three passes, the first one that finds anything wins:

1. Exact course code (case-insensitive, whitespace-insensitive), score 1.0
2. Course code prefix ("COMP SCI 2" -> COMP SCI 200, 220, ...), ordered by
   course number, scores just under 1.0
3. Fuzzy match over code, name and description with rapidfuzz

Queries shorter than the minimum length return the whole catalog ordered by
popularity.

Before matching, common department spellings are rewritten to catalog codes
("cs300" -> "COMP SCI 300", "Risk Management" -> "R M I").
"""

import math
import re
from typing import Iterable, Optional, Sequence

from rapidfuzz import fuzz, process, utils

from campusfy.shared.config import SearchConfig, get_settings
from campusfy.shared.logging import get_logger
from campusfy.shared.schemas import CourseRecord, ScoredCourse
from campusfy.shared.utils import compact_code, course_number, to_number

logger = get_logger(__name__)

# Field weights for fuzzy matching
FIELD_WEIGHTS: dict[str, float] = {
    "class_code": 10.0,
    "course_name": 1.5,
    "course_desc": 0.8,
}

PREFIX_BASE_SCORE = 0.9

# Common department spellings -> catalog department code
DEPARTMENT_ALIASES: dict[str, str] = {
    "CS": "COMP SCI",
    "COMPSCI": "COMP SCI",
    "COMPUTER SCIENCE": "COMP SCI",
    "POPULATION HEALTH": "POP HLTH",
    "POPHEALTH": "POP HLTH",
    "ACCOUNTING": "ACCT I S",
    "ACCT": "ACCT I S",
    "ACCTIS": "ACCT I S",
    "ACCT IS": "ACCT I S",
    "ACCOUNTING AND INFORMATION SYSTEMS": "ACCT I S",
    "ACCOUNTING INFO SYS": "ACCT I S",
    "ACCOUNTING INFORMATION SYSTEMS": "ACCT I S",
    "RISK MANAGEMENT": "R M I",
    "RMI": "R M I",
    "RISK": "R M I",
    "EPD": "E P D",
    "ENGINEERING PROFESSIONAL DEVELOPMENT": "E P D",
    "MHR": "M H R",
    "MANAGEMENT AND HUMAN RESOURCES": "M H R",
}

_TRAILING_NUMBER = re.compile(r"\s*(\d+)\s*$")
_GLUED_CODE = re.compile(r"\b([A-Z]+)(\d+)\b")


def normalize_query(query: str) -> str:
    """
    Rewrite department abbreviations and glued codes into catalog form.

    Example:
        >>> normalize_query("cs300")
        'COMP SCI 300'
        >>> normalize_query("Risk Management")
        'R M I'
        >>> normalize_query("math221")
        'MATH 221'
    """
    upper = query.upper().strip()
    number_match = _TRAILING_NUMBER.search(upper)
    number = number_match.group(1) if number_match else ""
    department = upper[: number_match.start()].strip() if number_match else upper

    alias = DEPARTMENT_ALIASES.get(department)
    if alias is None:
        alias = DEPARTMENT_ALIASES.get(re.sub(r"\s+", "", department))
    if alias is not None:
        return f"{alias} {number}" if number else alias

    if _GLUED_CODE.search(upper):
        return _GLUED_CODE.sub(r"\1 \2", upper)
    return query


def _popularity_key(record: CourseRecord) -> tuple[float, str]:
    count = to_number(record.grade_count)
    return (-(0.0 if math.isnan(count) else count), record.class_code)


def _code_variants(query: str) -> set[str]:
    stripped = query.strip()
    return {stripped.upper(), stripped, compact_code(stripped), stripped.lower()}


class KeywordMatcher:
    """
    Matches a free-text query against a catalog.

    Args:
        min_query_length: Queries shorter than this list everything
        fuzzy_threshold: Minimum rapidfuzz score (0-100) a field must reach

    Example:
        >>> matcher = KeywordMatcher()
        >>> hits = matcher.match(snapshot.records, "comp sci 300")
        >>> hits[0].search_score
        1.0
    """

    def __init__(
        self,
        min_query_length: Optional[int] = None,
        fuzzy_threshold: Optional[float] = None,
        search_config: Optional[SearchConfig] = None,
    ):
        config = search_config or get_settings().search
        self.min_query_length = (
            min_query_length if min_query_length is not None else config.min_query_length
        )
        self.fuzzy_threshold = (
            fuzzy_threshold if fuzzy_threshold is not None else config.fuzzy_threshold
        )

    def match(self, records: Sequence[CourseRecord], query: str) -> list[ScoredCourse]:
        """
        Run the matching passes.

        Args:
            records: Catalog in iteration order
            query: Raw user query

        Returns:
            Matched courses with search_score in [0, 1], best first
        """
        query = (query or "").strip()
        if len(query) < self.min_query_length:
            return [ScoredCourse(record=r) for r in sorted(records, key=_popularity_key)]

        normalized = normalize_query(query)
        if normalized != query:
            logger.debug(f"Normalized query '{query}' to '{normalized}'")
            query = normalized

        exact = self.exact_matches(records, query)
        if exact:
            logger.debug(f"Exact code match for '{query}': {len(exact)}")
            return exact

        prefixed = self.prefix_matches(records, query)
        if prefixed:
            logger.debug(f"Prefix code match for '{query}': {len(prefixed)}")
            return prefixed

        fuzzy = self.fuzzy_matches(records, query)
        logger.debug(f"Fuzzy match for '{query}': {len(fuzzy)}")
        return fuzzy

    # ─────────────────────────────────────────────────────────────────────
    # Passes
    # ─────────────────────────────────────────────────────────────────────

    def exact_matches(self, records: Iterable[CourseRecord], query: str) -> list[ScoredCourse]:
        """Courses whose code equals the query, ignoring case and spaces."""
        variants = _code_variants(query)
        compact_query = compact_code(query)
        return [
            ScoredCourse(record=record, search_score=1.0)
            for record in records
            if record.class_code in variants
            or compact_code(record.class_code) == compact_query
        ]

    def prefix_matches(self, records: Iterable[CourseRecord], query: str) -> list[ScoredCourse]:
        """Courses whose code starts with the query, by course number."""
        compact_query = compact_code(query)
        if not compact_query:
            return []

        hits: list[ScoredCourse] = []
        for record in records:
            compact = compact_code(record.class_code)
            if not compact.startswith(compact_query):
                continue
            # A longer unmatched tail scores lower; equal length is an exact match
            score = PREFIX_BASE_SCORE + (1 - PREFIX_BASE_SCORE) * len(compact_query) / (
                len(compact) + 1
            )
            hits.append(ScoredCourse(record=record, search_score=score))

        hits.sort(key=lambda hit: course_number(hit.class_code))
        return hits

    def fuzzy_matches(self, records: Sequence[CourseRecord], query: str) -> list[ScoredCourse]:
        """
        Weighted fuzzy match over code, name and description.

        A course matches when any single field reaches the threshold; its
        score is the weighted mean of the field scores over non-empty fields.
        """
        if not records:
            return []

        field_scores: dict[str, dict[int, float]] = {}
        for field_name in FIELD_WEIGHTS:
            choices = [str(getattr(record, field_name) or "") for record in records]
            field_scores[field_name] = self._score_field(query, choices, field_name)

        # Codes also match with their spaces removed
        compact_choices = [compact_code(record.class_code) for record in records]
        for index, score in self._score_field(
            compact_code(query), compact_choices, "class_code"
        ).items():
            current = field_scores["class_code"].get(index, 0.0)
            field_scores["class_code"][index] = max(current, score)

        hits: list[ScoredCourse] = []
        for index, record in enumerate(records):
            scores = {name: field_scores[name].get(index, 0.0) for name in FIELD_WEIGHTS}
            if max(scores.values()) < self.fuzzy_threshold:
                continue

            present = [name for name in FIELD_WEIGHTS if getattr(record, name)]
            total_weight = sum(FIELD_WEIGHTS[name] for name in present)
            if total_weight <= 0:
                continue
            weighted = sum(FIELD_WEIGHTS[name] * scores[name] for name in present)
            hits.append(ScoredCourse(record=record, search_score=weighted / total_weight / 100))

        hits.sort(key=lambda hit: -hit.search_score)
        return hits

    @staticmethod
    def _score_field(query: str, choices: list[str], field_name: str) -> dict[int, float]:
        scorer = fuzz.WRatio if field_name == "class_code" else fuzz.partial_ratio
        results = process.extract(
            query,
            choices,
            scorer=scorer,
            processor=utils.default_process,
            limit=None,
        )
        return {index: float(score) for _, score, index in results}
