"""
Schemas Module - Pydantic data models for the engine.
=====================================================

Defines the data contracts shared by the cache, index, sync and search
components:
- Course records and cache snapshots
- Search queries, sorting and results
- Sorting state
- Refresh status and progress updates
"""

import math
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    field_validator,
)

from campusfy.shared.utils import parse_iso, to_number, utc_now


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class ExperienceFilter(str, Enum):
    """Qualitative course preferences a student can pick."""

    EASY = "Easy"
    LIGHT_WORKLOAD = "Light Workload"
    FUN = "Fun"
    HIGH_GPA = "High GPA"


class SortField(str, Enum):
    """Fields the result list can be sorted by."""

    GPA = "gpa"
    RANKING_SCORE = "ranking_score"
    GRADE_COUNT = "grade_count"


class SortDirection(str, Enum):
    """Sort direction; NONE keeps the engine's default order."""

    ASC = "asc"
    DESC = "desc"
    NONE = "none"


class CacheState(str, Enum):
    """Per-tenant cache lifecycle state."""

    NO_CACHE = "no_cache"
    COLD_LOADING = "cold_loading"
    READY = "ready"
    BACKGROUND_REFRESHING = "background_refreshing"


# ─────────────────────────────────────────────────────────────────────────────
# Course Data Models
# ─────────────────────────────────────────────────────────────────────────────


class CourseRecord(BaseModel):
    """
    One course offering in a tenant's catalog.

    Tenant-specific attribute columns (breadth, gen_ed, boolean attribute
    flags, ...) are kept as extra fields and read through attribute().
    """

    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)

    # Identity
    class_code: str = Field(..., description="Unique course code within a tenant")
    course_name: str = Field(default="", description="Course title")
    course_desc: str = Field(default="", description="Course description")

    # Catalog details
    credits: Optional[Any] = Field(
        default=None, description="Numeric credits or a range string such as '1-3'"
    )
    min_credits: Optional[float] = Field(default=None, description="Lower credit bound")
    max_credits: Optional[float] = Field(default=None, description="Upper credit bound")
    requisites: Optional[Any] = Field(default=None, description="Prerequisite text")

    # Semantic search
    embedding: Optional[Any] = Field(
        default=None,
        validation_alias=AliasChoices("embedding", "vector_embedding"),
        description="Embedding vector, possibly string-encoded",
    )

    # Aggregate statistics
    grade_count: Optional[float] = Field(default=None, description="Historical grade count")
    gpa: Optional[float] = Field(default=None, description="Average GPA on a 4.0 scale")
    indexed_difficulty: Optional[float] = Field(default=None, description="Difficulty, 0-5")
    indexed_fun: Optional[float] = Field(default=None, description="Fun, 0-5")
    indexed_workload: Optional[float] = Field(default=None, description="Workload, 0-5")
    review_count: Optional[float] = Field(default=None, description="Number of reviews")
    overall_rating: Optional[float] = Field(default=None, description="Mean overall rating")

    updated_at: Optional[datetime] = Field(
        default=None, description="Backend modification time, when known"
    )

    @field_validator(
        "min_credits",
        "max_credits",
        "grade_count",
        "gpa",
        "indexed_difficulty",
        "indexed_fun",
        "indexed_workload",
        "review_count",
        "overall_rating",
        mode="before",
    )
    @classmethod
    def coerce_metric(cls, v: Any) -> Optional[float]:
        """Backends send numbers as strings or blanks; unparseable means missing."""
        if v is None:
            return None
        number = to_number(v)
        if math.isnan(number):
            return None
        return number

    @field_validator("updated_at", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: Any) -> Optional[datetime]:
        """Timestamps are compared against aware UTC datetimes."""
        return parse_iso(v)

    def attribute(self, key: str) -> Any:
        """Read a core or tenant-specific field, None when absent."""
        if key in type(self).model_fields:
            return getattr(self, key)
        extra = self.model_extra or {}
        return extra.get(key)

    def has_attribute(self, key: str) -> bool:
        """Whether the record carries a field at all (None counts as absent)."""
        return self.attribute(key) is not None


class CacheSnapshot(BaseModel):
    """
    A tenant's full catalog at one point in time.

    Snapshots are never edited in place: a refresh produces a new one.
    """

    model_config = ConfigDict(frozen=True)

    tenant: str = Field(..., description="Tenant schema name")
    records: tuple[CourseRecord, ...] = Field(default_factory=tuple)
    last_updated: datetime = Field(default_factory=utc_now)
    snapshot_id: str = Field(default_factory=lambda: uuid.uuid4().hex)

    _by_code: dict[str, CourseRecord] = PrivateAttr(default_factory=dict)

    @field_validator("last_updated", mode="before")
    @classmethod
    def coerce_last_updated(cls, v: Any) -> Any:
        return parse_iso(v) or v

    def model_post_init(self, __context: Any) -> None:
        self._by_code = {record.class_code: record for record in self.records}

    @property
    def total_count(self) -> int:
        """Number of courses in the snapshot."""
        return len(self.records)

    def get(self, class_code: str) -> Optional[CourseRecord]:
        """Look up a course by its code."""
        return self._by_code.get(class_code)

    def age(self, now: Optional[datetime] = None) -> timedelta:
        """Time elapsed since the snapshot was fetched."""
        return (now or utc_now()) - self.last_updated

    def is_stale(self, window: timedelta, now: Optional[datetime] = None) -> bool:
        """Whether the snapshot is at least `window` old."""
        return self.age(now) >= window


# ─────────────────────────────────────────────────────────────────────────────
# Search Models
# ─────────────────────────────────────────────────────────────────────────────


class SortState(BaseModel):
    """Active sort field and direction."""

    model_config = ConfigDict(frozen=True)

    field: SortField = SortField.RANKING_SCORE
    direction: SortDirection = SortDirection.NONE

    @property
    def is_active(self) -> bool:
        return self.direction != SortDirection.NONE

    @property
    def is_gpa_sort(self) -> bool:
        return self.field == SortField.GPA and self.is_active


class SearchQuerySpec(BaseModel):
    """Everything one search interaction asks for."""

    model_config = ConfigDict(frozen=True)

    query: str = Field(default="", description="Free-text query")
    topics: list[str] = Field(default_factory=list, description="Semantic topics")
    filters: dict[str, Any] = Field(
        default_factory=dict, description="Tenant attribute filters, key to value(s)"
    )
    experience_filters: list[ExperienceFilter] = Field(default_factory=list)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)
    sort: SortState = Field(default_factory=SortState)

    def has_search(self, min_length: int = 2) -> bool:
        """Whether the free-text query is long enough to drive the search."""
        return len(self.query.strip()) >= min_length

    @property
    def has_topics(self) -> bool:
        return any(topic.strip() for topic in self.topics)


class VectorHit(BaseModel):
    """One nearest-neighbour result."""

    model_config = ConfigDict(frozen=True)

    class_code: str
    score: float


class ScoredCourse(BaseModel):
    """A candidate course with the sub-scores the ranking needs."""

    model_config = ConfigDict(frozen=True)

    record: CourseRecord
    search_score: float = 0.0
    vector_score: float = 0.0
    ranking_score: float = 0.0

    @property
    def class_code(self) -> str:
        return self.record.class_code


class SearchResult(BaseModel):
    """One page of ranked results with pagination metadata."""

    courses: list[ScoredCourse] = Field(default_factory=list)
    total: int = 0
    total_pages: int = 1
    page: int = 1
    limit: int = 20

    @property
    def class_codes(self) -> list[str]:
        return [course.class_code for course in self.courses]


# ─────────────────────────────────────────────────────────────────────────────
# Refresh Models
# ─────────────────────────────────────────────────────────────────────────────


class ProgressUpdate(BaseModel):
    """A progress milestone reported while loading a catalog."""

    model_config = ConfigDict(frozen=True)

    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    status: str = ""
    phase: Optional[str] = None
    completed: int = 0
    total: int = 0


class RefreshStatus(BaseModel):
    """What a view needs to render the cache state of one tenant."""

    state: CacheState = CacheState.NO_CACHE
    is_loading: bool = False
    background_mode: bool = False
    progress: float = 0.0
    status: str = ""
    error: Optional[str] = None
    notice: Optional[str] = None
