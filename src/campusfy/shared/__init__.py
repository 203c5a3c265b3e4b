"""
Shared Module - Configuration, logging, errors, schemas and utilities.
======================================================================

Foundational pieces used by every other sub-package:

- config: YAML + environment settings, tenant definitions
- logging: Rich logging setup
- errors: exception taxonomy
- schemas: Pydantic data models
- utils: timestamps, course codes, atomic JSON I/O
"""

from campusfy.shared.config import Settings, TenantConfig, get_settings
from campusfy.shared.errors import (
    BackendError,
    BackendTimeoutError,
    CampusfyError,
    EmbeddingDimensionError,
    RefreshCancelledError,
    StorageError,
    UnknownTenantError,
)
from campusfy.shared.logging import get_logger, setup_logging
from campusfy.shared.schemas import (
    CacheSnapshot,
    CacheState,
    CourseRecord,
    ExperienceFilter,
    ProgressUpdate,
    RefreshStatus,
    ScoredCourse,
    SearchQuerySpec,
    SearchResult,
    SortDirection,
    SortField,
    SortState,
    VectorHit,
)

__all__ = [
    # Config
    "get_settings",
    "Settings",
    "TenantConfig",
    # Logging
    "get_logger",
    "setup_logging",
    # Errors
    "CampusfyError",
    "UnknownTenantError",
    "BackendError",
    "BackendTimeoutError",
    "StorageError",
    "RefreshCancelledError",
    "EmbeddingDimensionError",
    # Schemas
    "CourseRecord",
    "CacheSnapshot",
    "CacheState",
    "ExperienceFilter",
    "ProgressUpdate",
    "RefreshStatus",
    "ScoredCourse",
    "SearchQuerySpec",
    "SearchResult",
    "SortDirection",
    "SortField",
    "SortState",
    "VectorHit",
]
