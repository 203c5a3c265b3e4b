"""
Sync Module - Keeping the local catalog cache fresh.
====================================================

- coordinator: per-tenant refresh state machine (cold load, background
  refresh, session guard, retries)
- backend: catalog sources (REST API, in-memory)
- cancellation: cooperative cancel tokens
- progress: weighted phase progress reporting
"""

from campusfy.sync.backend import CourseBackend, InMemoryCourseBackend, RestCourseBackend
from campusfy.sync.cancellation import CancelToken
from campusfy.sync.coordinator import CacheRefreshCoordinator, RefreshState
from campusfy.sync.progress import ProgressTracker

__all__ = [
    "CacheRefreshCoordinator",
    "RefreshState",
    "CourseBackend",
    "RestCourseBackend",
    "InMemoryCourseBackend",
    "CancelToken",
    "ProgressTracker",
]
