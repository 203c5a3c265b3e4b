"""
Campusfy - Course catalog cache and hybrid search engine
========================================================

Keeps a locally cached, periodically refreshed copy of a university's course
catalog and answers searches over it by fusing:

- keyword matching on course codes, names and descriptions
- semantic topic similarity from an in-memory vector index
- tenant-defined attribute filters
- "experience" preferences (Easy, Light Workload, Fun, High GPA)

into one ranking score per course.
"""

__version__ = "0.1.0"
__author__ = "Campusfy Team"
__license__ = "MIT"

__all__ = [
    "__version__",
    "__author__",
    "__license__",
    "shared",
    "storage",
    "indexing",
    "sync",
    "search",
    "cli",
]
