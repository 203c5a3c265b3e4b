"""
Tests Package - Unit and integration tests for Campusfy.
========================================================

Test modules:
- test_storage: Local cache store tests
- test_indexing: Vector index and embedding client tests
- test_ranking: Ranking fusion and sorting tests
- test_search: Keyword matcher, filter registry, hybrid search tests
- test_sync: Cancellation, progress, backends, refresh coordinator tests
- test_config: Settings and CLI tests

Run tests with:
    pytest tests/
    pytest tests/ -v -m "not slow"
"""
