"""
Storage Module - Durable client-side catalog cache.
===================================================

- cache_store: per-tenant snapshot files with atomic replacement
"""

from campusfy.storage.cache_store import LocalCacheStore

__all__ = ["LocalCacheStore"]
