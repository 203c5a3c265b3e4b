"""
Cache Store Module - Durable per-tenant course catalog cache.
=============================================================

One JSON document per tenant holds the full catalog:

    {cache_dir}/{schema}.json       {"lastUpdated", "totalClasses", "snapshotId", "classes"}
    {cache_dir}/{schema}.meta.json  {"key": "lastUpdated", "value", "totalClasses"}

The small sidecar answers "is there a cache?" and "how old is it?" without
deserializing the catalog. Writes go through a temp file and a rename, and
the catalog is committed before its sidecar, so a reader never sees a
half-written snapshot or a sidecar pointing at missing data.

Reads never raise: unreadable or corrupt storage is reported as "no cache".
"""

import asyncio
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError

from campusfy.shared.config import get_settings
from campusfy.shared.errors import StorageError
from campusfy.shared.logging import get_logger
from campusfy.shared.schemas import CacheSnapshot, CourseRecord
from campusfy.shared.utils import (
    atomic_write_json,
    load_json,
    parse_iso,
    remove_file,
    to_iso,
    utc_now,
)

logger = get_logger(__name__)

META_KEY = "lastUpdated"


class LocalCacheStore:
    """
    File-backed catalog cache with atomic snapshot replacement.

    Features:
    - Cheap existence and staleness probes via a metadata sidecar
    - All-or-nothing snapshot commits
    - Memoised staleness verdicts (short TTL) to avoid repeated probes
    - Single-course lookup and explicit clear

    Example:
        >>> store = LocalCacheStore(Path("data/cache"))
        >>> await store.write_snapshot("wisco", records, utc_now())
        >>> await store.has_cached_data("wisco")
        True
    """

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        probe_ttl_seconds: Optional[float] = None,
        expiration_days: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the store.

        Args:
            cache_dir: Directory holding the per-tenant files
            probe_ttl_seconds: How long a should_refresh() verdict is reused
            expiration_days: Nominal cache lifetime, for display
            clock: Monotonic clock used for the verdict TTL
        """
        settings = get_settings()
        self.cache_dir = Path(cache_dir) if cache_dir is not None else settings.cache_dir
        self.probe_ttl_seconds = (
            probe_ttl_seconds
            if probe_ttl_seconds is not None
            else settings.cache.staleness_probe_ttl_seconds
        )
        self.expiration_days = (
            expiration_days if expiration_days is not None else settings.cache.expiration_days
        )
        self._clock = clock
        self._refresh_verdicts: dict[str, tuple[float, bool]] = {}

    # ─────────────────────────────────────────────────────────────────────
    # Paths
    # ─────────────────────────────────────────────────────────────────────

    def snapshot_path(self, tenant: str) -> Path:
        return self.cache_dir / f"{tenant}.json"

    def meta_path(self, tenant: str) -> Path:
        return self.cache_dir / f"{tenant}.meta.json"

    # ─────────────────────────────────────────────────────────────────────
    # Reads (never raise)
    # ─────────────────────────────────────────────────────────────────────

    def _read_meta(self, tenant: str) -> Optional[dict[str, Any]]:
        path = self.meta_path(tenant)
        if not path.exists():
            return None
        meta = load_json(path)
        if not isinstance(meta, dict) or meta.get("key") != META_KEY:
            raise ValueError(f"Malformed cache metadata in {path.name}")
        return meta

    async def has_cached_data(self, tenant: str) -> bool:
        """Whether a non-empty snapshot exists, without loading it."""
        try:
            meta = await asyncio.to_thread(self._read_meta, tenant)
        except Exception as e:
            logger.warning(f"Cache probe failed for {tenant}, treating as empty: {e}")
            return False
        return bool(meta) and int(meta.get("totalClasses") or 0) > 0

    async def read_last_updated(self, tenant: str) -> Optional[datetime]:
        """Timestamp of the committed snapshot, or None."""
        try:
            meta = await asyncio.to_thread(self._read_meta, tenant)
        except Exception as e:
            logger.warning(f"Could not read cache timestamp for {tenant}: {e}")
            return None
        if not meta:
            return None
        return parse_iso(meta.get("value"))

    def _read_snapshot(self, tenant: str) -> Optional[CacheSnapshot]:
        path = self.snapshot_path(tenant)
        if not path.exists():
            return None

        payload = load_json(path)
        if not isinstance(payload, dict) or not isinstance(payload.get("classes"), list):
            raise ValueError(f"Malformed snapshot in {path.name}")

        last_updated = parse_iso(payload.get("lastUpdated"))
        if last_updated is None:
            raise ValueError(f"Snapshot {path.name} has no lastUpdated timestamp")

        records = tuple(CourseRecord.model_validate(item) for item in payload["classes"])
        kwargs: dict[str, Any] = {
            "tenant": tenant,
            "records": records,
            "last_updated": last_updated,
        }
        if payload.get("snapshotId"):
            kwargs["snapshot_id"] = payload["snapshotId"]
        return CacheSnapshot(**kwargs)

    async def read_snapshot(self, tenant: str) -> Optional[CacheSnapshot]:
        """Load the full snapshot; None when absent or unreadable."""
        try:
            snapshot = await asyncio.to_thread(self._read_snapshot, tenant)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Cached snapshot for {tenant} is unusable: {e}")
            return None

        if snapshot is not None:
            logger.debug(f"Read {snapshot.total_count} cached classes for {tenant}")
        return snapshot

    async def get_record(self, tenant: str, class_code: str) -> Optional[CourseRecord]:
        """Look up one course in the cached snapshot."""
        snapshot = await self.read_snapshot(tenant)
        if snapshot is None:
            return None
        return snapshot.get(class_code)

    async def cache_age(self, tenant: str) -> Optional[timedelta]:
        """How long ago the snapshot was committed."""
        last_updated = await self.read_last_updated(tenant)
        if last_updated is None:
            return None
        return utc_now() - last_updated

    async def should_refresh(self, tenant: str, window: timedelta) -> bool:
        """
        Decide whether the cached snapshot is stale.

        True when there is no timestamp, when the snapshot is at least
        `window` old, or when the probe itself fails. The verdict is reused
        for probe_ttl_seconds.
        """
        now = self._clock()
        cached = self._refresh_verdicts.get(tenant)
        if cached is not None and now - cached[0] < self.probe_ttl_seconds:
            return cached[1]

        try:
            meta = await asyncio.to_thread(self._read_meta, tenant)
            last_updated = parse_iso(meta.get("value")) if meta else None
            verdict = last_updated is None or (utc_now() - last_updated) >= window
        except Exception as e:
            logger.warning(f"Staleness probe failed for {tenant}, assuming stale: {e}")
            verdict = True

        self._refresh_verdicts[tenant] = (now, verdict)
        return verdict

    # ─────────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────────

    def _write_snapshot(self, snapshot: CacheSnapshot) -> None:
        stamp = to_iso(snapshot.last_updated)
        payload = {
            "lastUpdated": stamp,
            "totalClasses": snapshot.total_count,
            "snapshotId": snapshot.snapshot_id,
            "classes": [
                record.model_dump(mode="json", exclude_none=True) for record in snapshot.records
            ],
        }
        atomic_write_json(self.snapshot_path(snapshot.tenant), payload)
        atomic_write_json(
            self.meta_path(snapshot.tenant),
            {"key": META_KEY, "value": stamp, "totalClasses": snapshot.total_count},
        )

    async def write_snapshot(
        self,
        tenant: str,
        records: Iterable[CourseRecord],
        fetched_at: Optional[datetime] = None,
    ) -> CacheSnapshot:
        """
        Replace the tenant's snapshot in one commit.

        Args:
            tenant: Tenant schema name
            records: Full catalog
            fetched_at: When the catalog was fetched (defaults to now)

        Returns:
            The committed snapshot

        Raises:
            StorageError: If the snapshot could not be written
        """
        snapshot = CacheSnapshot(
            tenant=tenant,
            records=tuple(records),
            last_updated=fetched_at or utc_now(),
        )
        try:
            await asyncio.to_thread(self._write_snapshot, snapshot)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write cache for {tenant}: {e}") from e

        self._refresh_verdicts.pop(tenant, None)
        logger.info(f"Cached {snapshot.total_count} classes for {tenant}")
        return snapshot

    def _clear(self, tenant: str) -> bool:
        # Sidecar first so probes never report data that is already gone
        removed_meta = remove_file(self.meta_path(tenant))
        removed_data = remove_file(self.snapshot_path(tenant))
        return removed_meta or removed_data

    async def clear(self, tenant: str) -> bool:
        """
        Delete the tenant's cache.

        Returns:
            True if anything was removed

        Raises:
            StorageError: If the files could not be removed
        """
        try:
            removed = await asyncio.to_thread(self._clear, tenant)
        except OSError as e:
            raise StorageError(f"Failed to clear cache for {tenant}: {e}") from e

        self._refresh_verdicts.pop(tenant, None)
        if removed:
            logger.info(f"Cleared cache for {tenant}")
        return removed
