"""
Coordinator Module - Cache refresh state machine.
=================================================

Per tenant, the coordinator moves between:

    no_cache -> cold_loading -> ready
    ready -> background_refreshing -> ready

It is the only writer of a tenant's snapshot. Every load runs as a single
in-flight task per tenant; later callers attach to it and receive its
progress (the last update is replayed when they subscribe). Each task owns a
CancelToken and checks it before every state change, so a cancelled refresh
never commits anything.

Adopting a snapshot always rebuilds the vector index first and then swaps
snapshot and index together, so the search side never sees an index built
from a different snapshot.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional

from campusfy.indexing.vector_index import VectorIndex
from campusfy.shared.config import get_settings
from campusfy.shared.errors import (
    BackendError,
    BackendTimeoutError,
    CampusfyError,
    RefreshCancelledError,
)
from campusfy.shared.logging import get_logger
from campusfy.shared.schemas import (
    CacheSnapshot,
    CacheState,
    CourseRecord,
    ProgressUpdate,
    RefreshStatus,
)
from campusfy.shared.utils import utc_now
from campusfy.storage.cache_store import LocalCacheStore
from campusfy.sync.backend import CourseBackend
from campusfy.sync.cancellation import CancelToken
from campusfy.sync.progress import ProgressCallback, ProgressTracker

logger = get_logger(__name__)

STATUS_CHECKING = "Checking for updates..."
STATUS_UPDATED = "Cache updated!"
STATUS_LOADING = "Loading course data..."
STATUS_READY = "Ready!"
BACKGROUND_FAILURE = "Failed to update course data. You can continue using cached data."
BLOCKING_FAILURE = "Failed to load course data. Please try again."


# ─────────────────────────────────────────────────────────────────────────────
# Refresh State
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class TenantRefreshState:
    """Refresh bookkeeping for one tenant within one session."""

    checked: bool = False
    task: Optional[asyncio.Task] = None
    token: Optional[CancelToken] = None
    background: bool = False
    last_progress: Optional[ProgressUpdate] = None
    subscribers: list[ProgressCallback] = field(default_factory=list)
    status: RefreshStatus = field(default_factory=RefreshStatus)

    @property
    def in_flight(self) -> bool:
        return self.task is not None and not self.task.done()


class RefreshState:
    """
    Session-scoped refresh state, injected into the coordinator.

    Holds, per tenant, whether the cache has been checked this session, the
    in-flight task and its cancel token, and the status shown to the view.
    A new RefreshState (or reset()) is the equivalent of a full reload.
    """

    def __init__(self) -> None:
        self._tenants: dict[str, TenantRefreshState] = {}

    def for_tenant(self, tenant: str) -> TenantRefreshState:
        if tenant not in self._tenants:
            self._tenants[tenant] = TenantRefreshState()
        return self._tenants[tenant]

    def has_checked(self, tenant: str) -> bool:
        return self.for_tenant(tenant).checked

    def reset(self) -> None:
        """Forget everything, cancelling whatever is still in flight."""
        for state in self._tenants.values():
            if state.token is not None:
                state.token.cancel("session reset")
        self._tenants.clear()


# ─────────────────────────────────────────────────────────────────────────────
# Coordinator
# ─────────────────────────────────────────────────────────────────────────────


class CacheRefreshCoordinator:
    """
    Keeps each tenant's cached catalog loaded, fresh and indexed.

    Features:
    - Cache-first reads with background refresh of stale snapshots
    - Blocking cold loads with a bounded timeout
    - One in-flight load per tenant, shared by every caller
    - Cooperative cancellation: cancelled loads never commit
    - Status and notices for the view instead of exceptions

    Example:
        >>> coordinator = CacheRefreshCoordinator(RestCourseBackend())
        >>> status = await coordinator.check_and_load("wisco")
        >>> snapshot = coordinator.current_snapshot("wisco")
    """

    def __init__(
        self,
        backend: CourseBackend,
        store: Optional[LocalCacheStore] = None,
        refresh_state: Optional[RefreshState] = None,
        freshness_window: Optional[timedelta] = None,
        cold_load_timeout: Optional[float] = None,
        index_factory: Callable[[], VectorIndex] = VectorIndex,
    ):
        """
        Initialize the coordinator.

        Args:
            backend: Catalog source
            store: Local cache (default: configured cache directory)
            refresh_state: Session state (default: a fresh session)
            freshness_window: Age at which a snapshot is stale
            cold_load_timeout: Seconds before a blocking load gives up
            index_factory: Builds empty vector indexes
        """
        cache_config = get_settings().cache

        self.backend = backend
        self.store = store or LocalCacheStore()
        self.refresh_state = refresh_state or RefreshState()
        self.freshness_window = freshness_window or timedelta(hours=cache_config.freshness_hours)
        self.cold_load_timeout = (
            cold_load_timeout if cold_load_timeout is not None else cache_config.cold_load_timeout
        )
        self._index_factory = index_factory

        self._snapshots: dict[str, CacheSnapshot] = {}
        self._indexes: dict[str, VectorIndex] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # ─────────────────────────────────────────────────────────────────────
    # Read-only views
    # ─────────────────────────────────────────────────────────────────────

    def current_snapshot(self, tenant: str) -> Optional[CacheSnapshot]:
        """The adopted snapshot, if any."""
        return self._snapshots.get(tenant)

    def current_index(self, tenant: str) -> Optional[VectorIndex]:
        """The vector index built from the adopted snapshot."""
        return self._indexes.get(tenant)

    def status(self, tenant: str) -> RefreshStatus:
        """A copy of the tenant's refresh status."""
        return self.refresh_state.for_tenant(tenant).status.model_copy()

    async def has_cached_data(self, tenant: str) -> bool:
        if tenant in self._snapshots:
            return self._snapshots[tenant].total_count > 0
        return await self.store.has_cached_data(tenant)

    # ─────────────────────────────────────────────────────────────────────
    # Snapshot adoption
    # ─────────────────────────────────────────────────────────────────────

    def _lock(self, tenant: str) -> asyncio.Lock:
        if tenant not in self._locks:
            self._locks[tenant] = asyncio.Lock()
        return self._locks[tenant]

    def _adopt(self, snapshot: CacheSnapshot) -> None:
        index = self._index_factory()
        index.build(snapshot.records, source_id=snapshot.snapshot_id)
        # No await between these two assignments
        self._snapshots[snapshot.tenant] = snapshot
        self._indexes[snapshot.tenant] = index
        logger.info(
            f"Adopted snapshot for {snapshot.tenant}: {snapshot.total_count} classes, "
            f"{index.size} indexed"
        )

    async def _cached_snapshot(self, tenant: str) -> Optional[CacheSnapshot]:
        """Adopted snapshot, else the one on disk (adopting it)."""
        snapshot = self._snapshots.get(tenant)
        if snapshot is not None:
            return snapshot

        snapshot = await self.store.read_snapshot(tenant)
        if snapshot is None or snapshot.total_count == 0:
            return None

        # A refresh may have committed while we were reading
        if tenant in self._snapshots:
            return self._snapshots[tenant]

        self._adopt(snapshot)
        status = self.refresh_state.for_tenant(tenant).status
        if status.state == CacheState.NO_CACHE:
            status.state = CacheState.READY
        return snapshot

    # ─────────────────────────────────────────────────────────────────────
    # Progress fan-out
    # ─────────────────────────────────────────────────────────────────────

    def _broadcast(self, tenant: str, token: CancelToken) -> ProgressCallback:
        state = self.refresh_state.for_tenant(tenant)

        def _publish(update: ProgressUpdate) -> None:
            if state.token is not token:
                return
            state.last_progress = update
            state.status.progress = update.progress
            state.status.status = update.status
            for callback in list(state.subscribers):
                try:
                    callback(update)
                except Exception as e:
                    logger.warning(f"Progress callback failed: {e}")

        return _publish

    def _subscribe(self, tenant: str, callback: Optional[ProgressCallback]) -> None:
        if callback is None:
            return
        state = self.refresh_state.for_tenant(tenant)
        state.subscribers.append(callback)
        if state.last_progress is not None:
            try:
                callback(state.last_progress)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    def _unsubscribe(self, tenant: str, callback: Optional[ProgressCallback]) -> None:
        if callback is None:
            return
        subscribers = self.refresh_state.for_tenant(tenant).subscribers
        if callback in subscribers:
            subscribers.remove(callback)

    # ─────────────────────────────────────────────────────────────────────
    # Load pipeline
    # ─────────────────────────────────────────────────────────────────────

    async def _fetch_records(
        self,
        tenant: str,
        token: CancelToken,
        tracker: ProgressTracker,
        incremental: bool,
    ) -> list[CourseRecord]:
        tracker.start_phase("read_metadata")
        base = self._snapshots.get(tenant) if incremental else None
        tracker.complete_phase()

        if base is not None:
            tracker.start_phase("fetch_batches", total=1)
            try:
                updates = await self.backend.list_updates_since(
                    tenant, base.last_updated, cancel_token=token
                )
            except NotImplementedError:
                logger.info(f"Incremental sync unavailable for {tenant}, fetching full catalog")
            else:
                tracker.complete_phase()
                token.raise_if_cancelled()
                tracker.start_phase("merge_data")
                merged = {record.class_code: record for record in base.records}
                for record in updates:
                    merged[record.class_code] = record
                logger.info(f"Merged {len(updates)} updated classes into {tenant}")
                return list(merged.values())

        tracker.start_phase("fetch_batches")

        def _on_batch(completed: int, total: int) -> None:
            tracker.advance(
                fraction=completed / total if total else 1.0,
                status=f"Downloading course data... ({completed}/{total})",
            )

        records = await self.backend.list_courses(tenant, cancel_token=token, on_batch=_on_batch)
        tracker.complete_phase()
        token.raise_if_cancelled()

        tracker.start_phase("merge_data")
        # Duplicate codes from overlapping batches: last one wins
        return list({record.class_code: record for record in records}.values())

    async def _load_and_commit(
        self,
        tenant: str,
        token: CancelToken,
        background: bool,
        incremental: bool,
    ) -> CacheSnapshot:
        tracker = ProgressTracker(self._broadcast(tenant, token))
        tracker.start_phase(
            "initial_check", status=STATUS_CHECKING if background else STATUS_LOADING
        )
        token.raise_if_cancelled()
        tracker.complete_phase()

        fetched_at = utc_now()
        records = await self._fetch_records(tenant, token, tracker, incremental)
        tracker.complete_phase()

        tracker.start_phase("write_chunks", total=1)
        async with self._lock(tenant):
            # Last check: past this point the commit and adoption happen together
            token.raise_if_cancelled()
            token.clear_timeout()
            snapshot = await self.store.write_snapshot(tenant, records, fetched_at)
            tracker.complete_phase()
            tracker.start_phase("finalize")
            self._adopt(snapshot)

        tracker.finish(STATUS_UPDATED if background else STATUS_READY)
        return snapshot

    def _record_failure(self, state: TenantRefreshState, background: bool, error: Exception) -> None:
        status = state.status
        status.is_loading = False
        if background:
            status.state = CacheState.READY
            status.notice = BACKGROUND_FAILURE
            status.error = None
            logger.warning(f"Background refresh failed, keeping cached data: {error}")
        else:
            status.state = CacheState.NO_CACHE
            status.error = BLOCKING_FAILURE
            logger.error(f"Cold load failed: {error}")

    async def _run_refresh(
        self,
        tenant: str,
        token: CancelToken,
        background: bool,
        incremental: bool,
    ) -> CacheSnapshot:
        state = self.refresh_state.for_tenant(tenant)
        state.status = RefreshStatus(
            state=CacheState.BACKGROUND_REFRESHING if background else CacheState.COLD_LOADING,
            is_loading=True,
            background_mode=background,
            status=STATUS_CHECKING if background else STATUS_LOADING,
        )
        logger.info(f"{'Background refresh' if background else 'Cold load'} started for {tenant}")

        # A timed-out load is detached from the state; it must not touch it afterwards
        def _owned() -> bool:
            return state.token is token

        try:
            snapshot = await self._load_and_commit(tenant, token, background, incremental)
        except RefreshCancelledError as e:
            if token.timed_out and not background:
                error = self._timeout_error(tenant)
                if _owned():
                    self._record_failure(state, background, error)
                raise error from e
            logger.info(f"Refresh for {tenant} cancelled ({e.reason}); nothing committed")
            if _owned():
                state.status.is_loading = False
                state.status.state = (
                    CacheState.READY if tenant in self._snapshots else CacheState.NO_CACHE
                )
            raise
        except Exception as e:
            if _owned():
                self._record_failure(state, background, e)
            raise
        else:
            if _owned():
                state.status.state = CacheState.READY
                state.status.is_loading = False
                state.status.error = None
                state.status.notice = None
                state.status.progress = 1.0
                state.status.status = STATUS_UPDATED if background else STATUS_READY
            return snapshot
        finally:
            token.clear_timeout()
            token.detach()
            if _owned():
                self._detach(state)

    def _timeout_error(self, tenant: str) -> BackendTimeoutError:
        return BackendTimeoutError(
            f"Loading {tenant} took longer than {self.cold_load_timeout:g}s"
        )

    @staticmethod
    def _detach(state: TenantRefreshState) -> None:
        state.task = None
        state.token = None
        state.subscribers.clear()
        state.last_progress = None

    def _on_deadline(self, tenant: str, token: CancelToken) -> None:
        """Fail a timed-out cold load right away, even if its fetch is still blocked."""
        state = self.refresh_state.for_tenant(tenant)
        if not token.timed_out or state.token is not token:
            return
        logger.warning(f"Cold load for {tenant} hit the {self.cold_load_timeout:g}s deadline")
        self._record_failure(state, False, self._timeout_error(tenant))
        self._detach(state)

    def _retrieve_exception(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and not isinstance(error, CampusfyError):
            logger.error(f"Refresh task crashed: {error!r}")

    def _start_refresh(
        self,
        tenant: str,
        background: bool,
        cancel_token: Optional[CancelToken] = None,
        incremental: bool = False,
    ) -> asyncio.Task:
        state = self.refresh_state.for_tenant(tenant)
        if state.in_flight:
            return state.task  # type: ignore[return-value]

        token = cancel_token.child() if cancel_token is not None else CancelToken()
        task = asyncio.create_task(self._run_refresh(tenant, token, background, incremental))
        task.add_done_callback(self._retrieve_exception)
        state.task = task
        state.token = token
        state.background = background

        if not background:
            token.with_timeout(self.cold_load_timeout)
            token.add_callback(lambda t: self._on_deadline(tenant, t))
        return task

    async def _await_task(
        self,
        tenant: str,
        task: asyncio.Task,
        cancel_token: Optional[CancelToken],
    ) -> CacheSnapshot:
        """
        Wait for a shared task.

        Returns as soon as the task finishes, the load's own token fires
        (deadline or explicit cancel), or the caller's token fires; a
        caller's cancellation only detaches that caller.
        """
        load_token = self.refresh_state.for_tenant(tenant).token
        tokens = [t for t in (cancel_token, load_token) if t is not None]
        waiters = [asyncio.ensure_future(t.wait()) for t in tokens]
        try:
            await asyncio.wait({task, *waiters}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

        if task.done():
            return task.result()
        if load_token is not None and load_token.timed_out:
            raise self._timeout_error(tenant)
        reason = next((t.reason for t in tokens if t.cancelled), None)
        raise RefreshCancelledError(reason or "cancelled")

    # ─────────────────────────────────────────────────────────────────────
    # Public entry points
    # ─────────────────────────────────────────────────────────────────────

    async def get_or_load_class_data(
        self,
        tenant: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
        background_mode: bool = False,
    ) -> list[CourseRecord]:
        """
        Return the tenant's catalog, loading it if needed.

        In background mode, cached data is returned immediately and a refresh
        is started only when the cache is stale and nothing is in flight.
        Without a cache, background mode falls back to a blocking load.

        Args:
            tenant: Tenant schema name
            on_progress: Receives ProgressUpdate milestones
            cancel_token: Cancelling it abandons the wait (and the load, if
                this call started it)
            background_mode: Prefer cached data over waiting

        Returns:
            The catalog records

        Raises:
            BackendError: If a blocking load fails (BackendTimeoutError on timeout)
            StorageError: If the fetched catalog could not be cached
            RefreshCancelledError: If `cancel_token` was cancelled
        """
        state = self.refresh_state.for_tenant(tenant)

        if background_mode:
            snapshot = await self._cached_snapshot(tenant)
            if snapshot is not None:
                if not state.in_flight and await self.store.should_refresh(
                    tenant, self.freshness_window
                ):
                    self._start_refresh(tenant, background=True, cancel_token=cancel_token)
                if state.in_flight:
                    # Subscription ends when the refresh finishes
                    self._subscribe(tenant, on_progress)
                return list(snapshot.records)
            logger.info(f"No cached data for {tenant}, falling back to a blocking load")

        if state.in_flight:
            logger.debug(f"Attaching to in-flight load for {tenant}")
            task = state.task
        else:
            task = self._start_refresh(tenant, background=False, cancel_token=cancel_token)

        self._subscribe(tenant, on_progress)
        try:
            snapshot = await self._await_task(tenant, task, cancel_token)  # type: ignore[arg-type]
        finally:
            self._unsubscribe(tenant, on_progress)
        return list(snapshot.records)

    async def check_and_load(
        self,
        tenant: str,
        cancel_token: Optional[CancelToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RefreshStatus:
        """
        Session-guarded cache check for a view that needs the catalog.

        Runs at most once per tenant per session: with a cache it serves it
        and refreshes in the background when stale, without one it blocks on
        a cold load. Failures end up in the returned status, never raised.
        """
        state = self.refresh_state.for_tenant(tenant)
        if state.checked:
            logger.debug(f"Cache for {tenant} already checked this session")
            return self.status(tenant)
        state.checked = True

        has_cache = await self.has_cached_data(tenant)
        try:
            await self.get_or_load_class_data(
                tenant,
                on_progress=on_progress,
                cancel_token=cancel_token,
                background_mode=has_cache,
            )
        except RefreshCancelledError as e:
            logger.info(f"Cache check for {tenant} abandoned: {e.reason}")
        except CampusfyError as e:
            if not (state.status.error or state.status.notice):
                self._record_failure(state, has_cache, e)

        if not state.in_flight and state.status.state == CacheState.NO_CACHE:
            if tenant in self._snapshots:
                state.status.state = CacheState.READY
        return self.status(tenant)

    async def retry(
        self,
        tenant: str,
        cancel_token: Optional[CancelToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RefreshStatus:
        """Clear the last error or notice and run the cache check again."""
        state = self.refresh_state.for_tenant(tenant)
        state.status.error = None
        state.status.notice = None
        state.checked = False

        if tenant in self._snapshots and not state.in_flight:
            # Explicit retry of a failed background refresh ignores the freshness verdict
            self._start_refresh(tenant, background=True, cancel_token=cancel_token)
            state.checked = True
            self._subscribe(tenant, on_progress)
            return self.status(tenant)
        return await self.check_and_load(tenant, cancel_token, on_progress)

    def dismiss_notice(self, tenant: str) -> None:
        """Hide a background failure notice; cached data stays in use."""
        self.refresh_state.for_tenant(tenant).status.notice = None

    def cancel(self, tenant: str, reason: str = "view closed") -> bool:
        """Cancel the tenant's in-flight load. Returns True if one was running."""
        state = self.refresh_state.for_tenant(tenant)
        if state.in_flight and state.token is not None:
            state.token.cancel(reason)
            return True
        return False

    async def wait_for_refresh(self, tenant: str) -> Optional[CacheSnapshot]:
        """Wait for the in-flight load, if any; errors are already in the status."""
        task = self.refresh_state.for_tenant(tenant).task
        if task is None:
            return None
        try:
            return await asyncio.shield(task)
        except CampusfyError:
            return None

    async def sync_updates(
        self,
        tenant: str,
        cancel_token: Optional[CancelToken] = None,
    ) -> list[CourseRecord]:
        """
        Pull only the records changed since the snapshot was taken.

        Changed records replace their cached versions whole. Backends that
        cannot list updates trigger a full refetch instead. Without a cache
        this is a cold load.

        Raises:
            BackendError: If the fetch fails
            RefreshCancelledError: If `cancel_token` was cancelled
        """
        state = self.refresh_state.for_tenant(tenant)
        snapshot = await self._cached_snapshot(tenant)
        if snapshot is None:
            return await self.get_or_load_class_data(tenant, cancel_token=cancel_token)

        if state.in_flight:
            task = state.task
        else:
            task = self._start_refresh(
                tenant, background=True, cancel_token=cancel_token, incremental=True
            )
        refreshed = await self._await_task(tenant, task, cancel_token)  # type: ignore[arg-type]
        return list(refreshed.records)

    async def get_class_by_code(self, tenant: str, class_code: str) -> Optional[CourseRecord]:
        """Look a course up in the cache, falling back to the backend."""
        snapshot = await self._cached_snapshot(tenant)
        if snapshot is not None:
            record = snapshot.get(class_code)
            if record is not None:
                return record

        try:
            return await self.backend.fetch_course_by_code(tenant, class_code)
        except BackendError as e:
            logger.warning(f"Lookup of {class_code} in {tenant} failed: {e}")
            return None

    async def clear_cache(self, tenant: str) -> bool:
        """
        Drop the tenant's cache on disk and in memory.

        Raises:
            StorageError: If the cache files could not be removed
        """
        self.cancel(tenant, "cache cleared")
        async with self._lock(tenant):
            removed = await self.store.clear(tenant)
            self._snapshots.pop(tenant, None)
            self._indexes.pop(tenant, None)

        state = self.refresh_state.for_tenant(tenant)
        state.checked = False
        state.status = RefreshStatus()
        return removed
