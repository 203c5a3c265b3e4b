"""
Backend Module - Course catalog sources.
========================================

The coordinator never talks HTTP itself; it asks a CourseBackend for the
catalog. Two implementations:

- RestCourseBackend: the web API (count endpoint, then 2-4 sequential
  batches), with tenacity retries on timeouts and connection errors
- InMemoryCourseBackend: a fixed catalog, used by tests and for loading a
  JSON fixture from the CLI
"""

import asyncio
import math
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from campusfy.shared.config import get_settings
from campusfy.shared.errors import BackendError, BackendTimeoutError
from campusfy.shared.logging import get_logger
from campusfy.shared.schemas import CourseRecord
from campusfy.shared.utils import load_json, to_iso
from campusfy.sync.cancellation import CancelToken

logger = get_logger(__name__)

BatchCallback = Callable[[int, int], None]


def plan_batches(total: int) -> int:
    """
    Number of sequential batches used to download `total` classes.

    Example:
        >>> plan_batches(1500), plan_batches(4000), plan_batches(12000)
        (2, 3, 4)
    """
    if total <= 2000:
        return 2
    if total <= 5000:
        return 3
    return 4


# ─────────────────────────────────────────────────────────────────────────────
# Abstract Backend
# ─────────────────────────────────────────────────────────────────────────────


class CourseBackend(ABC):
    """Source of truth for a tenant's course catalog."""

    @abstractmethod
    async def list_courses(
        self,
        schema: str,
        cancel_token: Optional[CancelToken] = None,
        on_batch: Optional[BatchCallback] = None,
    ) -> list[CourseRecord]:
        """
        Fetch the full catalog.

        Args:
            schema: Tenant schema name
            cancel_token: Checked between network round trips
            on_batch: Called as on_batch(completed, total) after each batch

        Raises:
            BackendError: On network or server failure
            RefreshCancelledError: If the token is cancelled mid-fetch
        """

    async def list_updates_since(
        self,
        schema: str,
        since: datetime,
        cancel_token: Optional[CancelToken] = None,
    ) -> list[CourseRecord]:
        """
        Fetch records changed after `since`.

        Raises:
            NotImplementedError: If the backend cannot do incremental fetches
        """
        raise NotImplementedError(f"{type(self).__name__} does not support incremental sync")

    @abstractmethod
    async def fetch_course_by_code(self, schema: str, class_code: str) -> Optional[CourseRecord]:
        """Fetch a single course, None when it does not exist."""


def _to_records(rows: Iterable[dict[str, Any]]) -> list[CourseRecord]:
    return [CourseRecord.model_validate(row) for row in rows]


# ─────────────────────────────────────────────────────────────────────────────
# REST Backend
# ─────────────────────────────────────────────────────────────────────────────


class RestCourseBackend(CourseBackend):
    """
    Catalog client for the web API.

    Endpoints (relative to base_url):
    - GET /api/classes/count?school=...             -> {"total": n}
    - GET /api/classes/cache?school=...&page&limit  -> {"classes": [...], "total": n}
    - GET /api/classes/cache?school=...&since=...   -> {"classes": [...]}
    - GET /api/classes?school=...&class_code=...    -> {"classes": [...]}

    The tenant schema is also sent as the Accept-Profile header.

    Example:
        >>> backend = RestCourseBackend("https://wisco.campusfy.app")
        >>> records = await backend.list_courses("wisco")
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_wait: Optional[float] = None,
    ):
        settings = get_settings()
        backend_config = settings.backend

        self.base_url = (base_url or settings.get_effective_api_url()).rstrip("/")
        self.api_key = api_key or settings.get_effective_api_key()
        self.timeout = timeout if timeout is not None else backend_config.timeout
        self.max_retries = max_retries if max_retries is not None else backend_config.max_retries
        self.retry_wait = retry_wait if retry_wait is not None else backend_config.retry_wait
        self._session: Optional[requests.Session] = None

        logger.debug(
            f"REST backend initialized: url={self.base_url or '<unset>'}, "
            f"timeout={self.timeout}s, retries={self.max_retries}"
        )

    @property
    def session(self) -> requests.Session:
        """Get or create the requests session."""
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update(
                {
                    "Accept": "application/json",
                    "Accept-Encoding": "gzip, deflate",
                    "Cache-Control": "no-cache",
                    "X-Requested-With": "XMLHttpRequest",
                }
            )
            if self.api_key:
                self._session.headers["Authorization"] = f"Bearer {self.api_key}"
        return self._session

    def _get_json(self, path: str, schema: str, params: Optional[dict[str, Any]] = None) -> Any:
        """GET with retries; runs in a worker thread."""
        if not self.base_url:
            raise BackendError("No backend URL configured (backend.base_url or CAMPUSFY_API_URL)")

        url = f"{self.base_url}{path}"
        query = {"school": schema, **(params or {})}

        @retry(
            retry=retry_if_exception_type((requests.Timeout, requests.ConnectionError)),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_fixed(self.retry_wait),
            reraise=True,
        )
        def _request() -> requests.Response:
            logger.debug(f"GET {url} {query}")
            response = self.session.get(
                url,
                params=query,
                headers={"Accept-Profile": schema},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response

        try:
            return _request().json()
        except requests.Timeout as e:
            raise BackendTimeoutError(f"Timed out fetching {path}: {e}") from e
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise BackendError(f"Backend returned {status} for {path}", status) from e
        except (requests.RequestException, ValueError) as e:
            raise BackendError(f"Failed to fetch {path}: {e}") from e

    async def count_courses(self, schema: str) -> int:
        data = await asyncio.to_thread(self._get_json, "/api/classes/count", schema)
        total = int(data.get("total") or 0) if isinstance(data, dict) else 0
        if total <= 0:
            raise BackendError(f"No class count available for {schema}")
        return total

    async def list_courses(
        self,
        schema: str,
        cancel_token: Optional[CancelToken] = None,
        on_batch: Optional[BatchCallback] = None,
    ) -> list[CourseRecord]:
        token = cancel_token or CancelToken()
        token.raise_if_cancelled()

        total = await self.count_courses(schema)
        batch_count = plan_batches(total)
        chunk_size = math.ceil(total / batch_count)
        logger.info(
            f"Loading {total} classes for {schema} in {batch_count} batches of ~{chunk_size}"
        )

        rows: list[dict[str, Any]] = []
        for page in range(1, batch_count + 1):
            token.raise_if_cancelled()
            data = await asyncio.to_thread(
                self._get_json,
                "/api/classes/cache",
                schema,
                {"page": page, "limit": chunk_size},
            )
            batch = data.get("classes") or [] if isinstance(data, dict) else []
            rows.extend(batch)
            logger.debug(f"Batch {page}/{batch_count}: {len(batch)} classes")
            if on_batch is not None:
                on_batch(page, batch_count)

        token.raise_if_cancelled()
        try:
            return _to_records(rows)
        except ValueError as e:
            raise BackendError(f"Backend sent malformed class data: {e}") from e

    async def list_updates_since(
        self,
        schema: str,
        since: datetime,
        cancel_token: Optional[CancelToken] = None,
    ) -> list[CourseRecord]:
        token = cancel_token or CancelToken()
        token.raise_if_cancelled()
        data = await asyncio.to_thread(
            self._get_json, "/api/classes/cache", schema, {"since": to_iso(since)}
        )
        rows = data.get("classes") or [] if isinstance(data, dict) else []
        token.raise_if_cancelled()
        try:
            return _to_records(rows)
        except ValueError as e:
            raise BackendError(f"Backend sent malformed class data: {e}") from e

    async def fetch_course_by_code(self, schema: str, class_code: str) -> Optional[CourseRecord]:
        data = await asyncio.to_thread(
            self._get_json, "/api/classes", schema, {"class_code": class_code}
        )
        rows = data.get("classes") or [] if isinstance(data, dict) else []
        for row in rows:
            if row.get("class_code") == class_code:
                return CourseRecord.model_validate(row)
        return None


# ─────────────────────────────────────────────────────────────────────────────
# In-Memory Backend
# ─────────────────────────────────────────────────────────────────────────────


class InMemoryCourseBackend(CourseBackend):
    """
    Backend serving fixed catalogs from memory.

    Args:
        catalogs: Mapping of schema name to records
        delay: Seconds each fetch takes (cancellation is honoured while waiting)
        failures: Number of upcoming list_courses calls that raise BackendError
        supports_updates: Whether list_updates_since is available
    """

    def __init__(
        self,
        catalogs: Optional[dict[str, Iterable[CourseRecord]]] = None,
        delay: float = 0.0,
        failures: int = 0,
        supports_updates: bool = True,
    ):
        self.catalogs: dict[str, list[CourseRecord]] = {
            schema: list(records) for schema, records in (catalogs or {}).items()
        }
        self.delay = delay
        self.failures = failures
        self.supports_updates = supports_updates
        self.list_calls = 0
        self.update_calls = 0

    @classmethod
    def from_json_file(cls, schema: str, path: Path) -> "InMemoryCourseBackend":
        """Load a catalog from a JSON list (or {"classes": [...]}) file."""
        data = load_json(path)
        rows = data.get("classes", []) if isinstance(data, dict) else data
        return cls({schema: _to_records(rows)})

    def set_catalog(self, schema: str, records: Iterable[CourseRecord]) -> None:
        self.catalogs[schema] = list(records)

    async def _simulate_latency(self, token: CancelToken) -> None:
        if self.delay <= 0:
            return
        waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({waiter}, timeout=self.delay)
        finally:
            waiter.cancel()

    async def list_courses(
        self,
        schema: str,
        cancel_token: Optional[CancelToken] = None,
        on_batch: Optional[BatchCallback] = None,
    ) -> list[CourseRecord]:
        token = cancel_token or CancelToken()
        self.list_calls += 1
        token.raise_if_cancelled()

        await self._simulate_latency(token)
        token.raise_if_cancelled()

        if self.failures > 0:
            self.failures -= 1
            raise BackendError(f"Simulated backend failure for {schema}")

        records = list(self.catalogs.get(schema, []))
        if on_batch is not None:
            on_batch(1, 1)
        return records

    async def list_updates_since(
        self,
        schema: str,
        since: datetime,
        cancel_token: Optional[CancelToken] = None,
    ) -> list[CourseRecord]:
        if not self.supports_updates:
            return await super().list_updates_since(schema, since, cancel_token)

        token = cancel_token or CancelToken()
        self.update_calls += 1
        token.raise_if_cancelled()
        await self._simulate_latency(token)
        token.raise_if_cancelled()

        return [
            record
            for record in self.catalogs.get(schema, [])
            if record.updated_at is not None and record.updated_at > since
        ]

    async def fetch_course_by_code(self, schema: str, class_code: str) -> Optional[CourseRecord]:
        for record in self.catalogs.get(schema, []):
            if record.class_code == class_code:
                return record
        return None
