"""
Pytest Configuration and Fixtures.
===================================

Shared fixtures for all test modules:
- Sample catalog fixtures
- Fake embedding provider
- In-memory backend, store and coordinator
- Temporary directories
- Configuration overrides
"""

import os
import tempfile
from pathlib import Path
from typing import Generator, Optional

import pytest

# Set test environment before importing app modules
os.environ["CAMPUSFY_ENV"] = "test"


# ─────────────────────────────────────────────────────────────────────────────
# Path Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def config_path(project_root: Path) -> Path:
    """Get the config file path."""
    return project_root / "config" / "settings.yaml"


# ─────────────────────────────────────────────────────────────────────────────
# Sample Data Fixtures
# ─────────────────────────────────────────────────────────────────────────────


def make_record(class_code: str, **fields):
    """Build a CourseRecord with sensible defaults."""
    from campusfy.shared.schemas import CourseRecord

    data = {
        "class_code": class_code,
        "course_name": fields.pop("course_name", class_code),
        "course_desc": fields.pop("course_desc", ""),
    }
    data.update(fields)
    return CourseRecord(**data)


@pytest.fixture
def record_factory():
    """Factory for ad-hoc CourseRecords."""
    return make_record


@pytest.fixture
def sample_records() -> list:
    """A small Wisconsin-style catalog.

    Embeddings are 3-d: axis 0 is "machine learning", axis 1 is "math",
    axis 2 is "music".
    """
    return [
        make_record(
            "COMP SCI 200",
            course_name="Programming I",
            course_desc="Introduction to programming with Java.",
            credits="3",
            requisites="",
            grade_count=1000,
            gpa=3.4,
            indexed_difficulty=2.5,
            indexed_workload=2.8,
            indexed_fun=3.5,
            course_breadth="Natural Science",
            course_level=1,
            embedding=[1.0, 0.0, 0.0],
        ),
        make_record(
            "COMP SCI 220",
            course_name="Data Science Programming I",
            course_desc="Python for data analysis.",
            credits="4",
            requisites="",
            grade_count=600,
            gpa=3.6,
            indexed_difficulty=2.0,
            indexed_workload=2.0,
            indexed_fun=4.2,
            course_breadth="Natural Science",
            course_level=1,
            embedding="[0.9, 0.1, 0.0]",
        ),
        make_record(
            "COMP SCI 300",
            course_name="Programming II",
            course_desc="Object-oriented design and data structures.",
            credits="3",
            requisites="COMP SCI 200",
            grade_count=800,
            gpa=3.1,
            indexed_difficulty=3.5,
            indexed_workload=3.5,
            indexed_fun=3.0,
            course_breadth="Natural Science",
            course_level=2,
            embedding=[0.6, 0.8, 0.0],
        ),
        make_record(
            "MATH 221",
            course_name="Calculus and Analytic Geometry 1",
            course_desc="Limits, derivatives and integrals.",
            credits="5",
            requisites="MATH 114",
            grade_count=1500,
            gpa=2.9,
            indexed_difficulty=4.0,
            indexed_workload=3.8,
            indexed_fun=2.1,
            course_breadth="Natural Science",
            course_level=1,
            embedding=[0.0, 1.0, 0.0],
        ),
        make_record(
            "MUSIC 113",
            course_name="Choral Union",
            course_desc="Choral singing for all students.",
            credits="1-3",
            requisites="",
            grade_count=300,
            gpa=3.9,
            indexed_difficulty=1.0,
            indexed_workload=1.5,
            indexed_fun=4.8,
            course_breadth="Humanities",
            course_level=1,
            embedding=[0.0, 0.0, 1.0],
        ),
        make_record(
            "HISTORY 101",
            course_name="American History",
            course_desc="Survey of the nation from colonial times.",
            credits="3",
            grade_count=400,
            course_breadth="Humanities",
            course_level=1,
        ),
    ]


@pytest.fixture
def sample_snapshot(sample_records):
    """Snapshot of the sample catalog."""
    from campusfy.shared.schemas import CacheSnapshot

    return CacheSnapshot(tenant="wisco", records=tuple(sample_records))


@pytest.fixture
def sample_index(sample_snapshot):
    """Vector index built from the sample snapshot."""
    from campusfy.indexing.vector_index import VectorIndex

    index = VectorIndex()
    index.build(sample_snapshot.records, source_id=sample_snapshot.snapshot_id)
    return index


# ─────────────────────────────────────────────────────────────────────────────
# Configuration Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def test_settings(config_path: Path):
    """Settings loaded from the project's YAML file."""
    from campusfy.shared.config import load_settings

    return load_settings(config_path)


@pytest.fixture
def wisco_tenant(test_settings):
    return test_settings.get_tenant("wisco")


@pytest.fixture
def utah_tenant(test_settings):
    return test_settings.get_tenant("utah")


@pytest.fixture
def search_config():
    """Default search settings."""
    from campusfy.shared.config import SearchConfig

    return SearchConfig()


# ─────────────────────────────────────────────────────────────────────────────
# Mock Fixtures
# ─────────────────────────────────────────────────────────────────────────────


class FakeEmbeddingProvider:
    """Embedding provider answering from a fixed table of vectors.

    Unknown texts raise, like an unreachable endpoint would.
    """

    def __init__(self, vectors: Optional[dict[str, list[float]]] = None):
        self.vectors = {key.lower(): value for key, value in (vectors or {}).items()}
        self.calls: list[str] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    @property
    def model_name(self) -> str:
        return "fake-3d"

    async def embed_text(self, text: str) -> list[float]:
        self.calls.append(text)
        if text.lower() not in self.vectors:
            raise RuntimeError(f"no vector for {text!r}")
        return self.vectors[text.lower()]


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    """Fake provider knowing a few topic sentences."""
    return FakeEmbeddingProvider(
        {
            "Class covers machine learning": [1.0, 0.0, 0.0],
            "Class covers music": [0.0, 0.0, 1.0],
            "Class covers calculus, music": [0.0, 0.7, 0.7],
            "Class covers flat vectors": [1.0, 0.0],
        }
    )


@pytest.fixture
def embedder(fake_provider):
    """Caching client around the fake provider."""
    from campusfy.indexing.embeddings_base import CachedEmbeddingClient

    return CachedEmbeddingClient(fake_provider)


@pytest.fixture
def store(temp_dir: Path):
    """Local cache store in a temporary directory."""
    from campusfy.storage.cache_store import LocalCacheStore

    return LocalCacheStore(temp_dir / "cache", probe_ttl_seconds=300, expiration_days=1)


@pytest.fixture
def backend(sample_records):
    """In-memory backend serving the sample catalog as 'wisco'."""
    from campusfy.sync.backend import InMemoryCourseBackend

    return InMemoryCourseBackend({"wisco": sample_records})


@pytest.fixture
def coordinator(backend, store):
    """Coordinator over the in-memory backend and temporary store."""
    from datetime import timedelta

    from campusfy.sync.coordinator import CacheRefreshCoordinator

    return CacheRefreshCoordinator(
        backend,
        store=store,
        freshness_window=timedelta(hours=24),
        cold_load_timeout=5.0,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "requires_api: marks tests that require a live backend or embedding endpoint"
    )


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset global singletons between tests."""
    from campusfy.indexing.embeddings_base import clear_provider_cache
    from campusfy.shared.config import get_settings

    get_settings.cache_clear()
    clear_provider_cache()

    yield

    get_settings.cache_clear()
    clear_provider_cache()
