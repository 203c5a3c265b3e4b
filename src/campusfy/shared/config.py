"""
Configuration Module - Load and validate engine settings.
=========================================================

Loads configuration from:
1. config/settings.yaml (defaults, including tenant definitions)
2. Environment variables from .env file
3. Environment variables from system

Environment variables override YAML defaults.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from campusfy.shared.errors import UnknownTenantError

# Load .env file early
load_dotenv()


def _find_project_root() -> Path:
    """Find the project root directory by looking for pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return Path.cwd()


PROJECT_ROOT = _find_project_root()
CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "settings.yaml"


# ─────────────────────────────────────────────────────────────────────────────
# Nested Configuration Models
# ─────────────────────────────────────────────────────────────────────────────


FilterKind = Literal[
    "equality",
    "membership",
    "boolean",
    "credits_range",
    "no_prerequisites",
    "any_true",
]


class FilterDefinition(BaseModel):
    """One tenant-specific attribute filter."""

    key: str = Field(..., description="Filter key as it appears in a query's filters")
    kind: FilterKind = Field(..., description="Predicate builder to use")
    field: str = Field(..., description="Course attribute the predicate reads")
    value_type: Literal["string", "number"] = "string"


class TenantConfig(BaseModel):
    """Configuration for a single university catalog."""

    id: str
    name: str
    schema_name: str
    table: str = "classes"
    credits_mode: Literal["string", "min_max"] = "string"
    filters: list[FilterDefinition] = Field(default_factory=list)


class CacheConfig(BaseModel):
    """Local catalog cache settings."""

    cache_dir: str = "data/cache"
    freshness_hours: float = 24.0
    staleness_probe_ttl_seconds: float = 300.0
    cold_load_timeout: float = 60.0
    expiration_days: int = 1


class BackendConfig(BaseModel):
    """Course backend (REST) settings."""

    base_url: str = ""
    api_key: str = ""
    timeout: float = 60.0
    max_retries: int = 3
    retry_wait: float = 1.0


class SearchConfig(BaseModel):
    """Hybrid search settings."""

    min_query_length: int = 2
    topic_top_k: int = 1000
    topic_similarity_threshold: float = 0.75
    topic_sentence_prefix: str = "Class covers"
    page_size: int = 20
    fuzzy_threshold: float = 60.0

    @field_validator("topic_similarity_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        """Cosine similarity floors must be within [-1, 1]."""
        if not -1.0 <= v <= 1.0:
            raise ValueError(f"topic_similarity_threshold must be in [-1, 1], got {v}")
        return v


class SBERTConfig(BaseModel):
    """SBERT embeddings settings."""

    model_name: str = "all-MiniLM-L6-v2"
    device: str = "auto"


class RemoteEmbeddingConfig(BaseModel):
    """HTTP embedding endpoint settings."""

    url: str = ""
    timeout: float = 30.0


class EmbeddingsConfig(BaseModel):
    """Embeddings provider settings."""

    provider: str = "remote"
    sbert: SBERTConfig = Field(default_factory=SBERTConfig)
    remote: RemoteEmbeddingConfig = Field(default_factory=RemoteEmbeddingConfig)


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    format: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    rich_console: bool = True
    file: str = ""


# ─────────────────────────────────────────────────────────────────────────────
# Main Settings Class
# ─────────────────────────────────────────────────────────────────────────────


class Settings(BaseSettings):
    """
    Main engine settings.

    Loads from:
    1. config/settings.yaml (defaults)
    2. Environment variables

    Environment variables override YAML settings.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Top-level environment overrides
    api_url: Optional[str] = Field(default=None, validation_alias="CAMPUSFY_API_URL")
    api_key: Optional[str] = Field(default=None, validation_alias="CAMPUSFY_API_KEY")
    embedding_provider: Optional[str] = Field(default=None, validation_alias="EMBEDDING_PROVIDER")
    log_level: Optional[str] = Field(default=None, validation_alias="LOG_LEVEL")

    # Nested configurations (from YAML)
    tenants: list[TenantConfig] = Field(default_factory=list)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    _project_root: Path = PROJECT_ROOT

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs and must rank below the environment
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @property
    def project_root(self) -> Path:
        """Get the project root directory."""
        return self._project_root

    @property
    def cache_dir(self) -> Path:
        """Absolute cache directory."""
        path = Path(self.cache.cache_dir)
        if path.is_absolute():
            return path
        return self._project_root / path

    def get_tenant(self, tenant_id: str) -> TenantConfig:
        """
        Get tenant configuration by id or schema name.

        Raises:
            UnknownTenantError: If no tenant matches
        """
        wanted = tenant_id.lower().strip()
        for tenant in self.tenants:
            if tenant.id.lower() == wanted or tenant.schema_name.lower() == wanted:
                return tenant
        raise UnknownTenantError(tenant_id)

    def get_tenant_ids(self) -> list[str]:
        """Get list of all tenant IDs."""
        return [t.id for t in self.tenants]

    def get_effective_api_url(self) -> str:
        """Get the effective backend URL (env override or config)."""
        return self.api_url or self.backend.base_url

    def get_effective_api_key(self) -> str:
        """Get the effective backend API key (env override or config)."""
        return self.api_key or self.backend.api_key

    def get_effective_embedding_provider(self) -> str:
        """Get the effective embedding provider (env override or config)."""
        if self.embedding_provider:
            return self.embedding_provider.lower()
        return self.embeddings.provider.lower()

    def get_effective_log_level(self) -> str:
        """Get the effective log level (env override or config)."""
        if self.log_level:
            return self.log_level.upper()
        return self.logging.level.upper()


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load configuration from YAML file."""
    if not config_path.exists():
        return {}

    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
        return data if data else {}


def _create_settings(config_path: Optional[Path] = None) -> Settings:
    """Create settings instance by merging YAML defaults with environment."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    yaml_config = _load_yaml_config(config_path)
    return Settings(**yaml_config)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get the singleton settings instance.

    Returns:
        Settings instance with merged configuration

    Example:
        >>> settings = get_settings()
        >>> print(settings.search.topic_similarity_threshold)
        0.75
    """
    return _create_settings()


def reload_settings() -> Settings:
    """
    Force reload of settings (clears cache).

    Returns:
        Fresh Settings instance
    """
    get_settings.cache_clear()
    return get_settings()


def load_settings(config_path: Path) -> Settings:
    """Build settings from an explicit YAML file, bypassing the singleton."""
    return _create_settings(config_path)
