"""
Embeddings Base Module - Interface to the embedding collaborator.
=================================================================

Topic search needs one vector per synthetic sentence ("Class covers ...").
Providers implement embed_text(); the engine talks to them through
CachedEmbeddingClient, which adds a session cache, shares identical
in-flight requests, and turns provider failures into None.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from campusfy.shared.config import get_settings
from campusfy.shared.logging import get_logger

logger = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Abstract Base Class
# ─────────────────────────────────────────────────────────────────────────────


class EmbeddingProvider(ABC):
    """
    Abstract base class for embedding providers.

    Implementations must provide:
    - embed_text(): Embed a single text string (async)

    Properties:
    - provider_name: Provider identifier (sbert, remote)
    - model_name: Name of the embedding model or endpoint
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name identifier."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Get the model name being used."""

    @abstractmethod
    async def embed_text(self, text: str) -> list[float]:
        """
        Embed a single text string.

        Args:
            text: Text to embed

        Returns:
            Embedding vector as list of floats

        Raises:
            Exception: Any provider failure; callers go through
                CachedEmbeddingClient, which absorbs it
        """


# ─────────────────────────────────────────────────────────────────────────────
# Caching Client
# ─────────────────────────────────────────────────────────────────────────────


def normalize_text(text: str) -> str:
    """Cache key for a text: trimmed and lowercased."""
    return text.strip().lower()


class CachedEmbeddingClient:
    """
    Session-scoped embedding client.

    Features:
    - Results cached by normalized text for the life of the client
    - Concurrent requests for the same text share one provider call
    - Provider failures become None instead of exceptions

    Example:
        >>> client = CachedEmbeddingClient(get_embedding_provider())
        >>> vector = await client.embed("Class covers machine learning")
    """

    def __init__(self, provider: EmbeddingProvider):
        self.provider = provider
        self._cache: dict[str, list[float]] = {}
        self._pending: dict[str, asyncio.Future] = {}

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        """Forget all cached vectors."""
        self._cache.clear()

    async def _fetch(self, key: str) -> Optional[list[float]]:
        try:
            vector = await self.provider.embed_text(key)
        except Exception as e:
            logger.warning(f"Embedding request failed ({self.provider.provider_name}): {e}")
            return None

        if not vector:
            logger.warning(f"Embedding provider returned no vector for '{key[:40]}'")
            return None

        vector = [float(x) for x in vector]
        self._cache[key] = vector
        return vector

    async def embed(self, text: str) -> Optional[list[float]]:
        """
        Embed text, reusing cached and in-flight results.

        Returns:
            The vector, or None if the text is empty or the provider failed
        """
        key = normalize_text(text)
        if not key:
            return None

        if key in self._cache:
            logger.debug(f"Embedding cache hit: '{key[:40]}'")
            return self._cache[key]

        pending = self._pending.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._fetch(key))
        self._pending[key] = task
        task.add_done_callback(lambda _: self._pending.pop(key, None))
        return await asyncio.shield(task)


# ─────────────────────────────────────────────────────────────────────────────
# Provider Factory
# ─────────────────────────────────────────────────────────────────────────────


_provider_cache: dict[str, EmbeddingProvider] = {}


def get_embedding_provider(
    provider_name: Optional[str] = None,
    use_cache: bool = True,
) -> EmbeddingProvider:
    """
    Get an embedding provider instance.

    Args:
        provider_name: "sbert" or "remote". If None, uses config.
        use_cache: Whether to cache and reuse provider instances

    Returns:
        EmbeddingProvider instance

    Raises:
        ValueError: If provider name is invalid

    Example:
        >>> provider = get_embedding_provider("remote")
        >>> vector = await provider.embed_text("Class covers databases")
    """
    if provider_name is None:
        provider_name = get_settings().get_effective_embedding_provider()

    provider_name = provider_name.lower().strip()

    if use_cache and provider_name in _provider_cache:
        return _provider_cache[provider_name]

    provider: EmbeddingProvider

    if provider_name == "sbert":
        from campusfy.indexing.embeddings_sbert import SBERTEmbeddingProvider
        provider = SBERTEmbeddingProvider()

    elif provider_name == "remote":
        from campusfy.indexing.embeddings_remote import RemoteEmbeddingProvider
        provider = RemoteEmbeddingProvider()

    else:
        raise ValueError(
            f"Unknown embedding provider: {provider_name}. "
            f"Valid options: sbert, remote"
        )

    if use_cache:
        _provider_cache[provider_name] = provider

    logger.info(
        f"Initialized embedding provider: {provider.provider_name} (model={provider.model_name})"
    )
    return provider


def clear_provider_cache() -> None:
    """Clear the provider cache."""
    _provider_cache.clear()
