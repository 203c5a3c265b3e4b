"""
Remote Embeddings Module - Embeddings from an HTTP endpoint.
============================================================

POSTs {"text": ...} to the configured URL and reads {"embedding": [...]}
from the response. This is how the web client gets topic vectors: the model
lives server-side next to the catalog embeddings.
"""

import asyncio
from typing import Optional

import requests

from campusfy.indexing.embeddings_base import EmbeddingProvider
from campusfy.shared.config import get_settings
from campusfy.shared.logging import get_logger

logger = get_logger(__name__)


class RemoteEmbeddingProvider(EmbeddingProvider):
    """HTTP embedding provider backed by a requests session."""

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None):
        remote_config = get_settings().embeddings.remote
        self.url = url or remote_config.url
        self.timeout = timeout if timeout is not None else remote_config.timeout
        self._session: Optional[requests.Session] = None

    @property
    def provider_name(self) -> str:
        return "remote"

    @property
    def model_name(self) -> str:
        return self.url or "<unconfigured>"

    @property
    def session(self) -> requests.Session:
        """Get or create the requests session."""
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({"Content-Type": "application/json"})
        return self._session

    def _post(self, text: str) -> list[float]:
        if not self.url:
            raise RuntimeError("No embedding endpoint configured (embeddings.remote.url)")

        response = self.session.post(self.url, json={"text": text}, timeout=self.timeout)
        response.raise_for_status()

        embedding = response.json().get("embedding")
        if not isinstance(embedding, list):
            raise ValueError("Embedding endpoint response has no 'embedding' array")
        return embedding

    async def embed_text(self, text: str) -> list[float]:
        return await asyncio.to_thread(self._post, text)
