"""
SBERT Embeddings Module - Local embeddings via sentence-transformers.
====================================================================

Embeds topic sentences on local hardware. The model must be the same one
that produced the catalog's stored embeddings, otherwise similarities are
meaningless. Install with the `sbert` extra.
"""

import asyncio
from typing import Optional

from campusfy.indexing.embeddings_base import EmbeddingProvider
from campusfy.shared.config import get_settings
from campusfy.shared.logging import get_logger

logger = get_logger(__name__)


class SBERTEmbeddingProvider(EmbeddingProvider):
    """
    SBERT embedding provider using sentence-transformers.

    The model is loaded lazily on first use, and encoding runs in a worker
    thread so the event loop stays responsive.

    Example:
        >>> provider = SBERTEmbeddingProvider()
        >>> vector = await provider.embed_text("Class covers linear algebra")
    """

    def __init__(self, model_name: Optional[str] = None, device: Optional[str] = None):
        sbert_config = get_settings().embeddings.sbert

        self._model_name = model_name or sbert_config.model_name
        self._device = device or sbert_config.device
        self._model = None

        logger.debug(f"SBERT provider configured: model={self._model_name}, device={self._device}")

    @property
    def provider_name(self) -> str:
        return "sbert"

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def model(self):
        """Lazy load and return the sentence transformer model."""
        if self._model is None:
            self._load_model()
        return self._model

    def _load_model(self) -> None:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise RuntimeError(
                "sentence-transformers is required for SBERT embeddings. "
                "Install with: pip install 'campusfy[sbert]'"
            )

        device = self._device
        if device == "auto":
            import torch
            device = "cuda" if torch.cuda.is_available() else "cpu"

        logger.info(f"Loading SBERT model: {self._model_name} on {device}")
        self._model = SentenceTransformer(self._model_name, device=device)

    def _encode(self, text: str) -> list[float]:
        embedding = self.model.encode(text, convert_to_numpy=True, show_progress_bar=False)
        return embedding.tolist()

    async def embed_text(self, text: str) -> list[float]:
        return await asyncio.to_thread(self._encode, text)
