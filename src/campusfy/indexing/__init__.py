"""
Indexing Module - Vector index and embedding collaborators.
===========================================================

- vector_index: numpy cosine index rebuilt from cache snapshots
- embeddings_base: provider interface, caching client, factory
- embeddings_sbert: local sentence-transformers provider
- embeddings_remote: HTTP endpoint provider

Providers are imported lazily by the factory so the SBERT stack is only
needed when it is selected.
"""

from campusfy.indexing.embeddings_base import (
    CachedEmbeddingClient,
    EmbeddingProvider,
    get_embedding_provider,
)
from campusfy.indexing.vector_index import VectorIndex, cosine_similarity, decode_embedding

__all__ = [
    "VectorIndex",
    "cosine_similarity",
    "decode_embedding",
    "EmbeddingProvider",
    "CachedEmbeddingClient",
    "get_embedding_provider",
]
