"""
Vector Index Module - In-memory cosine similarity index.
========================================================

Holds one embedding per course in a dense numpy matrix, in snapshot order,
and answers "which courses are closest to this vector" with a brute-force
cosine scan. The index is derived data: it is rebuilt from a snapshot and
remembers which snapshot it came from.

Embeddings may arrive as float arrays, JSON array strings ("[0.1, 0.2]") or
comma-separated strings ("0.1,0.2"). Records whose embedding is missing,
malformed or of the wrong dimension are left out of the index.
"""

import json
from typing import Any, Iterable, Optional, Sequence

import numpy as np

from campusfy.shared.errors import EmbeddingDimensionError
from campusfy.shared.logging import get_logger
from campusfy.shared.schemas import CourseRecord, VectorHit

logger = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Vector Helpers
# ─────────────────────────────────────────────────────────────────────────────


def decode_embedding(value: Any) -> Optional[np.ndarray]:
    """
    Decode a stored embedding into a 1-D float vector.

    Args:
        value: Sequence of numbers, JSON array string or comma-separated string

    Returns:
        float64 vector, or None if the value is missing, empty, non-numeric
        or contains NaN/inf

    Example:
        >>> decode_embedding("[1, 0, 0]")
        array([1., 0., 0.])
        >>> decode_embedding("1,oops,3") is None
        True
    """
    if value is None:
        return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            if text.startswith("["):
                value = json.loads(text)
            else:
                value = [float(part) for part in text.split(",")]
        except ValueError:
            return None

    try:
        vector = np.asarray(value, dtype=np.float64)
    except (TypeError, ValueError):
        return None

    if vector.ndim != 1 or vector.size == 0 or not np.all(np.isfinite(vector)):
        return None
    return vector


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """
    Cosine similarity of two vectors, in [-1, 1].

    Raises:
        EmbeddingDimensionError: If the vectors differ in length

    Returns 0.0 when either vector has zero norm.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise EmbeddingDimensionError(va.size, vb.size)

    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


# ─────────────────────────────────────────────────────────────────────────────
# Vector Index
# ─────────────────────────────────────────────────────────────────────────────


class VectorIndex:
    """
    Brute-force cosine index over course embeddings.

    Features:
    - O(n) rebuild from a snapshot's records
    - Tolerant decoding of string-encoded embeddings
    - Stable ordering: equal scores keep catalog order
    - Tracks the snapshot it was built from (source_id)

    Example:
        >>> index = VectorIndex()
        >>> index.build(snapshot.records, source_id=snapshot.snapshot_id)
        >>> hits = index.search(query_vector, top_k=10, min_score=0.75)
    """

    def __init__(self) -> None:
        self._codes: list[str] = []
        self._matrix: np.ndarray = np.empty((0, 0), dtype=np.float64)
        self._norms: np.ndarray = np.empty(0, dtype=np.float64)
        self._dimension: Optional[int] = None
        self.source_id: Optional[str] = None
        self.is_built = False

    @property
    def size(self) -> int:
        """Number of indexed courses."""
        return len(self._codes)

    @property
    def dimension(self) -> Optional[int]:
        """Embedding dimension, fixed by the first valid embedding."""
        return self._dimension

    @property
    def codes(self) -> list[str]:
        return list(self._codes)

    def __len__(self) -> int:
        return self.size

    def __contains__(self, class_code: object) -> bool:
        return class_code in self._codes

    def build(self, records: Iterable[CourseRecord], source_id: Optional[str] = None) -> int:
        """
        Replace the index contents with the embeddings of `records`.

        Args:
            records: Catalog records, in snapshot order
            source_id: Identifier of the snapshot the records come from

        Returns:
            Number of records indexed
        """
        codes: list[str] = []
        vectors: list[np.ndarray] = []
        dimension: Optional[int] = None
        skipped = 0

        for record in records:
            vector = decode_embedding(record.embedding)
            if vector is None:
                skipped += 1
                continue
            if dimension is None:
                dimension = vector.size
            elif vector.size != dimension:
                skipped += 1
                continue
            codes.append(record.class_code)
            vectors.append(vector)

        if vectors:
            matrix = np.vstack(vectors)
            norms = np.linalg.norm(matrix, axis=1)
        else:
            matrix = np.empty((0, 0), dtype=np.float64)
            norms = np.empty(0, dtype=np.float64)

        # Swap everything at once so a query never sees a half-built index
        self._codes, self._matrix, self._norms = codes, matrix, norms
        self._dimension = dimension
        self.source_id = source_id
        self.is_built = True

        logger.debug(
            f"Vector index built: {len(codes)} indexed, {skipped} without usable embeddings"
        )
        return len(codes)

    def search(
        self,
        query_vector: Sequence[float] | np.ndarray,
        top_k: int,
        min_score: float,
    ) -> list[VectorHit]:
        """
        Rank indexed courses by cosine similarity to `query_vector`.

        Args:
            query_vector: Query embedding
            top_k: Maximum number of hits
            min_score: Hits scoring below this are dropped (not clamped)

        Returns:
            Hits ordered by descending score, catalog order on ties

        Raises:
            EmbeddingDimensionError: If the query dimension differs from the index
        """
        if top_k <= 0 or self.size == 0:
            return []

        query = decode_embedding(query_vector)
        if query is None:
            return []
        if query.size != self._dimension:
            raise EmbeddingDimensionError(query.size, self._dimension or 0)

        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            scores = np.zeros(self.size, dtype=np.float64)
        else:
            denominators = self._norms * query_norm
            dots = self._matrix @ query
            scores = np.divide(
                dots,
                denominators,
                out=np.zeros_like(dots),
                where=denominators != 0.0,
            )

        eligible = np.flatnonzero(scores >= min_score)
        if eligible.size == 0:
            return []

        order = eligible[np.argsort(-scores[eligible], kind="stable")][:top_k]
        return [VectorHit(class_code=self._codes[i], score=float(scores[i])) for i in order]
