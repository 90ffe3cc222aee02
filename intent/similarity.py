"""
Embedding Similarity

Cosine similarity between a query embedding and the example embeddings of
an intent.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from observability.logging_config import get_logger
from observability.metrics import metrics

logger = get_logger(__name__)

Vector = Sequence[float]


@dataclass(frozen=True)
class ExampleMatch:
    """Best example of one intent for a query."""

    example: str
    similarity: float
    index: int


def cosine_similarity(a: Vector, b: Vector) -> float:
    """
    Cosine similarity of two vectors, clamped to [-1, 1].

    Zero vectors have similarity 0. Out-of-range values (provider defects or
    non-finite components) are clamped and logged.

    Raises:
        ValueError: If the vectors differ in dimension
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector dimensions must match ({va.shape[0]} != {vb.shape[0]})")

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(va, vb) / (norm_a * norm_b))

    if np.isnan(similarity):
        logger.warning("similarity_not_finite", dimensions=int(va.shape[0]))
        metrics.record_similarity_clamped()
        return 0.0

    # Rounding puts parallel vectors a hair above 1.0; only larger excursions are defects
    if abs(similarity) > 1.0 + 1e-9:
        logger.warning("similarity_out_of_range", similarity=similarity)
        metrics.record_similarity_clamped()
    return min(1.0, max(-1.0, similarity))


def best_example_match(
    query_embedding: Vector,
    examples: Sequence[str],
    example_embeddings: Sequence[Vector],
) -> Optional[ExampleMatch]:
    """
    Find the example most similar to the query.

    Ties keep the first example in insertion order. Returns None when the
    intent has no examples.
    """
    if not example_embeddings:
        return None

    best: Optional[ExampleMatch] = None
    for i, embedding in enumerate(example_embeddings):
        similarity = cosine_similarity(query_embedding, embedding)
        if best is None or similarity > best.similarity:
            best = ExampleMatch(example=examples[i], similarity=similarity, index=i)
    return best
