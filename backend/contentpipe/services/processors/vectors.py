"""
Vector helpers shared by the record store and the vector store.

Persisted format: a bracketed, comma-separated list of floats,
``[v1,v2,...,vn]``, which pgvector accepts as a vector literal.
"""

from collections.abc import Sequence

import numpy as np


def to_vector_literal(values: Sequence[float]) -> str:
    """Serialize an embedding as ``[v1,v2,...]``."""
    return "[" + ",".join(repr(float(v)) for v in values) + "]"


def parse_vector_literal(literal: str) -> list[float]:
    """
    Parse a ``[v1,v2,...]`` literal back into floats.

    Raises:
        ValueError: If the literal is not bracketed or a component is not a number
    """
    literal = literal.strip()
    if not (literal.startswith("[") and literal.endswith("]")):
        raise ValueError(f"Not a vector literal: {literal[:40]!r}")
    body = literal[1:-1].strip()
    if not body:
        return []
    return [float(part) for part in body.split(",")]


def as_float_list(value) -> list[float] | None:
    """Normalize a stored embedding (numpy array, literal string or list) to floats."""
    if value is None:
        return None
    if isinstance(value, str):
        return parse_vector_literal(value)
    return [float(v) for v in value]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero norm.

    Raises:
        ValueError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise ValueError(
            f"Vectors must have the same length ({len(a)} != {len(b)})"
        )

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(va, vb) / (norm_a * norm_b))


def centroid(vectors: Sequence[Sequence[float]]) -> list[float] | None:
    """Mean of equal-length vectors, or None for an empty input."""
    if not vectors:
        return None
    return np.mean(np.asarray(vectors, dtype=np.float64), axis=0).tolist()
