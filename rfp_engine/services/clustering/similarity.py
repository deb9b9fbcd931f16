"""Cosine similarity helpers over numpy arrays."""

from typing import Sequence, Tuple

import numpy as np

from rfp_engine.core.exceptions import ClusteringError


def stack_embeddings(embeddings: Sequence[Sequence[float]]) -> np.ndarray:
    """Stack embeddings into a 2-D float array.

    Raises:
        ClusteringError: If the vectors do not all share one dimensionality
    """
    if not embeddings:
        return np.zeros((0, 0), dtype=np.float64)

    dims = {len(vector) for vector in embeddings}
    if len(dims) != 1:
        raise ClusteringError(f"Inconsistent embedding dimensions: {sorted(dims)}")
    if 0 in dims:
        raise ClusteringError("Embeddings must not be empty")

    return np.asarray(embeddings, dtype=np.float64)


def normalize_rows(matrix: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """L2-normalize each row.

    Returns:
        (normalized matrix, boolean mask of zero-magnitude rows). Zero rows
        stay all-zero, so their similarity to anything is 0.
    """
    norms = np.linalg.norm(matrix, axis=1)
    zero_mask = norms == 0.0
    safe_norms = np.where(zero_mask, 1.0, norms)
    return matrix / safe_norms[:, None], zero_mask
