"""
Cosine similarity and top-k ranking over stored product embeddings.

Ranking is numpy-vectorised: the candidate matrix is normalised row-wise
and scored against the normalised query in a single dot product. Ties are
broken by ascending product id so the order is deterministic.
"""
import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


def _unit(vector: np.ndarray) -> Optional[np.ndarray]:
    """Unit vector in the direction of vector, None when it has no direction"""
    # Rescale by the largest component first so squaring can neither overflow nor underflow
    scale = np.max(np.abs(vector))
    if scale == 0 or not np.isfinite(scale):
        return None
    scaled = vector / scale
    return scaled / np.linalg.norm(scaled)


def _unit_rows(matrix: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Row-wise unit vectors plus a mask of the rows that had a direction"""
    scales = np.max(np.abs(matrix), axis=1)
    valid = (scales > 0) & np.isfinite(scales)
    scaled = matrix / np.where(valid, scales, 1.0)[:, None]
    norms = np.linalg.norm(scaled, axis=1)
    return scaled / np.where(valid, norms, 1.0)[:, None], valid


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between a and b, in [-1, 1].

    Returns 0.0 for empty vectors, zero-magnitude vectors or mismatched
    dimensions instead of raising.
    """
    if a is None or b is None or len(a) == 0 or len(b) == 0 or len(a) != len(b):
        return 0.0

    unit_a = _unit(np.asarray(a, dtype=np.float64))
    unit_b = _unit(np.asarray(b, dtype=np.float64))
    if unit_a is None or unit_b is None:
        return 0.0

    return float(np.clip(np.dot(unit_a, unit_b), -1.0, 1.0))


class SimilarityRanker:
    """Ranks candidate vectors against a query vector"""

    @staticmethod
    def comparable(
        query_vector: Sequence[float],
        candidate_vectors: Dict[int, Sequence[float]],
    ) -> Dict[int, Sequence[float]]:
        """Candidates that can be scored against the query: same dimension, non-zero query"""
        if not candidate_vectors or _unit(np.asarray(query_vector, dtype=np.float64)) is None:
            return {}
        dimension = len(query_vector)
        return {pid: vector for pid, vector in candidate_vectors.items() if len(vector) == dimension}

    def rank(
        self,
        query_vector: Sequence[float],
        candidate_vectors: Dict[int, Sequence[float]],
        top_k: int,
    ) -> List[Tuple[int, float]]:
        """
        Rank candidates by cosine similarity to the query

        Args:
            query_vector: Profile embedding
            candidate_vectors: product_id -> embedding
            top_k: Maximum number of results

        Returns:
            (product_id, score) pairs, highest score first, ties by product_id
        """
        if top_k <= 0 or not candidate_vectors:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        unit_query = _unit(query) if query.size else None
        dimension = query.size

        product_ids = sorted(candidate_vectors.keys())
        scores = np.zeros(len(product_ids), dtype=np.float64)

        if unit_query is not None:
            # Only vectors with the query's dimension are comparable; the rest score 0.0
            comparable = [i for i, pid in enumerate(product_ids) if len(candidate_vectors[pid]) == dimension]
            if len(comparable) < len(product_ids):
                logger.warning(f"{len(product_ids) - len(comparable)} stored embeddings have a dimension other than {dimension}")
            if comparable:
                matrix = np.array([candidate_vectors[product_ids[i]] for i in comparable], dtype=np.float64)
                unit_matrix, valid = _unit_rows(matrix)
                similarities = np.clip(unit_matrix.dot(unit_query), -1.0, 1.0)
                similarities[~valid] = 0.0
                scores[comparable] = similarities
        else:
            logger.warning("Query embedding has zero norm; all candidates score 0.0")

        ids = np.array(product_ids)
        order = np.lexsort((ids, -scores))[:top_k]
        return [(int(ids[i]), float(scores[i])) for i in order]
