"""
Similarity Search

Ranks stored patterns against a query vector by cosine similarity.
BruteForceSearch scans every candidate (O(N) per query); an indexed
implementation can replace it behind the same SimilaritySearch interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence

import numpy as np

from .schemas import GuidancePattern


@dataclass
class PatternMatch:
    """A pattern with its similarity to a query"""
    pattern: GuidancePattern
    similarity: float

    def to_dict(self) -> Dict[str, Any]:
        return {"pattern": self.pattern.to_dict(), "similarity": self.similarity}


class SimilaritySearch(ABC):
    """Ranking contract used by the pattern store"""

    @abstractmethod
    def rank(
        self,
        query_vector: Sequence[float],
        patterns: Iterable[GuidancePattern],
        k: int,
    ) -> List[PatternMatch]:
        """
        Return at most k matches, highest similarity first.

        Ties are ordered by updated_at (most recent first), then id.
        """


class BruteForceSearch(SimilaritySearch):
    """Exhaustive cosine scan using one matrix-vector product"""

    def rank(
        self,
        query_vector: Sequence[float],
        patterns: Iterable[GuidancePattern],
        k: int,
    ) -> List[PatternMatch]:
        if k <= 0:
            return []

        candidates = [p for p in patterns if len(p.embedding) == len(query_vector)]
        if not candidates:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        matrix = np.asarray([p.embedding for p in candidates], dtype=np.float64)

        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            similarities = np.zeros(len(candidates))
        else:
            norms = np.linalg.norm(matrix, axis=1) * query_norm
            dots = matrix @ query
            similarities = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

        matches = [
            PatternMatch(pattern=p, similarity=float(s))
            for p, s in zip(candidates, similarities)
        ]
        # Secondary keys make equal similarities deterministic
        matches.sort(key=lambda m: m.pattern.id)
        matches.sort(key=lambda m: m.pattern.updated_at, reverse=True)
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:k]
