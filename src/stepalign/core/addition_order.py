"""
Addition-order planner.

Chooses the order in which sequences are inserted into the growing tree.
Raw alignment scores are min-max normalised into dissimilarities; the
closest pair seeds the tree and every following candidate is the unused
sequence with the smallest summed distance to all used ones.
"""

from __future__ import annotations

import logging

import numpy as np

from stepalign.core.exceptions import PlannerNotInitializedError, StepalignError

logger = logging.getLogger(__name__)


def scores_to_distances(scores: np.ndarray) -> np.ndarray:
    """Normalise raw scores to distances in [0, 1].

    distance = 1 - (score - min) / (max - min). A constant matrix carries no
    information and maps to all-zero distances.
    """
    scores = np.asarray(scores, dtype=np.float64)
    lo = scores.min()
    hi = scores.max()
    if hi == lo:
        logger.warning("All pairwise scores are identical; distances set to 0")
        return np.zeros_like(scores)
    return 1.0 - (scores - lo) / (hi - lo)


class AdditionOrder:
    """Greedy addition order over a pairwise distance matrix.

    The accumulated distance vector is the column sum of the distance
    matrix over used rows. It is built lazily on the first call to
    next_candidate() and then updated by one row per call.

    Example:
        >>> order = AdditionOrder()
        >>> a, b = order.initialize(scores)
        >>> while (cand := order.next_candidate()) is not None:
        ...     insert(cand)
    """

    def __init__(self) -> None:
        self._distances = np.zeros((0, 0), dtype=np.float64)
        self._used = np.zeros(0, dtype=bool)
        self._accumulated: np.ndarray | None = None
        self._first_pair: tuple[int, int] | None = None

    def initialize(self, scores: np.ndarray) -> tuple[int, int]:
        """Build distances from raw scores and mark the closest pair used.

        Returns:
            The seed pair (i, j), i.e. the first strictly smallest
            off-diagonal distance in row-major order.
        """
        scores = np.asarray(scores, dtype=np.float64)
        if scores.ndim != 2 or scores.shape[0] != scores.shape[1]:
            raise StepalignError(f"Score matrix must be square, got shape {scores.shape}")
        n = scores.shape[0]
        if n < 2:
            raise StepalignError(f"Need at least 2 sequences for an addition order, got {n}")

        self._distances = scores_to_distances(scores)
        self._used = np.zeros(n, dtype=bool)
        self._accumulated = None

        off_diag = self._distances.copy()
        np.fill_diagonal(off_diag, np.inf)
        # argmin returns the first minimum in row-major order
        flat = int(np.argmin(off_diag))
        i, j = divmod(flat, n)

        self._used[i] = self._used[j] = True
        self._first_pair = (i, j)
        logger.info("Seed pair: %d and %d (distance %.4f)", i, j, self._distances[i, j])
        return self._first_pair

    @property
    def first_pair(self) -> tuple[int, int]:
        if self._first_pair is None:
            raise PlannerNotInitializedError
        return self._first_pair

    @property
    def distances(self) -> np.ndarray:
        return self._distances

    @property
    def used(self) -> np.ndarray:
        """Copy of the used-sequence mask."""
        return self._used.copy()

    @property
    def accumulated_distance(self) -> np.ndarray | None:
        """Current accumulator, None until the first next_candidate() call."""
        return None if self._accumulated is None else self._accumulated.copy()

    @property
    def remaining(self) -> int:
        return int((~self._used).sum())

    def next_candidate(self) -> int | None:
        """Return the next sequence to insert and mark it used.

        Returns:
            Index of the unused sequence with minimal accumulated distance
            (first index wins ties), or None when every sequence is used.

        Raises:
            PlannerNotInitializedError: If initialize() was never called.
        """
        if self._distances.size == 0:
            raise PlannerNotInitializedError

        if self._accumulated is None:
            self._accumulated = self._distances[self._used].sum(axis=0)

        candidates = np.flatnonzero(~self._used)
        if candidates.size == 0:
            return None

        best = int(candidates[np.argmin(self._accumulated[candidates])])

        self._accumulated += self._distances[best]
        self._used[best] = True
        return best
