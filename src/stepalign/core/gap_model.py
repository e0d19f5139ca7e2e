"""
Two-state (residue / gap) continuous-time Markov model.

The model is rebuilt once per insertion iteration from the gap frequency
realised in the current alignment. Probabilistic newview calls obtain it
either as an explicit argument or through gap_model_scope(), a lock-guarded
binding that always restores the previous model on exit.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

import numpy as np

from stepalign.core.constants import GAP_CHAR
from stepalign.core.exceptions import GapModelError

logger = logging.getLogger(__name__)


def realized_gap_frequency(rows: Iterable[str]) -> float:
    """Fraction of gap characters over all characters of the aligned rows.

    Raises:
        GapModelError: If the rows contain no characters at all.
    """
    n_gaps = 0
    n_total = 0
    for row in rows:
        n_total += len(row)
        n_gaps += row.count(GAP_CHAR)

    if n_total == 0:
        raise GapModelError("alignment is empty")

    freq = n_gaps / n_total
    logger.info("Gap rate: %d gaps in %d positions (%.4f)", n_gaps, n_total, freq)
    return freq


class ProbGapModel:
    """Reversible two-state model with stationary distribution (1 - g, g).

    State 0 is "residue", state 1 is "gap". The rate matrix is

        Q = [[-g,      g     ],
             [ 1 - g, -(1 - g)]]

    and is diagonalised once; transition matrices for any branch length are
    then V diag(exp(t * lambda)) V^-1.
    """

    __slots__ = ("_evals", "_evecs", "_evecs_inv", "_gap_freq")

    def __init__(self, gap_freq: float) -> None:
        if not math.isfinite(gap_freq) or not 0.0 <= gap_freq <= 1.0:
            raise GapModelError("frequency outside [0, 1]", gap_freq)

        self._gap_freq = float(gap_freq)
        rate = np.array(
            [
                [-gap_freq, gap_freq],
                [1.0 - gap_freq, -(1.0 - gap_freq)],
            ],
            dtype=np.float64,
        )

        try:
            evals, evecs = np.linalg.eig(rate)
            evecs_inv = np.linalg.inv(evecs)
        except np.linalg.LinAlgError as e:
            raise GapModelError(f"eigendecomposition failed ({e})", gap_freq) from e

        if np.iscomplexobj(evals):
            if np.abs(evals.imag).max() > 1e-12:
                raise GapModelError("complex eigenvalues", gap_freq)
            evals, evecs, evecs_inv = evals.real, evecs.real, evecs_inv.real

        self._evals = evals
        self._evecs = evecs
        self._evecs_inv = evecs_inv

    @property
    def gap_freq(self) -> float:
        return self._gap_freq

    @property
    def stationary(self) -> np.ndarray:
        return np.array([1.0 - self._gap_freq, self._gap_freq])

    def transition_matrix(self, t: float) -> np.ndarray:
        """Return P(t); P[i, j] is the probability of state j after time t from i.

        P(0) is exactly the identity. Rounding residue of the
        eigendecomposition is clipped to [0, 1] so that propagated
        likelihoods never turn negative.
        """
        if t == 0.0:
            return np.eye(2)
        p = (self._evecs * np.exp(t * self._evals)) @ self._evecs_inv
        return np.clip(p, 0.0, 1.0)

    def __repr__(self) -> str:
        return f"ProbGapModel(gap_freq={self._gap_freq:.4f})"


_binding_lock = threading.RLock()
_active_model: ProbGapModel | None = None


def active_gap_model() -> ProbGapModel | None:
    """Return the model bound by the innermost gap_model_scope(), if any."""
    return _active_model


@contextmanager
def gap_model_scope(model: ProbGapModel) -> Iterator[ProbGapModel]:
    """Bind `model` as the active gap model for the duration of the block.

    The lock makes the binding single-writer: another thread entering a
    scope waits until this one exits. Nested scopes in the same thread
    stack, and the previous binding is restored on every exit path.
    """
    global _active_model

    with _binding_lock:
        previous = _active_model
        _active_model = model
        try:
            yield model
        finally:
            _active_model = previous
