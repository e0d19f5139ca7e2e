"""
Log-odds affine-gap Viterbi aligner of a sequence against an ancestral profile.

The profile consists of a 4 x N matrix of nucleotide state probabilities
(from ancestral state reconstruction) and a 2 x N matrix of
(P(residue), P(gap)) per column. Three states are tracked per cell:

- M: query residue aligned to a profile column
- I: query residue in an insertion (gap in the profile)
- D: profile column deleted (gap in the query)

Recurrences (max semiring, log space):

    M[i][j] = max(M[i-1][j-1] + log P_res[j-1],
                  D[i-1][j-1] + log P_gap[j-1],
                  I[i-1][j-1]) + lo(query[i-1], j-1)
    I[i][j] = max(M[i-1][j], I[i-1][j])
    D[i][j] = max(M[i][j-1], D[i][j-1])

The first row and column are 0, so end gaps are free. The score is the
final M cell only.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

import numpy as np

from stepalign.core.constants import DEFAULT_BACKGROUND_FREQS, LOG_ODDS_FLOOR


class AlignOp(str, Enum):
    """Traceback operation."""

    MATCH = "M"
    INSERT = "I"
    DELETE = "D"


@dataclass(frozen=True)
class ProfileAlignment:
    """Score and traceback of one query against a profile.

    ops lists one operation per alignment column from left to right. MATCH
    and DELETE consume a profile column, MATCH and INSERT a query residue.
    """

    score: float
    ops: tuple[AlignOp, ...]

    def render(self, query: str, profile_rows: Sequence[str]) -> tuple[str, list[str]]:
        """Apply the traceback to a query and the rows behind the profile.

        Returns:
            The gapped query and the profile rows widened with gap columns
            at insert positions.
        """
        out_query: list[str] = []
        out_rows: list[list[str]] = [[] for _ in profile_rows]
        qi = 0
        pj = 0
        for op in self.ops:
            if op is AlignOp.INSERT:
                out_query.append(query[qi])
                qi += 1
                for out in out_rows:
                    out.append("-")
                continue

            if op is AlignOp.MATCH:
                out_query.append(query[qi])
                qi += 1
            else:
                out_query.append("-")
            for out, row in zip(out_rows, profile_rows):
                out.append(row[pj])
            pj += 1

        return "".join(out_query), ["".join(out) for out in out_rows]


def match_log_odds(prob: np.ndarray | float, background: float) -> np.ndarray:
    """log(prob / background), floored at LOG_ODDS_FLOOR."""
    prob = np.asarray(prob, dtype=np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        lo = np.log(prob / background)
    lo = np.where(np.isnan(lo), LOG_ODDS_FLOOR, lo)
    return np.maximum(LOG_ODDS_FLOOR, lo)


class LogOddsViterbi:
    """Viterbi aligner bound to one ancestral profile.

    Example:
        >>> lov = LogOddsViterbi(state_probs, gap_probs)
        >>> score = lov.align(candidate.mapped)
    """

    def __init__(
        self,
        state_probs: np.ndarray,
        gap_probs: np.ndarray,
        background: Sequence[float] = DEFAULT_BACKGROUND_FREQS,
    ) -> None:
        state_probs = np.asarray(state_probs, dtype=np.float64)
        gap_probs = np.asarray(gap_probs, dtype=np.float64)

        if state_probs.ndim != 2 or gap_probs.ndim != 2 or gap_probs.shape[0] != 2:
            raise ValueError(
                f"Expected (S, N) state and (2, N) gap matrices, got "
                f"{state_probs.shape} and {gap_probs.shape}"
            )
        if state_probs.shape[1] != gap_probs.shape[1]:
            raise ValueError(
                f"Profile length mismatch: {state_probs.shape[1]} state columns, "
                f"{gap_probs.shape[1]} gap columns"
            )
        if state_probs.shape[0] == 0:
            raise ValueError("State probability matrix has no states")
        if len(background) != state_probs.shape[0]:
            raise ValueError(
                f"{len(background)} background frequencies for {state_probs.shape[0]} states"
            )

        self._profile_len = state_probs.shape[1]
        self._state_lo = np.vstack(
            [match_log_odds(state_probs[s], background[s]) for s in range(state_probs.shape[0])]
        )

        with np.errstate(divide="ignore"):
            self._log_res = np.log(gap_probs[0])
            self._log_gap = np.log(gap_probs[1])

    @property
    def profile_len(self) -> int:
        return self._profile_len

    def _next_rows(
        self,
        state: int,
        m: np.ndarray,
        d: np.ndarray,
        i: np.ndarray,
    ) -> tuple[np.ndarray, ...]:
        """Compute row i from row i - 1; also returns the argmax pointers."""
        diag = np.vstack([m[:-1] + self._log_res, d[:-1] + self._log_gap, i[:-1]])
        m_ptr = np.argmax(diag, axis=0)
        new_m = np.empty_like(m)
        new_m[0] = m[0]
        new_m[1:] = diag[m_ptr, np.arange(self._profile_len)] + self._state_lo[state]

        # ties prefer M over I
        i_ptr = i[1:] > m[1:]
        new_i = np.empty_like(i)
        new_i[0] = i[0]
        new_i[1:] = np.where(i_ptr, i[1:], m[1:])

        # D[j] = max(M[j-1], D[j-1]) unrolls to a running maximum; ties prefer M
        new_d = np.empty_like(d)
        new_d[0] = d[0]
        new_d[1:] = np.maximum.accumulate(np.concatenate(([d[0]], new_m[:-1])))[1:]
        d_ptr = new_d[:-1] > new_m[:-1]

        return new_m, new_d, new_i, m_ptr, i_ptr, d_ptr

    def align(self, query: Sequence[int]) -> float:
        """Return the Viterbi score of `query` (state indices) against the profile."""
        m = np.zeros(self._profile_len + 1)
        d = np.zeros(self._profile_len + 1)
        i = np.zeros(self._profile_len + 1)

        if self._profile_len == 0:
            return 0.0

        for state in query:
            m, d, i, *_ = self._next_rows(state, m, d, i)

        return float(m[-1])

    def align_path(self, query: Sequence[int]) -> ProfileAlignment:
        """Align and trace back from the final M cell.

        Leading and trailing query residues outside the traced path become
        inserts, leading and trailing profile columns become deletes.
        """
        q = len(query)
        p = self._profile_len
        m = np.zeros(p + 1)
        d = np.zeros(p + 1)
        i = np.zeros(p + 1)

        m_ptrs = np.zeros((q + 1, p), dtype=np.int8)
        i_ptrs = np.zeros((q + 1, p), dtype=bool)
        d_ptrs = np.zeros((q + 1, p), dtype=bool)

        if p > 0:
            for row, state in enumerate(query, start=1):
                m, d, i, m_ptr, i_ptr, d_ptr = self._next_rows(state, m, d, i)
                m_ptrs[row] = m_ptr
                i_ptrs[row] = i_ptr
                d_ptrs[row] = d_ptr

        score = float(m[-1])
        ops: list[AlignOp] = []
        row, col = q, p
        current = AlignOp.MATCH

        while row > 0 and col > 0:
            ops.append(current)
            if current is AlignOp.MATCH:
                prev = m_ptrs[row, col - 1]
                row -= 1
                col -= 1
                current = (AlignOp.MATCH, AlignOp.DELETE, AlignOp.INSERT)[prev]
            elif current is AlignOp.INSERT:
                current = AlignOp.INSERT if i_ptrs[row, col - 1] else AlignOp.MATCH
                row -= 1
            else:
                current = AlignOp.DELETE if d_ptrs[row, col - 1] else AlignOp.MATCH
                col -= 1

        ops.extend([AlignOp.DELETE] * col)
        ops.extend([AlignOp.INSERT] * row)
        ops.reverse()
        return ProfileAlignment(score=score, ops=tuple(ops))
