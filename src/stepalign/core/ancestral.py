"""
Ancestral vectors and the newview propagation operator.

Two mutually exclusive representations exist and a run uses exactly one:

- ParsimonyVector: per-column nucleotide bitmask plus an auxiliary
  "continuous gap" flag.
- ProbGapVector: the same nucleotide bitmask plus a 2 x N matrix of
  (P(residue), P(gap)) likelihoods propagated under ProbGapModel.

newview() combines two child vectors into their parent vector and
dispatches on the representation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Literal

import numpy as np

from stepalign.core.constants import AUX_CGAP, AUX_OPEN, GAP_CHAR, PARSIMONY_ALL, PARSIMONY_STATES
from stepalign.core.exceptions import MissingGapModelError, NewviewLengthMismatchError
from stepalign.core.gap_model import ProbGapModel, active_gap_model

logger = logging.getLogger(__name__)

VectorModel = Literal["probgap", "parsimony"]


class TipCase(str, Enum):
    """Classification of a bifurcation by how many children are tips."""

    TIP_TIP = "tip_tip"
    TIP_INNER = "tip_inner"
    INNER_INNER = "inner_inner"

    @classmethod
    def from_tips(cls, tip1: bool, tip2: bool) -> TipCase:
        if tip1 and tip2:
            return cls.TIP_TIP
        if tip1 or tip2:
            return cls.TIP_INNER
        return cls.INNER_INNER


def parsimony_states(row: str) -> np.ndarray:
    """Encode an aligned row as nucleotide bitmasks (unknown symbols -> all)."""
    return np.fromiter(
        (PARSIMONY_STATES.get(c, PARSIMONY_ALL) for c in row.upper()),
        dtype=np.uint8,
        count=len(row),
    )


def gap_mask(row: str) -> np.ndarray:
    return np.fromiter((c == GAP_CHAR for c in row), dtype=bool, count=len(row))


def _combine_states(s1: np.ndarray, s2: np.ndarray) -> np.ndarray:
    """Fitch step: intersection, or union where the intersection is empty."""
    inter = s1 & s2
    return np.where(inter == 0, s1 | s2, inter).astype(np.uint8)


@dataclass
class ParsimonyVector:
    """Nucleotide state sets with continuous-gap flags, one entry per column."""

    states: np.ndarray
    aux: np.ndarray

    @classmethod
    def from_row(cls, row: str) -> ParsimonyVector:
        aux = np.where(gap_mask(row), AUX_CGAP, 0).astype(np.uint8)
        return cls(states=parsimony_states(row), aux=aux)

    def __len__(self) -> int:
        return len(self.states)


@dataclass
class ProbGapVector:
    """Nucleotide state sets with per-column residue/gap likelihoods.

    gap_prob has shape (2, N): row 0 is P(residue), row 1 is P(gap). At tips
    a column is (1, 0) for residues and (0, 1) for gaps.
    """

    states: np.ndarray
    gap_prob: np.ndarray

    @classmethod
    def from_row(cls, row: str) -> ProbGapVector:
        gaps = gap_mask(row)
        gap_prob = np.vstack([~gaps, gaps]).astype(np.float64)
        return cls(states=parsimony_states(row), gap_prob=gap_prob)

    def __len__(self) -> int:
        return len(self.states)


AncestralVector = ParsimonyVector | ProbGapVector


def tip_vector(row: str, model: VectorModel) -> AncestralVector:
    """Build the tip vector of an aligned row for the run's vector model."""
    if model == "parsimony":
        return ParsimonyVector.from_row(row)
    return ProbGapVector.from_row(row)


def newview_parsimony(
    c1: ParsimonyVector,
    c2: ParsimonyVector,
    tip_case: TipCase,
) -> ParsimonyVector:
    """Combine two parsimony vectors.

    The aux flag is a closed gap when both children are closed gaps and an
    opened gap when exactly one is. Tip cases test the AUX_CGAP bit; the
    inner/inner case compares against the exact AUX_CGAP value, so a child
    that is itself an opened gap does not count as closed.
    """
    if len(c1) != len(c2):
        raise NewviewLengthMismatchError(len(c1), len(c2))

    states = _combine_states(c1.states, c2.states)

    if tip_case is TipCase.INNER_INNER:
        gap1 = c1.aux == AUX_CGAP
        gap2 = c2.aux == AUX_CGAP
    else:
        gap1 = (c1.aux & AUX_CGAP) != 0
        gap2 = (c2.aux & AUX_CGAP) != 0

    aux = np.where(
        gap1 & gap2,
        AUX_CGAP,
        np.where(gap1 != gap2, AUX_CGAP | AUX_OPEN, 0),
    ).astype(np.uint8)

    return ParsimonyVector(states=states, aux=aux)


def newview_probgap(
    c1: ProbGapVector,
    c2: ProbGapVector,
    z1: float,
    z2: float,
    model: ProbGapModel | None = None,
) -> ProbGapVector:
    """Propagate both children along their branches and multiply.

    The result is unnormalised: (P(z1) @ g1) * (P(z2) @ g2).

    Raises:
        MissingGapModelError: If no model is passed and none is bound.
    """
    if len(c1) != len(c2):
        raise NewviewLengthMismatchError(len(c1), len(c2))

    model = model if model is not None else active_gap_model()
    if model is None:
        raise MissingGapModelError

    t1 = model.transition_matrix(z1) @ c1.gap_prob
    t2 = model.transition_matrix(z2) @ c2.gap_prob

    return ProbGapVector(states=_combine_states(c1.states, c2.states), gap_prob=t1 * t2)


def newview(
    c1: AncestralVector,
    c2: AncestralVector,
    z1: float,
    z2: float,
    tip_case: TipCase,
    model: ProbGapModel | None = None,
) -> AncestralVector:
    """Compute the parent vector of two children.

    Raises:
        NewviewLengthMismatchError: If the children differ in length.
        MissingGapModelError: For ProbGapVector children without a model.
        TypeError: If the children use different representations.
    """
    if isinstance(c1, ParsimonyVector) and isinstance(c2, ParsimonyVector):
        return newview_parsimony(c1, c2, tip_case)
    if isinstance(c1, ProbGapVector) and isinstance(c2, ProbGapVector):
        return newview_probgap(c1, c2, z1, z2, model)
    raise TypeError(
        f"newview on mixed vector types: {type(c1).__name__} and {type(c2).__name__}"
    )


def gap_profile(vector: AncestralVector, gap_freq: float) -> np.ndarray:
    """Return the 2 x N (P(residue), P(gap)) profile the aligner scores against.

    ProbGap likelihoods are weighted by the stationary (1 - g, g) prior and
    normalised per column; columns without likelihood mass get the prior.
    Parsimony flags map to fixed profiles: residue columns (1 - g, g),
    closed gaps (g, 1 - g) and opened gaps (0.5, 0.5).
    """
    prior = np.array([[1.0 - gap_freq], [gap_freq]])

    if isinstance(vector, ProbGapVector):
        weighted = np.clip(vector.gap_prob, 0.0, None) * prior
        total = weighted.sum(axis=0)
        empty = total <= 0.0
        safe_total = np.where(empty, 1.0, total)
        profile = weighted / safe_total
        if empty.any():
            logger.debug("%d columns without likelihood mass", int(empty.sum()))
            profile[:, empty] = prior
        return profile

    n = len(vector)
    profile = np.repeat(prior, n, axis=1)
    closed = vector.aux == AUX_CGAP
    opened = (vector.aux & AUX_OPEN) != 0
    profile[:, closed] = prior[::-1]
    profile[:, opened] = 0.5
    return profile
