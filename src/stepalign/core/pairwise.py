"""
Pairwise alignment primitives used by the insertion engine.

Two black boxes are consumed by the core:
- an all-pairs raw alignment score matrix that seeds the addition order
- a free-end-gap (freeshift) aligner used once to build the seed quartet

Both are backed by BioPython's PairwiseAligner. The score matrix is computed
on a fixed-size thread pool; each task writes its own (i, j) cells, so the
only synchronisation needed is the pool join.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence as SequenceT
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import polars as pl

from stepalign.core.exceptions import StepalignError
from stepalign.models.config import AlignmentScoringConfig

if TYPE_CHECKING:
    from Bio.Align import PairwiseAligner

logger = logging.getLogger(__name__)


def _make_aligner(scoring: AlignmentScoringConfig, *, freeshift: bool) -> PairwiseAligner:
    from Bio.Align import PairwiseAligner

    aligner = PairwiseAligner()
    aligner.mode = "global"
    aligner.match_score = scoring.match_score
    aligner.mismatch_score = scoring.mismatch_score
    if freeshift:
        aligner.open_gap_score = scoring.freeshift_gap_open
        aligner.extend_gap_score = scoring.freeshift_gap_extend
        # Leading and trailing gaps are free
        aligner.end_gap_score = 0.0
    else:
        aligner.open_gap_score = scoring.distance_gap_open
        aligner.extend_gap_score = scoring.distance_gap_extend
    return aligner


def _score_row(
    row: int,
    residues: SequenceT[str],
    scoring: AlignmentScoringConfig,
) -> tuple[int, list[float]]:
    """Score sequence `row` against every sequence with index >= row."""
    aligner = _make_aligner(scoring, freeshift=False)
    target = residues[row]
    scores = [float(aligner.score(target, residues[j])) for j in range(row, len(residues))]
    return row, scores


def pairwise_score_matrix(
    residues: SequenceT[str],
    scoring: AlignmentScoringConfig | None = None,
    threads: int = 1,
) -> np.ndarray:
    """Compute the symmetric all-pairs alignment score matrix.

    Only pairs i <= j are aligned; the lower triangle is mirrored from the
    upper one. The diagonal holds self-alignment scores.

    Args:
        residues: Normalised residue strings.
        scoring: Alignment scores (defaults if None).
        threads: Size of the worker pool.

    Returns:
        Square float64 matrix of raw alignment scores.
    """
    scoring = scoring or AlignmentScoringConfig()
    n = len(residues)
    scores = np.zeros((n, n), dtype=np.float64)

    if n == 0:
        return scores

    max_workers = max(1, min(threads, n))
    logger.info("Aligning %d sequence pairs with %d workers", n * (n + 1) // 2, max_workers)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(_score_row, i, residues, scoring) for i in range(n)]
        for future in as_completed(futures):
            row, values = future.result()
            scores[row, row:] = values
            scores[row:, row] = values

    return scores


def align_freeshift(
    a: str,
    b: str,
    scoring: AlignmentScoringConfig | None = None,
) -> tuple[str, str]:
    """Align two sequences with unpenalised leading and trailing gaps.

    Returns:
        The two gapped rows; both have the same length.
    """
    scoring = scoring or AlignmentScoringConfig()

    if not a or not b:
        width = max(len(a), len(b))
        return a.ljust(width, "-"), b.ljust(width, "-")

    aligner = _make_aligner(scoring, freeshift=True)
    best = aligner.align(a, b)[0]
    row_a, row_b = str(best[0]), str(best[1])
    logger.debug("Freeshift alignment score %.1f, %d columns", best.score, len(row_a))
    return row_a, row_b


def save_score_matrix(scores: np.ndarray, names: SequenceT[str], path: Path) -> None:
    """Write a raw score matrix as CSV with a leading name column."""
    data: dict[str, list] = {"name": list(names)}
    for j, name in enumerate(names):
        data[name] = scores[:, j].tolist()
    pl.DataFrame(data).write_csv(path)
    logger.info("Cached pairwise scores for %d sequences in %s", len(names), path)


def load_score_matrix(path: Path, names: SequenceT[str]) -> np.ndarray:
    """Read a cached score matrix and check it matches the sequence names.

    Raises:
        FileNotFoundError: If the file does not exist.
        StepalignError: If the cached names differ from `names`.
    """
    if not path.exists():
        raise FileNotFoundError(f"Score matrix not found: {path}")

    df = pl.read_csv(path)
    cached = df.get_column(df.columns[0]).cast(pl.Utf8).to_list()
    if cached != list(names) or df.columns[1:] != list(names):
        raise StepalignError(
            f"Cached score matrix {path} does not match the input sequences",
            suggestion="Delete the cache or run without --load-scores to recompute it.",
        )

    scores = df.select(df.columns[1:]).to_numpy().astype(np.float64)
    logger.info("Loaded pairwise scores for %d sequences from %s", len(names), path)
    return scores
