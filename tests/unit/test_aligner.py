"""
Unit tests for the log-odds Viterbi profile aligner.
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from stepalign.core.aligner import AlignOp, LogOddsViterbi, ProfileAlignment, match_log_odds
from stepalign.core.constants import LOG_ODDS_FLOOR


def _profile(consensus: str, strength: float = 0.97) -> np.ndarray:
    """State probabilities concentrated on one nucleotide per column."""
    weak = (1.0 - strength) / 3
    probs = np.full((4, len(consensus)), weak)
    for col, char in enumerate(consensus):
        probs["ACGT".index(char), col] = strength
    return probs


def _gaps(n: int, p_res: float = 0.9) -> np.ndarray:
    return np.vstack([np.full(n, p_res), np.full(n, 1.0 - p_res)])


class TestMatchLogOdds:
    def test_value(self):
        assert float(match_log_odds(0.5, 0.25)) == pytest.approx(math.log(2.0))

    def test_floor_for_zero_probability(self):
        assert float(match_log_odds(0.0, 0.25)) == LOG_ODDS_FLOOR

    def test_floor_for_tiny_probability(self):
        assert float(match_log_odds(1e-60, 0.25)) == LOG_ODDS_FLOOR


class TestLogOddsViterbi:
    """Tests for scores of the three-state recurrence."""

    def test_empty_query_scores_zero(self):
        lov = LogOddsViterbi(_profile("ACG"), _gaps(3))
        assert lov.align([]) == 0.0

    def test_empty_profile_scores_zero(self):
        lov = LogOddsViterbi(np.zeros((4, 0)), np.zeros((2, 0)))
        assert lov.profile_len == 0
        assert lov.align([0, 1, 2]) == 0.0

    def test_single_match(self):
        lov = LogOddsViterbi(_profile("A", 1.0), np.array([[1.0], [0.0]]))
        assert lov.align([0]) == pytest.approx(math.log(4.0))

    def test_single_mismatch_hits_floor(self):
        lov = LogOddsViterbi(_profile("A", 1.0), np.array([[1.0], [0.0]]))
        assert lov.align([1]) == pytest.approx(LOG_ODDS_FLOOR)

    def test_exact_match_path(self):
        lov = LogOddsViterbi(_profile("ACG"), _gaps(3))
        expected = 2 * math.log(0.9) + 3 * math.log(0.97 / 0.25)
        assert lov.align([0, 1, 2]) == pytest.approx(expected)

    def test_matching_query_scores_higher(self):
        lov = LogOddsViterbi(_profile("ACGTTGCA"), _gaps(8))
        good = lov.align([0, 1, 2, 3, 3, 2, 1, 0])
        bad = lov.align([3, 2, 1, 0, 0, 1, 2, 3])
        assert good > bad

    def test_rejects_shape_mismatch(self):
        with pytest.raises(ValueError, match="mismatch"):
            LogOddsViterbi(_profile("ACG"), _gaps(2))

    def test_rejects_bad_gap_matrix(self):
        with pytest.raises(ValueError):
            LogOddsViterbi(_profile("ACG"), np.ones((3, 3)))

    def test_rejects_background_length(self):
        with pytest.raises(ValueError, match="background"):
            LogOddsViterbi(_profile("ACG"), _gaps(3), background=(0.5, 0.5))


class TestAlignPath:
    """Tests for the traceback used to commit an insertion."""

    def test_exact_match_ops(self):
        lov = LogOddsViterbi(_profile("ACG"), _gaps(3))
        path = lov.align_path([0, 1, 2])
        assert path.ops == (AlignOp.MATCH, AlignOp.MATCH, AlignOp.MATCH)
        assert path.score == pytest.approx(lov.align([0, 1, 2]))

    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    def test_path_consumes_query_and_profile(self, seed: int):
        rng = np.random.default_rng(seed)
        p = int(rng.integers(1, 12))
        q = int(rng.integers(1, 12))
        probs = rng.dirichlet(np.ones(4), size=p).T
        res = rng.uniform(0.05, 0.95, size=p)
        lov = LogOddsViterbi(probs, np.vstack([res, 1 - res]))
        query = [int(x) for x in rng.integers(0, 4, size=q)]

        path = lov.align_path(query)
        assert path.score == pytest.approx(lov.align(query))
        assert sum(op is not AlignOp.DELETE for op in path.ops) == q
        assert sum(op is not AlignOp.INSERT for op in path.ops) == p

    def test_render(self):
        alignment = ProfileAlignment(
            score=0.0,
            ops=(AlignOp.MATCH, AlignOp.INSERT, AlignOp.MATCH, AlignOp.DELETE),
        )
        query, rows = alignment.render("ACG", ["AT-", "ATT"])
        assert query == "ACG-"
        assert rows == ["A-T-", "A-TT"]

    def test_render_keeps_residues(self):
        lov = LogOddsViterbi(_profile("ACGTA"), _gaps(5))
        path = lov.align_path([0, 2, 3, 3, 0, 1])
        query, rows = path.render("AGTTAC", ["ACGTA", "AC-TA"])
        assert query.replace("-", "") == "AGTTAC"
        assert [r.replace("-", "") for r in rows] == ["ACGTA", "ACTA"]
        assert len({len(query), *map(len, rows)}) == 1
