"""
Unit tests for the pairwise alignment primitives and score cache.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from stepalign.core.exceptions import StepalignError
from stepalign.core.pairwise import (
    align_freeshift,
    load_score_matrix,
    pairwise_score_matrix,
    save_score_matrix,
)
from stepalign.models.config import AlignmentScoringConfig


class TestPairwiseScoreMatrix:
    """Tests for the all-pairs score matrix."""

    def test_symmetric_with_self_scores(self):
        seqs = ["ACGTACGT", "ACGTTCGT", "TTTTACGT"]
        scores = pairwise_score_matrix(seqs)
        np.testing.assert_array_equal(scores, scores.T)
        # identical residues score 3 each
        assert scores[0, 0] == pytest.approx(24.0)
        assert scores[0, 1] == pytest.approx(21.0)

    def test_thread_count_does_not_change_result(self, small_records):
        seqs = [s for _, s in small_records]
        serial = pairwise_score_matrix(seqs, threads=1)
        parallel = pairwise_score_matrix(seqs, threads=4)
        np.testing.assert_array_equal(serial, parallel)

    def test_gap_penalties(self):
        scoring = AlignmentScoringConfig()
        scores = pairwise_score_matrix(["ACGTACGT", "ACGACGT"], scoring)
        # one deleted residue: 7 matches and a single gap open
        assert scores[0, 1] == pytest.approx(7 * 3.0 + scoring.distance_gap_open)

    def test_empty_input(self):
        assert pairwise_score_matrix([]).shape == (0, 0)


class TestAlignFreeshift:
    def test_rows_have_equal_length(self):
        a, b = align_freeshift("ACGTACGTTT", "GTACG")
        assert len(a) == len(b)
        assert a.replace("-", "") == "ACGTACGTTT"
        assert b.replace("-", "") == "GTACG"

    def test_end_gaps_are_free(self):
        a, b = align_freeshift("AAACGTAAA", "CGT")
        assert b == "---CGT---"
        assert a == "AAACGTAAA"

    def test_empty_sequence(self):
        assert align_freeshift("ACG", "") == ("ACG", "---")


class TestScoreCache:
    """Tests for the CSV score matrix cache."""

    def test_round_trip(self, temp_dir: Path, toy_scores: np.ndarray):
        names = ["w", "x", "y", "z"]
        path = temp_dir / "scores.csv"
        save_score_matrix(toy_scores, names, path)
        np.testing.assert_array_equal(load_score_matrix(path, names), toy_scores)

    def test_name_mismatch(self, temp_dir: Path, toy_scores: np.ndarray):
        path = temp_dir / "scores.csv"
        save_score_matrix(toy_scores, ["w", "x", "y", "z"], path)
        with pytest.raises(StepalignError, match="does not match"):
            load_score_matrix(path, ["w", "x", "y", "q"])

    def test_missing_file(self, temp_dir: Path):
        with pytest.raises(FileNotFoundError):
            load_score_matrix(temp_dir / "none.csv", ["a"])
