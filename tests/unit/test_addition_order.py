"""
Unit tests for the addition-order planner.
"""

from __future__ import annotations

import numpy as np
import pytest

from stepalign.core.addition_order import AdditionOrder, scores_to_distances
from stepalign.core.exceptions import PlannerNotInitializedError, StepalignError


class TestScoresToDistances:
    """Tests for min-max normalisation."""

    def test_range(self, toy_scores: np.ndarray):
        d = scores_to_distances(toy_scores)
        assert d.min() == pytest.approx(0.0)
        assert d.max() == pytest.approx(1.0)
        # highest score is the smallest distance
        assert d[0, 0] == pytest.approx(0.0)

    def test_constant_matrix_gives_zero_distances(self):
        d = scores_to_distances(np.full((3, 3), 7.0))
        assert np.all(d == 0.0)


class TestAdditionOrder:
    """Tests for seed pair selection and candidate order."""

    def test_seed_pair_is_closest(self, toy_scores: np.ndarray):
        order = AdditionOrder()
        assert order.initialize(toy_scores) == (0, 2)
        assert order.first_pair == (0, 2)
        assert list(order.used) == [True, False, True, False]

    def test_candidate_sequence(self, toy_scores: np.ndarray):
        order = AdditionOrder()
        order.initialize(toy_scores)
        assert order.next_candidate() == 1
        assert order.next_candidate() == 3
        assert order.next_candidate() is None
        assert order.remaining == 0

    def test_accumulator_is_lazy(self, toy_scores: np.ndarray):
        order = AdditionOrder()
        order.initialize(toy_scores)
        assert order.accumulated_distance is None
        order.next_candidate()
        assert order.accumulated_distance is not None

    def test_accumulator_matches_sum_over_used_rows(self):
        rng = np.random.default_rng(7)
        raw = rng.uniform(0, 100, size=(8, 8))
        scores = (raw + raw.T) / 2

        order = AdditionOrder()
        order.initialize(scores)
        while order.next_candidate() is not None:
            expected = order.distances[order.used].sum(axis=0)
            np.testing.assert_allclose(order.accumulated_distance, expected)

    def test_every_index_returned_once(self):
        rng = np.random.default_rng(3)
        raw = rng.uniform(0, 50, size=(6, 6))
        order = AdditionOrder()
        seen = set(order.initialize((raw + raw.T) / 2))
        while (cand := order.next_candidate()) is not None:
            assert cand not in seen
            seen.add(cand)
        assert seen == set(range(6))

    def test_ties_pick_first_index(self):
        scores = np.array(
            [
                [9.0, 8.0, 1.0, 1.0],
                [8.0, 9.0, 1.0, 1.0],
                [1.0, 1.0, 9.0, 1.0],
                [1.0, 1.0, 1.0, 9.0],
            ]
        )
        order = AdditionOrder()
        assert order.initialize(scores) == (0, 1)
        assert order.next_candidate() == 2

    def test_uninitialized_raises(self):
        with pytest.raises(PlannerNotInitializedError):
            AdditionOrder().next_candidate()
        with pytest.raises(PlannerNotInitializedError):
            _ = AdditionOrder().first_pair

    def test_rejects_non_square(self):
        with pytest.raises(StepalignError, match="square"):
            AdditionOrder().initialize(np.zeros((2, 3)))

    def test_rejects_single_sequence(self):
        with pytest.raises(StepalignError, match="at least 2"):
            AdditionOrder().initialize(np.zeros((1, 1)))
