"""Tests for the DEAP mating-plan optimizer."""

import numpy as np
import pandas as pd
import pytest
from deap import creator

from breeding_advisor import MatingPlanOptimizer


@pytest.fixture
def score_matrix():
    """Four dams, two sires; SB is inadmissible for D4."""
    return pd.DataFrame(
        [[90.0, 60.0],
         [80.0, 70.0],
         [75.0, 72.0],
         [65.0, np.nan]],
        index=['D1', 'D2', 'D3', 'D4'],
        columns=['SA', 'SB'],
    )


class TestSetup:
    def test_sire_cap(self, score_matrix):
        assert MatingPlanOptimizer(score_matrix, max_assign_per_sire=0.5).max_assign_per_sire == 2
        assert MatingPlanOptimizer(score_matrix, max_assign_per_sire=0.01).max_assign_per_sire == 1

    def test_weight_signs(self, score_matrix):
        optimizer = MatingPlanOptimizer(score_matrix, criteria={
            'mean_score': {'weight': -1.0},
            'constraint_violation': {'weight': 2.0},
        })
        assert optimizer.individual_class().fitness.weights == (1.0, 0.1, -2.0)

    def test_weights_isolated_between_optimizers(self, score_matrix):
        first = MatingPlanOptimizer(score_matrix)
        second = MatingPlanOptimizer(score_matrix, criteria={'genetic_diversity': {'weight': 5.0}})
        assert first.individual_class().fitness.weights == (1.0, 0.1, -1.0)
        assert second.individual_class().fitness.weights == (1.0, 5.0, -1.0)
        plan, best, _ = first.optimize(pop_size=10, ngen=2, seed=4)
        assert best.fitness.weights == (1.0, 0.1, -1.0)

    def test_unknown_criterion(self, score_matrix):
        with pytest.raises(ValueError):
            MatingPlanOptimizer(score_matrix, criteria={'litter_size': {'weight': 1.0}})

    def test_no_admissible_pairs(self):
        matrix = pd.DataFrame([[np.nan]], index=['D1'], columns=['S1'])
        with pytest.raises(ValueError):
            MatingPlanOptimizer(matrix)

    def test_invalid_probabilities(self, score_matrix):
        with pytest.raises(ValueError):
            MatingPlanOptimizer(score_matrix).optimize(pop_size=10, ngen=1, cxpb=0.8, mutpb=0.5)


class TestOptimize:
    def test_plan_respects_constraints(self, score_matrix):
        optimizer = MatingPlanOptimizer(score_matrix, max_assign_per_sire=0.5)
        plan, best, hof = optimizer.optimize(pop_size=30, ngen=15, seed=1)
        assert list(plan['dam_id']) == ['D1', 'D2', 'D3', 'D4']
        # D4 допустима только с SA
        assert plan.set_index('dam_id').at['D4', 'sire_id'] == 'SA'
        assert plan['sire_id'].value_counts().max() <= 2
        assert not plan['score'].isna().any()
        assert len(hof) >= 1

    def test_unassigned_dam_reported(self, score_matrix):
        matrix = score_matrix.copy()
        matrix.loc['D5'] = [np.nan, np.nan]
        optimizer = MatingPlanOptimizer(matrix, max_assign_per_sire=0.5)
        assert optimizer.unassigned_dams == ['D5']
        plan, _, _ = optimizer.optimize(pop_size=20, ngen=5, seed=3)
        row = plan.set_index('dam_id').loc['D5']
        assert row['sire_id'] is None
        assert np.isnan(row['score'])

    def test_single_dam(self):
        matrix = pd.DataFrame([[70.0, 80.0]], index=['D1'], columns=['S1', 'S2'])
        plan, _, _ = MatingPlanOptimizer(matrix, max_assign_per_sire=1.0).optimize(pop_size=10, ngen=5, seed=0)
        assert plan.at[0, 'sire_id'] == 'S2'

    def test_seed_reproducible(self, score_matrix):
        first, _, _ = MatingPlanOptimizer(score_matrix, 0.5).optimize(pop_size=20, ngen=5, seed=7)
        second, _, _ = MatingPlanOptimizer(score_matrix, 0.5).optimize(pop_size=20, ngen=5, seed=7)
        pd.testing.assert_frame_equal(first, second)
