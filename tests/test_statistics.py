"""Tests for herd statistics and the normal-distribution helpers."""

import pytest

from breeding_advisor import (
    HerdStatistics,
    MorphometricClass,
    Trait,
    herd_statistics,
)
from tests.conftest import make_animal


@pytest.fixture
def three_heights():
    return [
        make_animal('A', height=90, weight=0),
        make_animal('B', 'Female', height=100),
        make_animal('C', 'Female', height=110),
        make_animal('D', 'Female'),
    ]


class TestHerdMoments:
    def test_mean_ignores_missing_and_non_positive(self, three_heights):
        stats = HerdStatistics(three_heights)
        assert stats.mean(Trait.HEIGHT) == pytest.approx(100.0)
        assert stats.mean(Trait.MASS) is None

    def test_sample_std_dev(self, three_heights):
        assert HerdStatistics(three_heights).std_dev(Trait.HEIGHT) == pytest.approx(10.0)

    def test_std_dev_single_sample(self):
        assert HerdStatistics([make_animal('A', height=90)]).std_dev(Trait.HEIGHT) == 0.0

    def test_empty_herd(self):
        stats = HerdStatistics([])
        assert stats.mean(Trait.CHEST) is None
        assert stats.std_dev(Trait.CHEST) == 0.0


class TestSnapshot:
    def test_snapshot_moments(self, three_heights):
        snapshot = herd_statistics(three_heights)
        assert snapshot.count == 4
        assert snapshot.mean[Trait.HEIGHT] == pytest.approx(100.0)
        assert snapshot.mean[Trait.LENGTH] is None
        assert snapshot.std_dev[Trait.HEIGHT] == pytest.approx(10.0)
        assert snapshot.sample_sizes[Trait.HEIGHT] == 3
        assert snapshot.sample_sizes[Trait.MASS] == 0

    def test_distribution_sums_to_hundred(self, three_heights):
        snapshot = herd_statistics(three_heights)
        assert sum(snapshot.distribution.values()) == pytest.approx(100.0)
        # z = -1, 0, +1 по росту; животное без промеров получает 50 баллов
        assert snapshot.distribution[MorphometricClass.FAIBLE] == pytest.approx(25.0)
        assert snapshot.distribution[MorphometricClass.MOYEN] == pytest.approx(50.0)
        assert snapshot.distribution[MorphometricClass.TRES_BON] == pytest.approx(25.0)
        assert snapshot.distribution[MorphometricClass.ELITE] == 0.0
        assert snapshot.median_score == pytest.approx(50.0)

    def test_small_herd_has_no_distribution(self):
        snapshot = herd_statistics([make_animal('A', height=90), make_animal('B', height=80)])
        assert all(share == 0.0 for share in snapshot.distribution.values())
        assert snapshot.median_score == 50.0

    def test_version_follows_timestamp(self, three_heights):
        snapshot = herd_statistics(three_heights)
        assert snapshot.version == int(snapshot.last_updated.timestamp() * 1000)


class TestDistributionHelpers:
    def test_z_score(self):
        assert HerdStatistics.z_score(110, 100, 5) == pytest.approx(2.0)

    def test_z_score_zero_std(self):
        assert HerdStatistics.z_score(110, 100, 0) == 0.0

    @pytest.mark.parametrize('z, expected', [(0.0, 50), (1.0, 84), (-1.0, 16), (3.0, 100), (-3.0, 0)])
    def test_percentile(self, z, expected):
        assert HerdStatistics.percentile(z) == expected

    @pytest.mark.parametrize('z, expected', [(-3, 0.0), (0, 50.0), (3, 100.0), (5, 100.0), (-4, 0.0)])
    def test_normalize_z_score(self, z, expected):
        assert HerdStatistics.normalize_z_score(z) == pytest.approx(expected)

    def test_weighted_average(self):
        assert HerdStatistics.weighted_average([(80, 1), (60, 3)]) == pytest.approx(65.0)

    def test_weighted_average_zero_weight(self):
        assert HerdStatistics.weighted_average([(80, 0)]) == 0.0
        assert HerdStatistics.weighted_average([]) == 0.0

    def test_median(self):
        assert HerdStatistics.median([3, 1, 2, 10]) == pytest.approx(2.5)
        assert HerdStatistics.median([]) == 0.0

    def test_percentile_rank(self):
        assert HerdStatistics.percentile_rank(3, [1, 2, 3, 4]) == 62
        assert HerdStatistics.percentile_rank(10, []) == 50
