"""Tests for the path-method inbreeding coefficient."""

import pytest

from breeding_advisor import (
    InbreedingCalculator,
    InbreedingStatus,
    PedigreeResolver,
    RiskLevel,
    classify_inbreeding_risk,
    inbreeding_coefficient,
)
from tests.conftest import build_lineage, make_animal


class TestKnownRelationships:
    def test_full_siblings(self, siblings_herd):
        result = inbreeding_coefficient('B1', 'S2', siblings_herd, required_generations=1)
        assert result.status == InbreedingStatus.COMPUTABLE
        assert result.coefficient == pytest.approx(0.25)
        assert result.risk_level == RiskLevel.HIGH

    def test_half_siblings(self):
        herd = [
            make_animal('S', 'Male'),
            make_animal('D1', 'Female'),
            make_animal('D2', 'Female'),
            make_animal('HB1', 'Male', 'S', 'D1'),
            make_animal('HB2', 'Female', 'S', 'D2'),
        ]
        result = inbreeding_coefficient('HB1', 'HB2', herd, required_generations=1)
        assert result.coefficient == pytest.approx(0.125)
        assert result.risk_level == RiskLevel.HIGH

    def test_first_cousins(self, cousins_herd):
        result = inbreeding_coefficient('C1', 'C2', cousins_herd, required_generations=1)
        assert result.coefficient == pytest.approx(0.0625)
        assert result.risk_level == RiskLevel.MEDIUM

    def test_unrelated_complete_pedigrees(self):
        herd = build_lineage('S', 'Male', 5) + build_lineage('D', 'Female', 5)
        result = inbreeding_coefficient('S', 'D', herd)
        assert result.status == InbreedingStatus.COMPUTABLE
        assert result.coefficient == 0.0
        assert result.available_generations == 5
        assert result.required_generations == 5
        assert result.risk_level == RiskLevel.LOW

    def test_no_common_ancestor_with_shallow_requirement(self):
        herd = build_lineage('S', 'Male', 2) + build_lineage('D', 'Female', 2)
        result = inbreeding_coefficient('S', 'D', herd, required_generations=2)
        assert result.status == InbreedingStatus.COMPUTABLE
        assert result.coefficient == 0.0

    def test_shared_grandparent_through_deeper_lineage(self):
        herd = build_lineage('S', 'Male', 2)
        # Самка - внучка S_S_S (деда самца) по другой линии
        herd += [
            make_animal('X', 'Female'),
            make_animal('Z', 'Female'),
            make_animal('M', 'Male', 'S_S_S', 'X'),
            make_animal('D', 'Female', 'M', 'Z'),
        ]
        result = inbreeding_coefficient('S', 'D', herd, required_generations=1)
        # Петля S → S_S → S_S_S ← M ← D: 5 особей
        assert result.coefficient == pytest.approx(0.5 ** 5)


class TestDirectRelationships:
    def test_parent_child_with_shallow_pedigree(self, siblings_herd):
        result = inbreeding_coefficient('S1', 'S2', siblings_herd)
        assert result.status == InbreedingStatus.COMPUTABLE
        assert result.coefficient == 0.25
        assert result.risk_level == RiskLevel.HIGH

    def test_grandparent_grandchild(self, cousins_herd):
        result = inbreeding_coefficient('G1', 'C2', cousins_herd)
        assert result.coefficient == 0.125
        assert result.risk_level == RiskLevel.MEDIUM


class TestIncompletePedigree:
    def test_founders_insufficient(self, siblings_herd):
        herd = siblings_herd + [make_animal('D9', 'Female')]
        result = inbreeding_coefficient('S1', 'D9', herd)
        assert result.status == InbreedingStatus.INSUFFICIENT_PEDIGREE_DATA
        assert result.coefficient is None
        assert result.available_generations == 0
        assert result.risk_level == RiskLevel.UNKNOWN

    def test_incomplete_generations(self):
        herd = build_lineage('S', 'Male', 2) + build_lineage('D', 'Female', 3)
        result = inbreeding_coefficient('S', 'D', herd)
        assert result.status == InbreedingStatus.INCOMPLETE_GENERATIONS
        assert result.coefficient is None
        assert result.available_generations == 2
        assert result.required_generations == 5

    def test_siblings_need_deep_pedigree_by_default(self, siblings_herd):
        result = inbreeding_coefficient('B1', 'S2', siblings_herd)
        assert result.status == InbreedingStatus.INCOMPLETE_GENERATIONS
        assert result.coefficient is None


class TestCalculator:
    def test_unknown_animal_raises(self, siblings_herd):
        with pytest.raises(ValueError):
            inbreeding_coefficient('B1', 'NOPE', siblings_herd)

    def test_same_animal_raises(self, siblings_herd):
        with pytest.raises(ValueError):
            inbreeding_coefficient('B1', 'B1', siblings_herd)

    def test_results_memoized(self, siblings_herd):
        calculator = InbreedingCalculator(PedigreeResolver(siblings_herd))
        first = calculator.compute('B1', 'S2', 1)
        assert calculator.compute('B1', 'S2', 1) is first

    def test_coefficient_bounded(self):
        # Несколько поколений полнородных скрещиваний
        herd = [make_animal('A0', 'Male'), make_animal('B0', 'Female')]
        for gen in range(1, 5):
            sire, dam = f'A{gen - 1}', f'B{gen - 1}'
            herd += [make_animal(f'A{gen}', 'Male', sire, dam), make_animal(f'B{gen}', 'Female', sire, dam)]
        result = inbreeding_coefficient('A4', 'B4', herd, required_generations=4)
        assert 0.25 < result.coefficient <= 1.0


@pytest.mark.parametrize('coefficient, expected', [
    (0.0, RiskLevel.LOW),
    (0.0624, RiskLevel.LOW),
    (0.0625, RiskLevel.MEDIUM),
    (0.1249, RiskLevel.MEDIUM),
    (0.125, RiskLevel.HIGH),
    (0.5, RiskLevel.HIGH),
])
def test_classify_risk(coefficient, expected):
    assert classify_inbreeding_risk(coefficient) == expected
