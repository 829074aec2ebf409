"""Shared herd builders for breeding_advisor tests."""

import pytest

from breeding_advisor import Animal, Measurement


def make_animal(animal_id, gender='Male', sire_id=None, dam_id=None, height=None, length=None,
                chest=None, weight=None, status='Active'):
    """Animal with a single measurement (or none when every trait is missing)."""
    measurements = []
    if any(v is not None for v in (height, length, chest, weight)):
        measurements.append(Measurement(date='2025-06-01', weight=weight, height=height,
                                        length=length, chest=chest))
    return Animal(id=animal_id, gender=gender, sire_id=sire_id, dam_id=dam_id,
                  status=status, measurements=measurements)


def build_lineage(root_id, gender, depth, **root_measures):
    """
    Root animal plus a complete, unmeasured pedigree `depth` generations deep.

    Ancestors are named <root>_S, <root>_D, <root>_S_S, ... so two lineages
    with different roots never share an ancestor.
    """
    animals = []

    def add(animal_id, animal_gender, level, measures):
        if level < depth:
            sire_id, dam_id = f'{animal_id}_S', f'{animal_id}_D'
            add(sire_id, 'Male', level + 1, {})
            add(dam_id, 'Female', level + 1, {})
        else:
            sire_id = dam_id = None
        animals.append(make_animal(animal_id, animal_gender, sire_id, dam_id, **measures))

    add(root_id, gender, 0, root_measures)
    return animals


@pytest.fixture
def siblings_herd():
    """Full siblings B1 (male) and S2 (female) out of founders S1 × D1."""
    return [
        make_animal('S1', 'Male'),
        make_animal('D1', 'Female'),
        make_animal('B1', 'Male', 'S1', 'D1'),
        make_animal('S2', 'Female', 'S1', 'D1'),
    ]


@pytest.fixture
def cousins_herd():
    """C1 and C2 are first cousins through full siblings P1 and P2."""
    return [
        make_animal('G1', 'Male'),
        make_animal('G2', 'Female'),
        make_animal('P1', 'Male', 'G1', 'G2'),
        make_animal('P2', 'Female', 'G1', 'G2'),
        make_animal('X1', 'Female'),
        make_animal('X2', 'Male'),
        make_animal('C1', 'Male', 'P1', 'X1'),
        make_animal('C2', 'Female', 'X2', 'P2'),
    ]


@pytest.fixture
def measured_pair_herd():
    """Large unrelated founders with three small herd mates; no pedigree."""
    return [
        make_animal('SIRE', 'Male', height=130, length=135, chest=125),
        make_animal('DAM', 'Female', height=130, length=135, chest=125),
        make_animal('M1', 'Female', height=80, length=85, chest=75),
        make_animal('M2', 'Female', height=80, length=85, chest=75),
        make_animal('M3', 'Male', height=80, length=85, chest=75),
    ]


@pytest.fixture
def complete_measured_herd():
    """Same measurements as measured_pair_herd, with complete 5-generation pedigrees."""
    herd = build_lineage('SIRE', 'Male', 5, height=130, length=135, chest=125)
    herd += build_lineage('DAM', 'Female', 5, height=130, length=135, chest=125)
    herd += [
        make_animal('M1', 'Female', height=80, length=85, chest=75),
        make_animal('M2', 'Female', height=80, length=85, chest=75),
        make_animal('M3', 'Male', height=80, length=85, chest=75),
    ]
    return herd
