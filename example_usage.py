#!/usr/bin/env python3
"""
Пример использования Breeding Advisor
для оценки спаривания баранов ладум с искусственно сгенерированными данными
"""

import logging

import pandas as pd

from breeding_advisor import (
    BreedingMatrix,
    HerdStatistics,
    MatingPlanOptimizer,
    load_herd,
    score_animal_morphometrics,
    simulate_breeding,
)


def make_simple_herd_data():
    # 3 поколения: основатели → родители → молодняк
    animals = [
        # Основатели (нет родителей)
        {"id": "F1", "gender": "Female", "sire_id": "UNKNOWN", "dam_id": "UNKNOWN"},
        {"id": "F2", "gender": "Female", "sire_id": "UNKNOWN", "dam_id": "UNKNOWN"},
        {"id": "M1", "gender": "Male", "sire_id": "UNKNOWN", "dam_id": "UNKNOWN"},
        {"id": "M2", "gender": "Male", "sire_id": "UNKNOWN", "dam_id": "UNKNOWN"},
        # Родители (их родители - основатели)
        {"id": "DAM_A", "gender": "Female", "sire_id": "M1", "dam_id": "F1"},
        {"id": "DAM_B", "gender": "Female", "sire_id": "M1", "dam_id": "F2"},
        {"id": "SIRE_A", "gender": "Male", "sire_id": "M2", "dam_id": "F1"},
        {"id": "SIRE_B", "gender": "Male", "sire_id": "M2", "dam_id": "F2"},
    ]
    animals_df = pd.DataFrame(animals)

    # Промеры (см, кг); у основателей промеров нет
    measurements = [
        {"animal_id": "DAM_A", "date": "2025-03-01", "weight": 70, "height": 88, "length": 98, "chest": 96},
        {"animal_id": "DAM_A", "date": "2025-09-01", "weight": 78, "height": 91, "length": 102, "chest": 99},
        {"animal_id": "DAM_B", "date": "2025-09-01", "weight": 74, "height": 89, "length": 97, "chest": 95},
        {"animal_id": "SIRE_A", "date": "2025-09-01", "weight": 110, "height": 104, "length": 121, "chest": 112},
        {"animal_id": "SIRE_B", "date": "2025-09-01", "weight": 98, "height": 97, "length": 108, "chest": 104},
    ]
    measurements_df = pd.DataFrame(measurements)

    return animals_df, measurements_df


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    print("Breeding Advisor - Пример для баранов ладум (искусственные данные)")
    print("=" * 60)
    # 1. Генерируем данные и загружаем стадо
    animals_df, measurements_df = make_simple_herd_data()
    herd = load_herd(animals_df, measurements_df)
    by_id = {animal.id: animal for animal in herd}

    # 2. Статистика стада и оценка отдельных животных
    stats = HerdStatistics(herd).snapshot()
    for animal_id in ("SIRE_A", "SIRE_B"):
        score = score_animal_morphometrics(by_id[animal_id], stats)
        print(f"{animal_id}: {score.global_score}/100 ({score.classification.value}) - {score.summary}")

    # 3. Симуляция одной пары (родословная неполная → достоверность снижена)
    result = simulate_breeding(by_id["SIRE_A"], by_id["DAM_B"], herd, required_generations=1)
    print(f"\nSIRE_A × DAM_B: {result.global_score.recommendation.value}, "
          f"COI={result.inbreeding.coefficient}, {result.global_score.explanation}")
    for warning in result.warnings:
        print(f"  {warning}")

    # 4. Матрица совместимости
    matrix = BreedingMatrix(herd, required_generations=1)
    print("\nМатрица баллов:")
    print(matrix.score_matrix())

    # 5. Оптимизация плана спаривания
    optimizer = MatingPlanOptimizer(matrix.admissible_matrix(), max_assign_per_sire=0.5)
    plan, best_individual, hall_of_fame = optimizer.optimize(pop_size=20, ngen=10, cxpb=0.8, mutpb=0.2, seed=42)
    print("\nПлан спаривания:")
    print(plan)

    print("\n✅ Оценка завершена успешно!")


if __name__ == "__main__":
    main()
