"""
Breeding Advisor - Микро-библиотечка для оценки спаривания животных стада

Основные модули:
- PedigreeResolver: навигация по родословной внутри снимка стада
- InbreedingCalculator: коэффициент инбридинга по методу путей Райта
- HerdStatistics: статистика стада (среднее, σ, Z-оценка, перцентиль)
- TraitPredictor: прогноз морфометрии потомства с учётом наследуемости
- MorphometricScorer: морфометрическая оценка пары и отдельного животного
- BreedingRuleEngine: экспертные правила и итоговая рекомендация
- BreedingMatrix: матрица совместимости самцов и самок
- MatingPlanOptimizer: генетический алгоритм для подбора пар

Все расчёты выполняются над снимком стада, который передаёт вызывающая сторона.
Недостаток данных никогда не заменяется нулём: результат получает статус,
сниженную достоверность и предупреждения.
"""

import copy
import logging
import math
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import networkx as nx
import numpy as np
import pandas as pd
from deap import algorithms, base, creator, tools

logger = logging.getLogger(__name__)

MALE = 'Male'
FEMALE = 'Female'
ACTIVE = 'Active'

MAX_PEDIGREE_DEPTH = 5
GESTATION_DAYS = 145
MIN_HERD_FOR_DISTRIBUTION = 3


class Trait(Enum):
    """Морфометрические признаки"""
    MASS = 'mass'          # живая масса (кг)
    HEIGHT = 'height'      # высота в холке, HG (см)
    LENGTH = 'length'      # косая длина туловища, LCS (см)
    CHEST = 'chest'        # обхват груди, TP (см)


PREDICTED_TRAITS = (Trait.HEIGHT, Trait.LENGTH, Trait.CHEST)

TRAIT_CODES = {
    Trait.MASS: 'PV',
    Trait.HEIGHT: 'HG',
    Trait.LENGTH: 'LCS',
    Trait.CHEST: 'TP',
}

# Наследуемость признаков (доля фенотипической дисперсии)
HERITABILITY = {
    Trait.HEIGHT: 0.40,
    Trait.LENGTH: 0.35,
    Trait.CHEST: 0.30,
}

# Средние по стаду, если в стаде нет ни одного промера (см)
DEFAULT_HERD_AVERAGES = {
    Trait.HEIGHT: 95.0,
    Trait.LENGTH: 105.0,
    Trait.CHEST: 100.0,
}

DEFAULT_WEIGHTS = {
    'length': 0.30,
    'height': 0.20,
    'chest': 0.20,
    'mass': 0.20,
    'functional': 0.10,  # зарезервировано (постановка конечностей)
}

# Поле в истории промеров и запасное статическое поле животного
_MEASUREMENT_FIELDS = {
    Trait.MASS: 'weight',
    Trait.HEIGHT: 'height',
    Trait.LENGTH: 'length',
    Trait.CHEST: 'chest',
}
_STATIC_FIELDS = {
    Trait.MASS: 'weight',
    Trait.HEIGHT: 'height',
    Trait.LENGTH: 'length',
    Trait.CHEST: 'chest_girth',
}


class InbreedingStatus(Enum):
    COMPUTABLE = 'COMPUTABLE'
    INSUFFICIENT_PEDIGREE_DATA = 'INSUFFICIENT_PEDIGREE_DATA'
    INCOMPLETE_GENERATIONS = 'INCOMPLETE_GENERATIONS'


class RiskLevel(Enum):
    LOW = 'Low'
    MEDIUM = 'Medium'
    HIGH = 'High'
    UNKNOWN = 'Unknown'


class DataBasis(Enum):
    BOTH_PARENTS_MEASURED = 'BOTH_PARENTS_MEASURED'
    ONE_PARENT_MEASURED = 'ONE_PARENT_MEASURED'
    POPULATION_ONLY = 'POPULATION_ONLY'
    INSUFFICIENT_DATA = 'INSUFFICIENT_DATA'


class ScoreStatus(Enum):
    RELIABLE = 'RELIABLE'
    LOW_CONFIDENCE = 'LOW_CONFIDENCE'
    NOT_COMPUTABLE = 'NOT_COMPUTABLE'


class Recommendation(Enum):
    EXCELLENT = 'Excellent'
    GOOD = 'Good'
    CAUTION = 'Caution'
    NOT_RECOMMENDED = 'NotRecommended'
    INSUFFICIENT_DATA = 'InsufficientData'


class MorphometricClass(Enum):
    ELITE = 'Elite'
    TRES_BON = 'TresBon'
    MOYEN = 'Moyen'
    FAIBLE = 'Faible'


class RuleImpact(Enum):
    BLOCKING = 'BLOCKING'
    WARNING = 'WARNING'
    INFO = 'INFO'


CLASSIFICATION_LABELS = {
    MorphometricClass.ELITE: 'Elite',
    MorphometricClass.TRES_BON: 'Très bon',
    MorphometricClass.MOYEN: 'Moyen',
    MorphometricClass.FAIBLE: 'Faible',
}


def _is_valid_value(value) -> bool:
    """Промер считается действительным, только если он строго положителен"""
    if value is None or pd.isnull(value):
        return False
    return float(value) > 0


# =====================================================================
# Модель данных
# =====================================================================

@dataclass
class Measurement:
    """Один промер животного из истории"""
    date: Optional[str] = None
    weight: Optional[float] = None
    height: Optional[float] = None
    length: Optional[float] = None
    chest: Optional[float] = None


@dataclass
class Animal:
    """
    Животное из снимка стада (только чтение)

    sire_id/dam_id - слабые ссылки на родителей; если родитель отсутствует
    в снимке, он считается неизвестным предком. История промеров упорядочена
    по времени, последний промер - самый свежий. Статические поля
    weight/height/length/chest_girth используются, только когда истории нет.
    """
    id: str
    gender: str
    sire_id: Optional[str] = None
    dam_id: Optional[str] = None
    name: Optional[str] = None
    status: str = ACTIVE
    measurements: List[Measurement] = field(default_factory=list)
    weight: Optional[float] = None
    height: Optional[float] = None
    length: Optional[float] = None
    chest_girth: Optional[float] = None

    def latest_measurement(self, trait: Trait) -> Optional[float]:
        """
        Возвращает последний действительный промер признака

        Args:
            trait: признак

        Returns:
            Значение промера или None, если животное не измерялось
        """
        if self.measurements:
            attr = _MEASUREMENT_FIELDS[trait]
            for measurement in reversed(self.measurements):
                value = getattr(measurement, attr)
                if _is_valid_value(value):
                    return float(value)
            return None

        value = getattr(self, _STATIC_FIELDS[trait])
        return float(value) if _is_valid_value(value) else None


@dataclass
class InbreedingResult:
    """Квалифицированный коэффициент инбридинга; coefficient есть только при COMPUTABLE"""
    coefficient: Optional[float]
    status: InbreedingStatus
    required_generations: int
    available_generations: int
    risk_level: RiskLevel


@dataclass
class PredictedTrait:
    """Прогноз признака потомства; mean/min/max заданы вместе или отсутствуют вместе"""
    trait: Trait
    mean: Optional[float]
    min: Optional[float]
    max: Optional[float]
    confidence: float
    data_basis: DataBasis


@dataclass
class MorphometricPairScore:
    """Морфометрический прогноз для пары самец × самка"""
    height: PredictedTrait
    length: PredictedTrait
    chest: PredictedTrait
    overall_score: Optional[int]
    confidence: float

    @property
    def traits(self) -> Tuple[PredictedTrait, PredictedTrait, PredictedTrait]:
        return self.height, self.length, self.chest

    def get(self, trait: Trait) -> PredictedTrait:
        return getattr(self, trait.value)


@dataclass
class ZScore:
    value: Optional[float]
    z_score: Optional[float]
    percentile: Optional[int]
    available: bool

    @classmethod
    def unavailable(cls) -> 'ZScore':
        return cls(value=None, z_score=None, percentile=None, available=False)


@dataclass
class AnimalMorphometricScore:
    """Морфометрическая оценка отдельного животного относительно стада"""
    animal_id: str
    global_score: int
    classification: MorphometricClass
    percentile: int
    confidence: float
    breakdown: Dict[str, ZScore]
    weights: Dict[str, float]
    summary: str


@dataclass
class HerdStatisticsSnapshot:
    """
    Статистика стада по признакам

    mean[trait] равно None, если в стаде нет ни одного действительного промера.
    last_updated/version нужны внешнему кэшу, сама библиотека их не использует.
    """
    count: int
    mean: Dict[Trait, Optional[float]]
    std_dev: Dict[Trait, float]
    sample_sizes: Dict[Trait, int]
    distribution: Dict[MorphometricClass, float]
    median_score: float
    last_updated: datetime
    version: int


@dataclass
class QualifiedBreedingScore:
    value: Optional[int]
    confidence: float
    status: ScoreStatus
    recommendation: Recommendation
    explanation: str = ''


@dataclass
class AppliedRule:
    rule_id: str
    explanation: str
    impact: RuleImpact


@dataclass
class BreedingContext:
    """Изменяемый контекст одной симуляции; создаётся заново на каждый вызов"""
    inbreeding: InbreedingResult
    morphometrics: MorphometricPairScore
    global_score: QualifiedBreedingScore
    warnings: List[str] = field(default_factory=list)
    applied_rules: List[AppliedRule] = field(default_factory=list)


@dataclass(frozen=True)
class ExpertRule:
    """Экспертное правило: чистое условие + действие над контекстом"""
    rule_id: str
    name: str
    priority: int
    condition: Callable[[BreedingContext], bool]
    consequence: Callable[[BreedingContext], None]
    explanation: str
    impact: RuleImpact = RuleImpact.INFO
    terminal: bool = False


@dataclass
class BreedingSimulationResult:
    inbreeding: InbreedingResult
    morphometrics: MorphometricPairScore
    global_score: QualifiedBreedingScore
    applied_rules: List[AppliedRule]
    warnings: List[str]
    expected_due_date: datetime


@dataclass
class MeasurementTrend:
    """Динамика роста по истории промеров"""
    trends: Dict[Trait, str]
    monthly_growth: Dict[Trait, float]


HerdSource = Union[str, pd.DataFrame, Iterable[Dict[str, Any]]]


# =====================================================================
# Загрузка данных
# =====================================================================

def _read_table(source: HerdSource) -> pd.DataFrame:
    if isinstance(source, str):
        return pd.read_csv(source)
    if isinstance(source, pd.DataFrame):
        return source.copy()
    if isinstance(source, Iterable):
        return pd.DataFrame(list(source))
    raise ValueError("Источник должен быть путем к CSV, pandas.DataFrame или списком словарей")


def _clean_id(value) -> Optional[str]:
    """Идентификатор в виде строки; 1.0 из числовой колонки с пропусками становится '1'"""
    if value is None or pd.isnull(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    value = str(value).strip()
    return value or None


def _clean_parent(value) -> Optional[str]:
    """Всё, что не является идентификатором (None, NaN, 'UNKNOWN'), превращаем в None"""
    value = _clean_id(value)
    if value in ('UNKNOWN', 'missing'):
        return None
    return value


def _optional_float(value) -> Optional[float]:
    if value is None or pd.isnull(value):
        return None
    return float(value)


def load_herd(animals_source: HerdSource,
              measurements_source: Optional[HerdSource] = None) -> List[Animal]:
    """
    Загружает снимок стада

    Args:
        animals_source: CSV, DataFrame или список словарей с колонками
            id, gender, sire_id, dam_id и необязательными name, status,
            weight, height, length, chest_girth
        measurements_source: история промеров с колонками
            animal_id, date, weight, height, length, chest

    Returns:
        Список животных
    """
    logger.info("Загрузка данных стада...")
    animals_df = _read_table(animals_source)

    duplicates = animals_df[animals_df.duplicated('id', keep=False)]
    if not duplicates.empty:
        logger.warning(f"Найдены дубликаты ID: {duplicates['id'].nunique()}")

    history: Dict[str, List[Measurement]] = {}
    if measurements_source is not None:
        measurements_df = _read_table(measurements_source)
        measurements_df['_order'] = pd.to_datetime(measurements_df.get('date'), errors='coerce')
        measurements_df = measurements_df.sort_values('_order', kind='mergesort')
        for _, row in measurements_df.iterrows():
            date = row.get('date')
            history.setdefault(_clean_id(row['animal_id']), []).append(Measurement(
                date=None if date is None or pd.isnull(date) else str(date),
                weight=_optional_float(row.get('weight')),
                height=_optional_float(row.get('height')),
                length=_optional_float(row.get('length')),
                chest=_optional_float(row.get('chest')),
            ))

    herd = []
    for _, row in animals_df.iterrows():
        animal_id = _clean_id(row['id'])
        status = row.get('status')
        herd.append(Animal(
            id=animal_id,
            gender=str(row['gender']),
            sire_id=_clean_parent(row.get('sire_id')),
            dam_id=_clean_parent(row.get('dam_id')),
            name=None if row.get('name') is None or pd.isnull(row.get('name')) else str(row.get('name')),
            status=ACTIVE if status is None or pd.isnull(status) else str(status),
            measurements=history.get(animal_id, []),
            weight=_optional_float(row.get('weight')),
            height=_optional_float(row.get('height')),
            length=_optional_float(row.get('length')),
            chest_girth=_optional_float(row.get('chest_girth')),
        ))

    logger.info(f"Загружено {len(herd)} животных, промеры для {len(history)}")
    return herd


# =====================================================================
# Родословная
# =====================================================================

class PedigreeResolver:
    """Навигация по родословной: граф потомок → родитель над снимком стада"""

    def __init__(self, herd: Sequence[Animal], max_depth: int = MAX_PEDIGREE_DEPTH):
        """
        Инициализация навигатора родословной

        Args:
            herd: снимок стада (не изменяется)
            max_depth: предельная глубина обхода в поколениях
        """
        self.animals: Dict[str, Animal] = {animal.id: animal for animal in herd}
        self.max_depth = max_depth
        self.ancestor_cache: Dict[Tuple[str, int], Dict[str, int]] = {}
        self.graph = self._build_graph()

    def _build_graph(self) -> nx.DiGraph:
        """Строит ориентированный граф родословной (ребро ведёт от потомка к родителю)"""
        G = nx.DiGraph()
        for animal in self.animals.values():
            G.add_node(animal.id)
            for parent_id in (animal.sire_id, animal.dam_id):
                if parent_id is not None and parent_id in self.animals:  # только известные родители
                    G.add_edge(animal.id, parent_id)

        logger.debug(f"Граф родословной: {G.number_of_nodes()} узлов, {G.number_of_edges()} рёбер")
        return G

    def __contains__(self, animal_id: str) -> bool:
        return animal_id in self.animals

    def parents(self, animal_id: str) -> Tuple[Optional[str], Optional[str]]:
        """Отец и мать животного, если они есть в снимке"""
        animal = self.animals.get(animal_id)
        if animal is None:
            return None, None
        sire_id = animal.sire_id if animal.sire_id in self.animals else None
        dam_id = animal.dam_id if animal.dam_id in self.animals else None
        return sire_id, dam_id

    def grandparents(self, animal_id: str) -> Dict[str, Optional[str]]:
        """
        Четыре деда/бабки животного

        Returns:
            Словарь paternal_grand_sire, paternal_grand_dam,
            maternal_grand_sire, maternal_grand_dam (None, если неизвестны)
        """
        sire_id, dam_id = self.parents(animal_id)
        paternal = self.parents(sire_id) if sire_id else (None, None)
        maternal = self.parents(dam_id) if dam_id else (None, None)
        return {
            'paternal_grand_sire': paternal[0],
            'paternal_grand_dam': paternal[1],
            'maternal_grand_sire': maternal[0],
            'maternal_grand_dam': maternal[1],
        }

    def pedigree_depth(self, animal_id: str, max_depth: Optional[int] = None) -> int:
        """
        Глубина родословной: число полных поколений подряд

        Поколение полное, если у каждой его особи в снимке есть оба родителя.
        Обход останавливается на первом неполном поколении или на max_depth.

        Args:
            animal_id: ID животного
            max_depth: предел (по умолчанию self.max_depth)

        Returns:
            Число полных поколений
        """
        limit = self.max_depth if max_depth is None else max_depth
        if animal_id not in self.animals:
            return 0

        generation = [animal_id]
        depth = 0
        while depth < limit:
            next_generation = []
            for member in generation:
                sire_id, dam_id = self.parents(member)
                if sire_id is None or dam_id is None:
                    return depth
                next_generation.extend((sire_id, dam_id))
            generation = next_generation
            depth += 1
        return depth

    def ancestors_with_depths(self, animal_id: str, max_depth: Optional[int] = None) -> Dict[str, int]:
        """
        Получает всех предков животного с кратчайшей глубиной

        Само животное входит в результат с глубиной 0.

        Returns:
            Словарь {предок: глубина}
        """
        limit = self.max_depth if max_depth is None else max_depth
        key = (animal_id, limit)
        if key in self.ancestor_cache:
            return self.ancestor_cache[key]
        if animal_id not in self.graph:
            return {}

        ancestors = dict(nx.single_source_shortest_path_length(self.graph, animal_id, cutoff=limit))
        self.ancestor_cache[key] = ancestors
        return ancestors

    def common_ancestors(self, id1: str, id2: str, max_depth: Optional[int] = None) -> set:
        """Общие предки двух животных в пределах max_depth поколений"""
        anc1 = self.ancestors_with_depths(id1, max_depth)
        anc2 = self.ancestors_with_depths(id2, max_depth)
        return set(anc1) & set(anc2)

    def paths_to_ancestor(self, animal_id: str, ancestor_id: str,
                          max_depth: Optional[int] = None) -> List[List[str]]:
        """
        Все простые пути от животного к предку по рёбрам отец/мать

        Глубина ограничена, поэтому обход завершается даже при циклах в данных.

        Returns:
            Список путей; путь начинается с животного и заканчивается предком
        """
        limit = self.max_depth if max_depth is None else max_depth
        if animal_id not in self.graph or ancestor_id not in self.graph:
            return []
        if animal_id == ancestor_id:
            return [[animal_id]]
        return [list(path) for path in nx.all_simple_paths(self.graph, animal_id, ancestor_id, cutoff=limit)]

    def descendants(self, animal_id: str, depth: int = 3) -> List[str]:
        """Потомки животного на depth поколений вниз, ближайшие первыми"""
        if animal_id not in self.graph:
            return []
        reached = nx.single_source_shortest_path_length(self.graph.reverse(copy=False), animal_id, cutoff=depth)
        return [node for node, _ in sorted(reached.items(), key=lambda item: (item[1], item[0]))
                if node != animal_id]

    def pedigree_completeness(self) -> float:
        """Процент животных, у которых указан хотя бы один родитель"""
        if not self.animals:
            return 0.0
        with_pedigree = sum(1 for a in self.animals.values() if a.sire_id or a.dam_id)
        return with_pedigree / len(self.animals) * 100

    def validate(self) -> List[str]:
        """
        Проверяет родословную на биологические противоречия

        Returns:
            Список найденных проблем (пустой, если всё в порядке)
        """
        errors = []
        for animal in self.animals.values():
            label = animal.name or animal.id
            if animal.id in (animal.sire_id, animal.dam_id):
                errors.append(f"{label} : l'animal est déclaré comme son propre parent")

            sire = self.animals.get(animal.sire_id) if animal.sire_id else None
            if sire is not None and sire.gender != MALE:
                errors.append(f"{label} : le père {sire.name or sire.id} doit être un mâle")

            dam = self.animals.get(animal.dam_id) if animal.dam_id else None
            if dam is not None and dam.gender != FEMALE:
                errors.append(f"{label} : la mère {dam.name or dam.id} doit être une femelle")

        for cycle in nx.simple_cycles(self.graph):
            if len(cycle) > 1:
                errors.append(f"Relation cyclique dans le pedigree : {' → '.join(cycle)}")

        for error in errors:
            logger.warning(f"Ошибка родословной: {error}")
        return errors


# =====================================================================
# Инбридинг
# =====================================================================

def classify_inbreeding_risk(coefficient: float) -> RiskLevel:
    if coefficient < 0.0625:
        return RiskLevel.LOW
    if coefficient < 0.125:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


class InbreedingCalculator:
    """
    Класс для расчёта коэффициента инбридинга потомства пары

    Собственный инбридинг общего предка (Fa) принимается равным нулю.
    Это известное упрощение метода путей, а не ошибка.
    """

    def __init__(self, resolver: PedigreeResolver):
        """
        Инициализация калькулятора инбридинга

        Args:
            resolver: экземпляр PedigreeResolver
        """
        self.resolver = resolver
        self.inbreeding_memo: Dict[Tuple[str, str, int], InbreedingResult] = {}

    def compute(self, sire_id: str, dam_id: str,
                required_generations: int = MAX_PEDIGREE_DEPTH) -> InbreedingResult:
        """
        Рассчитывает коэффициент инбридинга потомства

        Args:
            sire_id: ID отца
            dam_id: ID матери
            required_generations: требуемая глубина родословной

        Returns:
            InbreedingResult; коэффициент отсутствует, если родословная неполна
        """
        for animal_id in (sire_id, dam_id):
            if animal_id not in self.resolver:
                raise ValueError(f"Животное {animal_id} отсутствует в снимке стада")
        if sire_id == dam_id:
            raise ValueError(f"Отец и мать не могут быть одним животным: {sire_id}")

        key = (sire_id, dam_id, required_generations)
        if key in self.inbreeding_memo:
            return self.inbreeding_memo[key]

        available = min(self.resolver.pedigree_depth(sire_id), self.resolver.pedigree_depth(dam_id))
        result = self._direct_relationship(sire_id, dam_id, required_generations, available)

        if result is None and available < required_generations:
            status = (InbreedingStatus.INSUFFICIENT_PEDIGREE_DATA if available == 0
                      else InbreedingStatus.INCOMPLETE_GENERATIONS)
            result = InbreedingResult(None, status, required_generations, available, RiskLevel.UNKNOWN)

        if result is None:
            coefficient = self._path_coefficient(sire_id, dam_id)
            result = InbreedingResult(coefficient, InbreedingStatus.COMPUTABLE, required_generations,
                                      available, classify_inbreeding_risk(coefficient))

        self.inbreeding_memo[key] = result
        return result

    def _direct_relationship(self, sire_id: str, dam_id: str, required: int,
                             available: int) -> Optional[InbreedingResult]:
        """Родитель × потомок и дед × внук определяются напрямую по снимку"""
        if sire_id in self.resolver.parents(dam_id) or dam_id in self.resolver.parents(sire_id):
            return InbreedingResult(0.25, InbreedingStatus.COMPUTABLE, required, available, RiskLevel.HIGH)

        if (sire_id in self.resolver.grandparents(dam_id).values()
                or dam_id in self.resolver.grandparents(sire_id).values()):
            return InbreedingResult(0.125, InbreedingStatus.COMPUTABLE, required, available, RiskLevel.MEDIUM)
        return None

    def _path_coefficient(self, sire_id: str, dam_id: str) -> float:
        """
        Метод путей Райта: F = Σ 0.5^N по всем допустимым петлям

        Пара путей допустима, только если единственная общая особь - сам
        предок; так отсекаются пути через более близкого общего предка.
        N - число различных особей в петле.
        """
        common = self.resolver.common_ancestors(sire_id, dam_id)
        if not common:
            return 0.0

        total = 0.0
        for ancestor in common:
            sire_paths = self.resolver.paths_to_ancestor(sire_id, ancestor)
            dam_paths = self.resolver.paths_to_ancestor(dam_id, ancestor)
            for sire_path in sire_paths:
                sire_nodes = set(sire_path)
                for dam_path in dam_paths:
                    if sire_nodes & set(dam_path) != {ancestor}:
                        continue
                    total += 0.5 ** (len(sire_path) + len(dam_path) - 1)

        return min(total, 1.0)


# =====================================================================
# Статистика стада
# =====================================================================

class HerdStatistics:
    """Класс для статистики стада по морфометрическим признакам"""

    def __init__(self, herd: Sequence[Animal]):
        """
        Args:
            herd: снимок стада
        """
        self.herd = list(herd)
        self.measurements = self._extract_measurements()

    def _extract_measurements(self) -> pd.DataFrame:
        """Последний действительный промер каждого признака для каждого животного"""
        rows = [{'animal_id': animal.id, **{trait.value: animal.latest_measurement(trait) for trait in Trait}}
                for animal in self.herd]
        df = pd.DataFrame(rows, columns=['animal_id'] + [trait.value for trait in Trait])
        for trait in Trait:
            df[trait.value] = pd.to_numeric(df[trait.value], errors='coerce')
        return df.set_index('animal_id')

    def values(self, trait: Trait) -> pd.Series:
        column = self.measurements[trait.value].dropna()
        return column[column > 0]

    def mean(self, trait: Trait) -> Optional[float]:
        """Среднее по стаду или None, если признак ни разу не измерялся"""
        values = self.values(trait)
        if values.empty:
            return None
        return float(values.mean())

    def std_dev(self, trait: Trait) -> float:
        """Выборочное стандартное отклонение (N-1), 0 при менее чем двух промерах"""
        values = self.values(trait)
        if len(values) < 2:
            return 0.0
        return float(values.std(ddof=1))

    def snapshot(self, weights: Optional[Dict[str, float]] = None) -> HerdStatisticsSnapshot:
        """
        Рассчитывает полный снимок статистики стада

        При MIN_HERD_FOR_DISTRIBUTION животных и более каждое животное
        оценивается относительно стада, чтобы получить распределение классов.

        Args:
            weights: веса признаков для оценки животных

        Returns:
            HerdStatisticsSnapshot
        """
        now = datetime.now()
        stats = HerdStatisticsSnapshot(
            count=len(self.herd),
            mean={trait: self.mean(trait) for trait in Trait},
            std_dev={trait: self.std_dev(trait) for trait in Trait},
            sample_sizes={trait: int(len(self.values(trait))) for trait in Trait},
            distribution={cls: 0.0 for cls in MorphometricClass},
            median_score=50.0,
            last_updated=now,
            version=int(now.timestamp() * 1000),
        )

        if len(self.herd) >= MIN_HERD_FOR_DISTRIBUTION:
            scores = [MorphometricScorer.score_animal(animal, stats, weights) for animal in self.herd]
            counts = pd.Series([score.classification for score in scores]).value_counts()
            stats.distribution = {cls: float(counts.get(cls, 0)) / len(scores) * 100 for cls in MorphometricClass}
            stats.median_score = self.median([score.global_score for score in scores])

        logger.info(f"Статистика стада рассчитана: {stats.count} животных")
        return stats

    @staticmethod
    def z_score(value: float, mean: float, std_dev: float) -> float:
        """Z = (value - mean) / σ; 0, если все значения одинаковы"""
        if std_dev == 0:
            return 0.0
        return (value - mean) / std_dev

    @staticmethod
    def percentile(z_score: float) -> int:
        """
        Перцентиль по Z-оценке через полиномиальную аппроксимацию
        функции распределения стандартного нормального закона
        (Абрамовиц-Стиган 26.2.17, погрешность ~7.5e-8)
        """
        t = 1 / (1 + 0.2316419 * abs(z_score))
        d = 0.3989423 * math.exp(-z_score * z_score / 2)
        probability = d * t * (0.3193815 + t * (-0.3565638 + t * (1.781478 + t * (-1.821256 + t * 1.330274))))
        cdf = 1 - probability if z_score >= 0 else probability
        return int(round(cdf * 100))

    @staticmethod
    def normalize_z_score(z_score: float) -> float:
        """Линейно переводит диапазон [-3, 3] в [0, 100] с обрезкой краёв"""
        normalized = (z_score + 3) / 6 * 100
        return max(0.0, min(100.0, normalized))

    @staticmethod
    def weighted_average(pairs: Sequence[Tuple[float, float]]) -> float:
        """
        Взвешенное среднее

        Args:
            pairs: список пар (значение, вес)

        Returns:
            Среднее, нормированное на сумму весов (0 при нулевой сумме)
        """
        total_weight = sum(weight for _, weight in pairs)
        if total_weight == 0:
            return 0.0
        return sum(value * weight for value, weight in pairs) / total_weight

    @staticmethod
    def median(values: Sequence[float]) -> float:
        if len(values) == 0:
            return 0.0
        return float(np.median(values))

    @staticmethod
    def percentile_rank(value: float, distribution: Sequence[float]) -> int:
        """Прямой расчёт перцентиля значения внутри распределения"""
        if len(distribution) == 0:
            return 50
        data = np.asarray(distribution, dtype=float)
        below = int(np.sum(data < value))
        equal = int(np.sum(data == value))
        return int(round((below + 0.5 * equal) / len(data) * 100))


# =====================================================================
# Прогноз признаков потомства
# =====================================================================

def _merge_defaults(defaults: Dict, overrides: Optional[Dict]) -> Dict:
    merged = dict(defaults)
    if overrides:
        merged.update(overrides)
    return merged


class TraitPredictor:
    """Прогноз морфометрии потомства по промерам родителей и среднему стада"""

    def __init__(self, statistics: HerdStatistics,
                 heritability: Optional[Dict[Trait, float]] = None,
                 herd_averages: Optional[Dict[Trait, float]] = None):
        """
        Args:
            statistics: статистика стада
            heritability: наследуемость по признакам (поверх HERITABILITY)
            herd_averages: запасные средние стада (поверх DEFAULT_HERD_AVERAGES)
        """
        self.statistics = statistics
        self.heritability = _merge_defaults(HERITABILITY, heritability)
        self.herd_averages = _merge_defaults(DEFAULT_HERD_AVERAGES, herd_averages)

    def baseline(self, trait: Trait) -> float:
        """Среднее стада по признаку, а без промеров - значение по умолчанию"""
        herd_mean = self.statistics.mean(trait)
        return herd_mean if herd_mean is not None else self.herd_averages[trait]

    @staticmethod
    def prediction_variance(heritability: float, parent_measures: Sequence[float], herd_mean: float) -> float:
        """Полуширина интервала прогноза"""
        return herd_mean * 0.10 * (1 - heritability) * max(0.5, 1 / math.sqrt(len(parent_measures)))

    def predict(self, trait: Trait, sire: Animal, dam: Animal,
                heritability: Optional[float] = None) -> PredictedTrait:
        """
        Прогнозирует признак потомства

        Порядок решений: нет данных вообще → оба родителя измерены →
        измерен один родитель (регрессия к среднему стада) → только стадо.

        Args:
            trait: признак (рост, длина или обхват груди)
            sire: отец
            dam: мать
            heritability: наследуемость (по умолчанию из настроек)

        Returns:
            PredictedTrait
        """
        if trait not in PREDICTED_TRAITS:
            raise ValueError(f"Признак {trait} не прогнозируется; доступны {[t.value for t in PREDICTED_TRAITS]}")
        h = self.heritability[trait] if heritability is None else heritability

        sire_value = sire.latest_measurement(trait)
        dam_value = dam.latest_measurement(trait)
        herd_mean = self.statistics.mean(trait)
        baseline = herd_mean if herd_mean is not None else self.herd_averages[trait]

        if sire_value is None and dam_value is None and herd_mean is None:
            return PredictedTrait(trait, None, None, None, 0.0, DataBasis.INSUFFICIENT_DATA)

        if sire_value is not None and dam_value is not None:
            parent_values = [sire_value, dam_value]
            mean = sum(parent_values) / 2
            half_width = self.prediction_variance(h, parent_values, baseline)
            confidence = min(0.75 + (0.15 if half_width < 5 else 0.0), 0.90)
            basis = DataBasis.BOTH_PARENTS_MEASURED
        elif sire_value is not None or dam_value is not None:
            parent_value = sire_value if sire_value is not None else dam_value
            if herd_mean is not None:
                mean = parent_value * h + herd_mean * (1 - h)
            else:
                mean = parent_value
            half_width = self.prediction_variance(h, [parent_value], baseline) * 1.5
            confidence = min(0.45 + (0.15 if herd_mean is not None else 0.0), 0.60)
            basis = DataBasis.ONE_PARENT_MEASURED
        else:
            mean = herd_mean
            half_width = 10.0
            confidence = 0.30
            basis = DataBasis.POPULATION_ONLY

        return PredictedTrait(
            trait=trait,
            mean=round(mean, 1),
            min=round(mean - half_width, 1),
            max=round(mean + half_width, 1),
            confidence=confidence,
            data_basis=basis,
        )


# =====================================================================
# Морфометрическая оценка
# =====================================================================

def get_classification(score: float) -> MorphometricClass:
    if score >= 80:
        return MorphometricClass.ELITE
    if score >= 65:
        return MorphometricClass.TRES_BON
    if score >= 50:
        return MorphometricClass.MOYEN
    return MorphometricClass.FAIBLE


def classification_label(classification: MorphometricClass) -> str:
    return CLASSIFICATION_LABELS[classification]


class MorphometricScorer:
    """Класс для морфометрической оценки пары и отдельного животного"""

    MIN_TRAIT_CONFIDENCE = 0.4

    def __init__(self, predictor: TraitPredictor):
        self.predictor = predictor

    def score(self, sire: Animal, dam: Animal) -> MorphometricPairScore:
        """
        Морфометрическая оценка пары

        Учитываются признаки с достоверностью не ниже 0.4; относительное
        улучшение над средним стада взвешивается достоверностью признака
        и прибавляется к базовым 50 баллам. Общая достоверность - среднее
        по всем трём признакам, включая непрогнозируемые.

        Args:
            sire: отец
            dam: мать

        Returns:
            MorphometricPairScore
        """
        predictions = {trait: self.predictor.predict(trait, sire, dam) for trait in PREDICTED_TRAITS}
        valid = [p for p in predictions.values()
                 if p.confidence >= self.MIN_TRAIT_CONFIDENCE and p.mean is not None]

        overall_score = None
        confidence = 0.0
        if valid:
            weighted_improvement = 0.0
            total_weight = 0.0
            for prediction in valid:
                herd_mean = self.predictor.baseline(prediction.trait)
                improvement = (prediction.mean - herd_mean) / herd_mean
                weighted_improvement += improvement * prediction.confidence
                total_weight += prediction.confidence
            raw = 50 + weighted_improvement * 100 / total_weight
            overall_score = int(round(max(0.0, min(100.0, raw))))
            confidence = sum(p.confidence for p in predictions.values()) / len(predictions)

        return MorphometricPairScore(
            height=predictions[Trait.HEIGHT],
            length=predictions[Trait.LENGTH],
            chest=predictions[Trait.CHEST],
            overall_score=overall_score,
            confidence=confidence,
        )

    @staticmethod
    def score_animal(animal: Animal, herd_stats: HerdStatisticsSnapshot,
                     weights: Optional[Dict[str, float]] = None) -> AnimalMorphometricScore:
        """
        Оценка животного относительно распределения стада

        Масса берётся из поля веса. Без единого промера оценка равна 50
        (неизвестное считается средним).

        Args:
            animal: животное
            herd_stats: снимок статистики стада
            weights: веса признаков (поверх DEFAULT_WEIGHTS)

        Returns:
            AnimalMorphometricScore
        """
        weights = _merge_defaults(DEFAULT_WEIGHTS, weights)

        breakdown: Dict[str, ZScore] = {}
        for trait in Trait:
            value = animal.latest_measurement(trait)
            mean = herd_stats.mean.get(trait)
            if value is None or mean is None:
                breakdown[trait.value] = ZScore.unavailable()
                continue
            z = HerdStatistics.z_score(value, mean, herd_stats.std_dev.get(trait, 0.0))
            breakdown[trait.value] = ZScore(value=value, z_score=z,
                                            percentile=HerdStatistics.percentile(z), available=True)
        breakdown['functional'] = ZScore.unavailable()

        available = [name for name in ('mass', 'height', 'length', 'chest') if breakdown[name].available]
        confidence = len(available) / 4

        if available:
            global_score = HerdStatistics.weighted_average(
                [(HerdStatistics.normalize_z_score(breakdown[name].z_score), weights[name]) for name in available])
            percentile = HerdStatistics.weighted_average(
                [(breakdown[name].percentile, weights[name]) for name in available])
        else:
            global_score = 50.0
            percentile = 50.0

        classification = get_classification(global_score)
        return AnimalMorphometricScore(
            animal_id=animal.id,
            global_score=int(round(global_score)),
            classification=classification,
            percentile=int(round(percentile)),
            confidence=confidence,
            breakdown=breakdown,
            weights=weights,
            summary=MorphometricScorer.summarize(classification, breakdown),
        )

    @staticmethod
    def summarize(classification: MorphometricClass, breakdown: Dict[str, ZScore]) -> str:
        """Автоматическое текстовое резюме морфологии"""
        openings = {
            MorphometricClass.ELITE: "Animal d'exception",
            MorphometricClass.TRES_BON: 'Très bon sujet',
            MorphometricClass.MOYEN: 'Sujet standard',
            MorphometricClass.FAIBLE: "Potentiel d'amélioration",
        }
        parts = [openings[classification]]

        standout_labels = [
            ('length', 'excellente longueur corporelle'),
            ('height', 'très bonne hauteur'),
            ('chest', 'tour de poitrine remarquable'),
            ('mass', 'masse supérieure'),
        ]
        standouts = [label for name, label in standout_labels
                     if breakdown[name].available and breakdown[name].percentile >= 75]
        if standouts:
            parts.append(', '.join(standouts))

        length, height = breakdown['length'], breakdown['height']
        if length.available and height.available:
            ratio = length.value / height.value
            if ratio > 1.15:
                parts.append('profil longiligne recherché pour le standard Ladoum')
            elif ratio < 1.05:
                parts.append('morphologie compacte')

        return ', '.join(parts) + '.'


def measurement_trend(measurements: Sequence[Measurement]) -> MeasurementTrend:
    """
    Динамика промеров между первым и последним датированным промером

    Каждый признак считается по своим собственным промерам: пропуск
    в первой или последней записи не заменяется нулём.

    Args:
        measurements: история промеров

    Returns:
        MeasurementTrend с тенденцией и приростом в месяц (30 дней) по признакам
    """
    trends = {trait: 'Stable' for trait in PREDICTED_TRAITS}
    growth = {trait: 0.0 for trait in PREDICTED_TRAITS}
    if len(measurements) < 2:
        return MeasurementTrend(trends=trends, monthly_growth=growth)

    df = pd.DataFrame([vars(m) for m in measurements])
    df['date'] = pd.to_datetime(df['date'], errors='coerce')
    df = df.dropna(subset=['date']).sort_values('date', kind='mergesort')

    for trait in PREDICTED_TRAITS:
        column = _MEASUREMENT_FIELDS[trait]
        values = df[['date', column]].copy()
        values[column] = pd.to_numeric(values[column], errors='coerce')
        values = values[values[column] > 0]
        if len(values) < 2:
            continue

        first, last = values.iloc[0], values.iloc[-1]
        months = (last['date'] - first['date']).days / 30
        if months == 0:
            continue

        change = float(last[column]) - float(first[column])
        if change > 1:
            trends[trait] = 'Increasing'
        elif change < -1:
            trends[trait] = 'Decreasing'
        growth[trait] = round(change / months, 1)
    return MeasurementTrend(trends=trends, monthly_growth=growth)


# =====================================================================
# Экспертные правила
# =====================================================================

def _downgrade_reliable(ctx: BreedingContext) -> None:
    """Понижает RELIABLE до LOW_CONFIDENCE, но никогда не повышает статус"""
    if ctx.global_score.status == ScoreStatus.RELIABLE:
        ctx.global_score.status = ScoreStatus.LOW_CONFIDENCE


def _not_computable(ctx: BreedingContext) -> None:
    ctx.global_score.value = None
    ctx.global_score.confidence = 0.0
    ctx.global_score.status = ScoreStatus.NOT_COMPUTABLE
    ctx.global_score.recommendation = Recommendation.INSUFFICIENT_DATA
    ctx.global_score.explanation = (
        "Données insuffisantes pour évaluer ce croisement. "
        "Renseignez les pedigrees (père/mère) et mesurez les animaux (HG, LCS, TP) pour obtenir une analyse."
    )


def _insufficient_pedigree(ctx: BreedingContext) -> None:
    _downgrade_reliable(ctx)
    ctx.warnings.append(
        f"⚠️ Pedigree incomplet ({ctx.inbreeding.available_generations}/"
        f"{ctx.inbreeding.required_generations} générations). "
        "Le calcul de consanguinité est impossible. Renseignez les parents de chaque animal."
    )


def _high_inbreeding(ctx: BreedingContext) -> None:
    ctx.global_score.recommendation = Recommendation.NOT_RECOMMENDED
    ctx.global_score.status = ScoreStatus.RELIABLE  # уверенно плохой вариант
    ctx.warnings.append(
        f"🚫 Consanguinité élevée ({ctx.inbreeding.coefficient * 100:.1f}%). "
        "Risque de dépression génétique, malformations et baisse de fertilité. Ce croisement est déconseillé."
    )


def _low_morphometric_confidence(ctx: BreedingContext) -> None:
    _downgrade_reliable(ctx)
    weak = [TRAIT_CODES[p.trait] for p in ctx.morphometrics.traits if p.confidence < 0.5]
    ctx.warnings.append(
        f"⚠️ Prédictions morphométriques peu fiables ({', '.join(weak)}). "
        "Mesurez les parents pour améliorer la précision des prédictions."
    )


def _excellent_requires_all(ctx: BreedingContext) -> None:
    ctx.global_score.recommendation = Recommendation.GOOD
    ctx.global_score.status = ScoreStatus.LOW_CONFIDENCE

    reasons = []
    if ctx.inbreeding.coefficient is None:
        reasons.append('pedigree incomplet')
    if ctx.morphometrics.confidence < 0.7:
        reasons.append('mesures parentales manquantes')
    ctx.warnings.append(
        f"ℹ️ Score élevé mais confiance limitée ({', '.join(reasons)}). "
        '"Excellent" nécessite pedigree complet ET mesures des deux parents. Recommandation ajustée à "Bon".'
    )


RULE_R4_NOT_COMPUTABLE = ExpertRule(
    rule_id='R4_NOT_COMPUTABLE',
    name='Score Non Calculable',
    priority=0,
    condition=lambda ctx: (ctx.inbreeding.coefficient is None
                           and ctx.morphometrics.overall_score is None),
    consequence=_not_computable,
    explanation='Sans aucune donnée fiable, aucun conseil ne peut être donné',
    impact=RuleImpact.BLOCKING,
    terminal=True,
)

RULE_R1_INSUFFICIENT_PEDIGREE = ExpertRule(
    rule_id='R1_INSUFFICIENT_PEDIGREE',
    name='Pedigree Incomplet',
    priority=1,
    condition=lambda ctx: ctx.inbreeding.status != InbreedingStatus.COMPUTABLE,
    consequence=_insufficient_pedigree,
    explanation='Sans pedigree complet, le calcul de consanguinité est impossible',
)

RULE_R2_HIGH_INBREEDING = ExpertRule(
    rule_id='R2_HIGH_INBREEDING',
    name='Consanguinité Élevée',
    priority=2,
    condition=lambda ctx: (ctx.inbreeding.coefficient is not None
                           and ctx.inbreeding.coefficient >= 0.125),
    consequence=_high_inbreeding,
    explanation='COI ≥ 12.5% présente des risques génétiques importants',
    impact=RuleImpact.WARNING,
)

RULE_R3_LOW_MORPHOMETRIC_CONFIDENCE = ExpertRule(
    rule_id='R3_LOW_MORPHOMETRIC_CONFIDENCE',
    name='Confiance Morphométrique Faible',
    priority=3,
    condition=lambda ctx: ctx.morphometrics.confidence < 0.5,
    consequence=_low_morphometric_confidence,
    explanation='Confiance < 50% rend les prédictions morphométriques indicatives',
)

RULE_R5_EXCELLENT_REQUIRES_ALL = ExpertRule(
    rule_id='R5_EXCELLENT_REQUIRES_ALL',
    name='Excellent Nécessite Données Complètes',
    priority=4,
    condition=lambda ctx: (ctx.global_score.value is not None
                           and ctx.global_score.value >= 85
                           and ctx.global_score.recommendation == Recommendation.EXCELLENT
                           and (ctx.inbreeding.coefficient is None or ctx.morphometrics.confidence < 0.7)),
    consequence=_excellent_requires_all,
    explanation='Un score "Excellent" exige pedigree complet ET mesures des deux parents',
)

# Неизменяемый упорядоченный список правил, создаётся один раз при импорте
EXPERT_RULES: Tuple[ExpertRule, ...] = tuple(sorted(
    (RULE_R4_NOT_COMPUTABLE, RULE_R1_INSUFFICIENT_PEDIGREE, RULE_R2_HIGH_INBREEDING,
     RULE_R3_LOW_MORPHOMETRIC_CONFIDENCE, RULE_R5_EXCELLENT_REQUIRES_ALL),
    key=lambda rule: rule.priority,
))

RECOMMENDATION_TEXT = {
    Recommendation.EXCELLENT: 'Croisement excellent.',
    Recommendation.GOOD: 'Bon croisement.',
    Recommendation.CAUTION: 'Croisement possible avec prudence.',
    Recommendation.NOT_RECOMMENDED: 'Croisement déconseillé.',
    Recommendation.INSUFFICIENT_DATA: 'Données insuffisantes.',
}


class BreedingRuleEngine:
    """Экспертная система: сырой балл пары + правила в порядке приоритета"""

    def __init__(self, rules: Sequence[ExpertRule] = EXPERT_RULES):
        self.rules = tuple(sorted(rules, key=lambda rule: rule.priority))

    @staticmethod
    def raw_score(coefficient: Optional[float], overall_score: Optional[int],
                  confidence: float) -> QualifiedBreedingScore:
        """
        Сырой балл до применения правил

        Морфометрия даёт 60%, инбридинг 40%; неизвестная морфометрия
        считается средней (50), неизвестный инбридинг не штрафуется.

        Returns:
            QualifiedBreedingScore
        """
        if coefficient is None and overall_score is None:
            return QualifiedBreedingScore(None, 0.0, ScoreStatus.NOT_COMPUTABLE, Recommendation.INSUFFICIENT_DATA)

        morpho_component = (overall_score if overall_score is not None else 50) * 0.6
        inbreeding_penalty = (coefficient if coefficient is not None else 0.0) * 50
        inbreeding_component = (100 - inbreeding_penalty) * 0.4
        value = max(0, min(100, int(round(morpho_component + inbreeding_component))))

        if coefficient is not None and coefficient >= 0.125:
            recommendation = Recommendation.NOT_RECOMMENDED
        elif value >= 85 and confidence >= 0.7:
            recommendation = Recommendation.EXCELLENT
        elif value >= 70:
            recommendation = Recommendation.GOOD
        elif value >= 50:
            recommendation = Recommendation.CAUTION
        else:
            recommendation = Recommendation.NOT_RECOMMENDED

        status = ScoreStatus.RELIABLE if confidence >= 0.7 else ScoreStatus.LOW_CONFIDENCE
        return QualifiedBreedingScore(value, confidence, status, recommendation)

    def apply(self, context: BreedingContext) -> List[AppliedRule]:
        """
        Применяет правила к контексту за один проход

        Args:
            context: изменяемый контекст симуляции

        Returns:
            Список сработавших правил
        """
        applied = []
        for rule in self.rules:
            if not rule.condition(context):
                continue
            rule.consequence(context)
            applied.append(AppliedRule(rule.rule_id, rule.explanation, rule.impact))
            logger.debug(f"Сработало правило {rule.rule_id}")
            if rule.terminal:
                break
        context.applied_rules = applied
        return applied

    def simulate(self, sire: Animal, dam: Animal, calculator: InbreedingCalculator,
                 scorer: MorphometricScorer,
                 required_generations: int = MAX_PEDIGREE_DEPTH) -> BreedingSimulationResult:
        """
        Полная симуляция спаривания

        Args:
            sire: отец
            dam: мать
            calculator: калькулятор инбридинга над снимком стада
            scorer: морфометрический оценщик над тем же снимком
            required_generations: требуемая глубина родословной

        Returns:
            BreedingSimulationResult
        """
        inbreeding = calculator.compute(sire.id, dam.id, required_generations)
        morphometrics = scorer.score(sire, dam)
        context = BreedingContext(
            inbreeding=inbreeding,
            morphometrics=morphometrics,
            global_score=self.raw_score(inbreeding.coefficient, morphometrics.overall_score,
                                        morphometrics.confidence),
        )

        self.apply(context)

        score = context.global_score
        if score.status != ScoreStatus.NOT_COMPUTABLE:
            score.explanation = (f"{RECOMMENDATION_TEXT[score.recommendation]} "
                                 f"Score {score.value}/100, confiance {score.confidence * 100:.0f}%.")

        return BreedingSimulationResult(
            inbreeding=context.inbreeding,
            morphometrics=context.morphometrics,
            global_score=score,
            applied_rules=context.applied_rules,
            warnings=context.warnings,
            expected_due_date=datetime.now() + timedelta(days=GESTATION_DAYS),
        )


# =====================================================================
# Публичные функции
# =====================================================================

def pedigree_depth(animal_id: str, herd: Sequence[Animal], max_depth: int = MAX_PEDIGREE_DEPTH) -> int:
    return PedigreeResolver(herd, max_depth).pedigree_depth(animal_id)


def inbreeding_coefficient(sire_id: str, dam_id: str, herd: Sequence[Animal],
                           required_generations: int = MAX_PEDIGREE_DEPTH) -> InbreedingResult:
    return InbreedingCalculator(PedigreeResolver(herd)).compute(sire_id, dam_id, required_generations)


def predict_trait(trait: Trait, sire: Animal, dam: Animal, herd: Sequence[Animal],
                  heritability: Optional[float] = None) -> PredictedTrait:
    return TraitPredictor(HerdStatistics(herd)).predict(trait, sire, dam, heritability)


def score_pair_morphometrics(sire: Animal, dam: Animal, herd: Sequence[Animal]) -> MorphometricPairScore:
    return MorphometricScorer(TraitPredictor(HerdStatistics(herd))).score(sire, dam)


def score_animal_morphometrics(animal: Animal, herd_stats: HerdStatisticsSnapshot,
                               weights: Optional[Dict[str, float]] = None) -> AnimalMorphometricScore:
    return MorphometricScorer.score_animal(animal, herd_stats, weights)


def herd_statistics(herd: Sequence[Animal]) -> HerdStatisticsSnapshot:
    return HerdStatistics(herd).snapshot()


def simulate_breeding(sire: Animal, dam: Animal, herd: Sequence[Animal],
                      required_generations: int = MAX_PEDIGREE_DEPTH) -> BreedingSimulationResult:
    """
    Симуляция спаривания пары на снимке стада

    Отец и мать добавляются в родословную, если их нет в снимке.
    Недостаток данных никогда не приводит к исключению; единственное
    нарушение предусловий - одно и то же животное в роли отца и матери.

    Args:
        sire: отец
        dam: мать
        herd: снимок стада
        required_generations: требуемая глубина родословной

    Returns:
        BreedingSimulationResult

    Raises:
        ValueError: если sire и dam - одно животное
    """
    if sire.id == dam.id:
        raise ValueError(f"Отец и мать не могут быть одним животным: {sire.id}")

    herd = list(herd)
    known = {animal.id for animal in herd}
    resolver = PedigreeResolver(herd + [a for a in (sire, dam) if a.id not in known])
    scorer = MorphometricScorer(TraitPredictor(HerdStatistics(herd)))
    return BreedingRuleEngine().simulate(sire, dam, InbreedingCalculator(resolver), scorer, required_generations)


# =====================================================================
# Матрица совместимости
# =====================================================================

class BreedingMatrix:
    """Класс для расчёта матрицы совместимости активных самцов и самок"""

    SORT_KEYS = ('score', 'confidence', 'inbreeding', 'height', 'length', 'chest')

    def __init__(self, herd: Sequence[Animal], required_generations: int = MAX_PEDIGREE_DEPTH,
                 engine: Optional[BreedingRuleEngine] = None):
        """
        Инициализация матрицы совместимости

        Args:
            herd: снимок стада
            required_generations: требуемая глубина родословной
            engine: экспертная система (по умолчанию стандартные правила)
        """
        self.herd = list(herd)
        self.required_generations = required_generations
        self.engine = engine or BreedingRuleEngine()
        self.sires = [a for a in self.herd if a.gender == MALE and a.status == ACTIVE]
        self.dams = [a for a in self.herd if a.gender == FEMALE and a.status == ACTIVE]

        # Снимок общий для всех ячеек и только читается
        self.resolver = PedigreeResolver(self.herd)
        self.calculator = InbreedingCalculator(self.resolver)
        self.scorer = MorphometricScorer(TraitPredictor(HerdStatistics(self.herd)))
        self.results: Dict[Tuple[str, str], BreedingSimulationResult] = {}

    def compute(self) -> Dict[Tuple[str, str], BreedingSimulationResult]:
        """
        Симулирует все пары самец × самка

        Returns:
            Словарь {(ID отца, ID матери): результат}
        """
        logger.info(f"Расчёт матрицы совместимости: {len(self.sires)} самцов × {len(self.dams)} самок")
        if self.resolver.pedigree_completeness() < 30:
            logger.warning(f"Родословные заполнены на {self.resolver.pedigree_completeness():.0f}%, "
                           f"расчёт инбридинга будет неточным")

        total_pairs = len(self.sires) * len(self.dams)
        processed = 0
        for sire in self.sires:
            for dam in self.dams:
                self.results[(sire.id, dam.id)] = self.engine.simulate(
                    sire, dam, self.calculator, self.scorer, self.required_generations)
                processed += 1

                if processed % 1000 == 0:
                    logger.info(f"Обработано {processed}/{total_pairs} пар ({processed/total_pairs*100:.1f}%)")

        logger.info("Матрица совместимости рассчитана")
        return self.results

    def _ensure_computed(self):
        if len(self.results) < len(self.sires) * len(self.dams):
            self.compute()

    def score_matrix(self) -> pd.DataFrame:
        """Матрица баллов (строки - самки, столбцы - самцы), NaN для нерасчётных пар"""
        self._ensure_computed()
        matrix = pd.DataFrame(index=[d.id for d in self.dams], columns=[s.id for s in self.sires], dtype=float)
        for (sire_id, dam_id), result in self.results.items():
            value = result.global_score.value
            matrix.at[dam_id, sire_id] = np.nan if value is None else float(value)
        return matrix

    def admissible_matrix(self) -> pd.DataFrame:
        """Матрица баллов, где недопустимые пары (NotRecommended, InsufficientData) заменены на NaN"""
        matrix = self.score_matrix()
        excluded = (Recommendation.NOT_RECOMMENDED, Recommendation.INSUFFICIENT_DATA)
        for (sire_id, dam_id), result in self.results.items():
            if result.global_score.recommendation in excluded:
                matrix.at[dam_id, sire_id] = np.nan
        return matrix

    def best_combinations(self, sort_by: str = 'score', reliable_only: bool = False,
                          limit: int = 10) -> List[Tuple[str, str, BreedingSimulationResult]]:
        """
        Лучшие пары по выбранному критерию

        Args:
            sort_by: score, confidence, inbreeding, height, length или chest
            reliable_only: оставить только пары со статусом RELIABLE
            limit: число пар в ответе

        Returns:
            Список (ID отца, ID матери, результат)
        """
        if sort_by not in self.SORT_KEYS:
            raise ValueError(f"Неизвестный критерий сортировки {sort_by}; доступны {self.SORT_KEYS}")
        self._ensure_computed()

        cells = [(sire_id, dam_id, result) for (sire_id, dam_id), result in self.results.items()]
        if reliable_only:
            cells = [c for c in cells if c[2].global_score.status == ScoreStatus.RELIABLE]
        else:
            cells = [c for c in cells if c[2].global_score.value is not None]

        def sort_key(cell):
            result = cell[2]
            if sort_by == 'score':
                return -(result.global_score.value or 0)
            if sort_by == 'confidence':
                return -result.global_score.confidence
            if sort_by == 'inbreeding':
                coefficient = result.inbreeding.coefficient
                return 1.0 if coefficient is None else coefficient
            return -(result.morphometrics.get(Trait(sort_by)).mean or 0)

        return sorted(cells, key=sort_key)[:limit]


# =====================================================================
# Оптимизация плана спаривания
# =====================================================================

DEFAULT_OPTIMIZATION_CRITERIA = {
    'mean_score': {
        'weight': 1.0,
        'description': 'Средний балл спаривания',
        'maximize': True
    },
    'genetic_diversity': {
        'weight': 0.1,
        'description': 'Доля задействованных самцов',
        'maximize': True
    },
    'constraint_violation': {
        'weight': 1.0,
        'description': 'Перегрузка самцов',
        'maximize': False
    }
}


# Инициализация DEAP типов на уровне модуля
def _setup_deap_types(weights: Tuple[float, ...] = (1.0, 0.1, -1.0)):
    """
    Настройка типов DEAP

    Типы пересоздаются при каждом вызове; оптимизатор хранит ссылку на свой
    класс особи, поэтому веса одного экземпляра не влияют на другой.

    Returns:
        Класс особи (список индексов самцов с атрибутом fitness)
    """
    if hasattr(creator, 'MatingFitness'):
        del creator.MatingFitness
    if hasattr(creator, 'MatingPlan'):
        del creator.MatingPlan

    creator.create("MatingFitness", base.Fitness, weights=tuple(weights))
    creator.create("MatingPlan", list, fitness=creator.MatingFitness)
    return creator.MatingPlan


_setup_deap_types()


class MatingPlanOptimizer:
    """Класс для подбора самца каждой самке с помощью генетического алгоритма"""

    def __init__(self, score_matrix: pd.DataFrame, max_assign_per_sire: float = 0.1,
                 criteria: Optional[Dict[str, Dict[str, Any]]] = None):
        """
        Инициализация оптимизатора

        Args:
            score_matrix: матрица баллов (строки - самки, столбцы - самцы), NaN - недопустимая пара
            max_assign_per_sire: максимальная доля самок на одного самца
            criteria: словарь с критериями оптимизации и их весами
        """
        admissible = score_matrix.notna().any(axis=1)
        self.unassigned_dams = score_matrix.index[~admissible].tolist()
        for dam_id in self.unassigned_dams:
            logger.warning(f"Для самки {dam_id} нет допустимых самцов")

        self.score_matrix = score_matrix.loc[admissible]
        if self.score_matrix.empty:
            raise ValueError("Нет ни одной самки с допустимым самцом")

        self.values = self.score_matrix.to_numpy(dtype=float)
        self.dams = self.score_matrix.index.tolist()
        self.sires = self.score_matrix.columns.tolist()
        self.n_dams, self.n_sires = self.values.shape
        self.max_assign_per_sire = max(1, int(self.n_dams * max_assign_per_sire))

        self.criteria = self._setup_criteria(criteria)
        self._setup_deap()

        logger.info(f"Оптимизатор инициализирован: {self.n_dams} самок, {self.n_sires} самцов")
        logger.info(f"Максимум самок на самца: {self.max_assign_per_sire}")

    def _setup_criteria(self, custom_criteria=None) -> Dict[str, Dict[str, Any]]:
        """Объединяет пользовательские критерии со стандартными"""
        criteria = copy.deepcopy(DEFAULT_OPTIMIZATION_CRITERIA)
        if custom_criteria:
            for key, value in custom_criteria.items():
                if key not in criteria:
                    raise ValueError(f"Неизвестный критерий {key}; доступны {list(criteria)}")
                criteria[key].update(value)
        return criteria

    def _setup_deap(self):
        """Настройка DEAP для генетического алгоритма"""
        weights = []
        for config in self.criteria.values():
            weight = abs(config['weight'])
            weights.append(weight if config['maximize'] else -weight)
        self.individual_class = _setup_deap_types(tuple(weights))

        self.toolbox = base.Toolbox()
        self.toolbox.register("individual", self._create_individual)
        self.toolbox.register("population", tools.initRepeat, list, self.toolbox.individual)
        self.toolbox.register("evaluate", self._evaluate_individual)
        self.toolbox.register("mate", self._crossover)
        self.toolbox.register("mutate", self._mutate)
        self.toolbox.register("select", tools.selNSGA2)

    def _admissible_sires(self, dam_idx: int) -> np.ndarray:
        return np.where(~np.isnan(self.values[dam_idx]))[0]

    def _count_sire_usage(self, individual: List[int]) -> np.ndarray:
        usage = np.zeros(self.n_sires, dtype=int)
        for sire_idx in individual:
            usage[sire_idx] += 1
        return usage

    def _repair_individual(self, individual: List[int]) -> List[int]:
        """Исправляет особь, чтобы она соответствовала ограничениям"""
        usage = self._count_sire_usage(individual)

        for dam_idx in range(self.n_dams):
            sire_idx = individual[dam_idx]
            if usage[sire_idx] > self.max_assign_per_sire or np.isnan(self.values[dam_idx, sire_idx]):
                valid_sires = [s for s in self._admissible_sires(dam_idx) if usage[s] < self.max_assign_per_sire]
                if valid_sires:
                    new_sire = random.choice(valid_sires)
                    usage[sire_idx] -= 1
                    usage[new_sire] += 1
                    individual[dam_idx] = new_sire

        return individual

    def _create_individual(self):
        """Создаёт новую особь: индекс самца для каждой самки"""
        individual = []
        sire_usage = np.zeros(self.n_sires, dtype=int)

        for dam_idx in range(self.n_dams):
            possible_sires = self._admissible_sires(dam_idx)
            attempts = 0
            while attempts < 10:
                sire_idx = int(random.choice(possible_sires))
                if sire_usage[sire_idx] < self.max_assign_per_sire:
                    sire_usage[sire_idx] += 1
                    individual.append(sire_idx)
                    break
                attempts += 1
            else:
                sire_idx = int(random.choice(possible_sires))
                sire_usage[sire_idx] += 1
                individual.append(sire_idx)
                logger.warning(f"Принудительное назначение для самки {self.dams[dam_idx]}")

        return self.individual_class(individual)

    def _evaluate_individual(self, individual) -> tuple:
        """Оценивает приспособленность особи по всем критериям"""
        scores = [self.values[dam_idx, sire_idx] for dam_idx, sire_idx in enumerate(individual)]
        usage = self._count_sire_usage(individual)
        overused = float(np.sum(np.maximum(usage - self.max_assign_per_sire, 0)))

        values = {
            'mean_score': float(np.nanmean(scores)) if not np.all(np.isnan(scores)) else 0.0,
            'genetic_diversity': len(set(individual)) / self.n_sires,
            'constraint_violation': overused,
        }
        # Штраф за нарушение ограничений
        if overused > 0:
            penalty = overused * 1e-3
            values['mean_score'] -= penalty
            values['genetic_diversity'] -= penalty

        return tuple(values[name] for name in self.criteria)

    def _mutate(self, individual):
        """Мутация: новая допустимая пара для случайной самки"""
        mutated = list(individual)
        dam_idx = random.randint(0, self.n_dams - 1)
        usage = self._count_sire_usage(mutated)

        valid_sires = [s for s in self._admissible_sires(dam_idx) if usage[s] < self.max_assign_per_sire]
        if not valid_sires:
            return (self.individual_class(mutated),)

        if random.random() < 0.5:
            new_sire = random.choice(valid_sires)
        else:
            new_sire = max(valid_sires, key=lambda s: self.values[dam_idx, s])

        mutated[dam_idx] = int(new_sire)
        mutated = self._repair_individual(mutated)
        return (self.individual_class(mutated),)

    def _crossover(self, ind1, ind2):
        """Скрещивание особей"""
        if self.n_dams < 2:
            return self.individual_class(ind1[:]), self.individual_class(ind2[:])
        ind1_new, ind2_new = tools.cxTwoPoint(ind1[:], ind2[:])
        return (self.individual_class(self._repair_individual(ind1_new)),
                self.individual_class(self._repair_individual(ind2_new)))

    def optimize(self, pop_size: int = 100, ngen: int = 50, cxpb: float = 0.5, mutpb: float = 0.1,
                 seed: Optional[int] = None):
        """
        Запускает генетический алгоритм

        Args:
            pop_size: размер популяции
            ngen: количество поколений
            cxpb: вероятность скрещивания
            mutpb: вероятность мутации
            seed: зерно генератора случайных чисел

        Returns:
            DataFrame с планом (dam_id, sire_id, score), лучшая особь, фронт Парето
        """
        if cxpb + mutpb > 1.0:
            raise ValueError("Сумма вероятностей скрещивания и мутации не может превышать 1")
        if seed is not None:
            random.seed(seed)

        logger.info("Запуск генетического алгоритма...")
        pop = self.toolbox.population(n=pop_size)
        hof = tools.ParetoFront()

        stats = tools.Statistics(lambda ind: ind.fitness.values)
        stats.register("avg", np.mean, axis=0)
        stats.register("max", np.max, axis=0)

        pop, logbook = algorithms.eaMuPlusLambda(
            pop, self.toolbox,
            mu=pop_size,
            lambda_=2 * pop_size,
            cxpb=cxpb,
            mutpb=mutpb,
            ngen=ngen,
            stats=stats,
            halloffame=hof,
            verbose=False
        )

        logger.info(f"Алгоритм завершён, найдено {len(hof)} недоминируемых решений")

        # Сначала решения без перегрузки самцов, затем по среднему баллу
        names = list(self.criteria)
        score_idx = names.index('mean_score')
        violation_idx = names.index('constraint_violation')
        best_ind = max(hof.items, key=lambda ind: (ind.fitness.values[violation_idx] == 0,
                                                   ind.fitness.values[score_idx]))
        logger.info(f"Лучшее решение: средний балл={best_ind.fitness.values[score_idx]:.2f}")

        plan = pd.DataFrame({
            'dam_id': self.dams,
            'sire_id': [self.sires[sire_idx] for sire_idx in best_ind],
            'score': [self.values[dam_idx, sire_idx] for dam_idx, sire_idx in enumerate(best_ind)],
        })
        if self.unassigned_dams:
            unassigned = pd.DataFrame({'dam_id': self.unassigned_dams, 'sire_id': None, 'score': np.nan})
            plan = pd.concat([plan, unassigned], ignore_index=True)

        return plan, best_ind, hof
