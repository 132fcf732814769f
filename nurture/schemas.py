"""Canonical data-transfer objects for the nurture economy.

Static table rows, runtime records, operation results and the immutable
event messages published on the ``EventBus``.
"""

import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

Clock = Callable[[], int]


def unix_now() -> int:
    return int(time.time())


class StatType(IntEnum):
    """The five creature stats, in canonical order."""

    COURAGE = 0
    WISDOM = 1
    PURITY = 2
    LOVE = 3
    CHAOS = 4


STAT_ORDER: Tuple[StatType, ...] = tuple(StatType)


class BuffType(str, Enum):
    NONE = "none"
    COMMON_CURRENCY_GAIN = "common_currency_gain"
    SPECIAL_CURRENCY_GAIN = "special_currency_gain"
    DUPLICATE_REWARD_BONUS = "duplicate_reward_bonus"


class ClearRank(IntEnum):
    """Clear-quality tier of a finished run, worst to best."""

    F = 0
    E = 1
    D = 2
    C = 3
    B = 4
    A = 5
    S = 6
    SS = 7


def empty_stats() -> Dict[StatType, int]:
    return {stat: 0 for stat in STAT_ORDER}


def stats_tuple(stats: Dict[StatType, int]) -> Tuple[int, ...]:
    """Flatten a stat map into a tuple ordered by ``STAT_ORDER``."""
    return tuple(int(stats.get(stat, 0)) for stat in STAT_ORDER)


@dataclass
class EconomyConfig:
    """Tunables for an ``EggEconomy``."""

    data_dir: str = "data"
    random_seed: Optional[int] = None
    tables_path: Optional[str] = None  # None = bundled tables_default.yaml
    default_required_level: int = 5
    action_history_cap: int = 100
    evolution_history_cap: int = 50
    recent_history_window: int = 10
    cooldown_unit_seconds: int = 3600
    max_buff_percent: Optional[float] = None  # None = uncapped


# ── Static table rows ─────────────────────────


@dataclass(frozen=True)
class CurrencyRow:
    """A currency definition. ``type_tag`` is ``"common"`` or a creature type."""

    id: int
    type_tag: str
    rarity: float = 1.0
    description: str = ""


@dataclass(frozen=True)
class CreatureRow:
    id: int
    type_tag: str
    name_key: str = ""


@dataclass(frozen=True)
class StatDelta:
    stat: StatType
    amount: int = 1


@dataclass(frozen=True)
class GrowthActionDefinition:
    """One offer in the growth-action pool."""

    id: int
    name_key: str = ""
    cost_common: int = 0
    cost_special: int = 0
    stat_deltas: Tuple[StatDelta, ...] = ()
    min_level: int = 1
    max_level: int = 99
    weight: float = 1.0
    cooldown_turns: int = 0  # 0 = no cooldown
    exclusive_with: FrozenSet[int] = frozenset()


@dataclass(frozen=True)
class FormProbability:
    form_id: int
    probability_percent: float = 0.0


@dataclass(frozen=True)
class EvolutionRuleRow:
    """Outcome table for one (creature type, dominant stat, level tier)."""

    id: int
    creature_type: str
    dominant_stat: StatType
    min_nurture_level: int = 1
    outcomes: Tuple[FormProbability, ...] = ()


@dataclass(frozen=True)
class EvolutionForm:
    """An evolved form. ``form_id == 0`` means "no form"."""

    form_id: int
    name_key: str = ""
    creature_type: str = ""
    grade: int = 1
    buff_type: BuffType = BuffType.NONE
    buff_value_percent: float = 0.0
    buff_target_type: str = ""
    duplicate_reward_amount: int = 0
    primary_stat: Optional[StatType] = None

    @classmethod
    def empty(cls) -> "EvolutionForm":
        return cls(form_id=0)

    @property
    def is_empty(self) -> bool:
        return self.form_id == 0


# ── Runtime records ───────────────────────────


@dataclass
class Creature:
    """Mutable growth state of one egg. Owned by ``GrowthActionService``."""

    creature_id: int
    type_tag: str
    level: int = 1
    stats: Dict[StatType, int] = field(default_factory=empty_stats)


@dataclass(frozen=True)
class ActionRecord:
    action_id: int
    action_name: str
    timestamp: int
    session_id: int


@dataclass(frozen=True)
class EvolutionRecord:
    form_id: int
    form_name: str
    stats_at_evolution: Tuple[int, ...]
    evolved_at: int
    session_id: int


# ── Operation results ─────────────────────────


@dataclass
class RunningRewardContext:
    """Snapshot of a finished run used to pay out its reward."""

    creature_id: int
    creature_type: str
    cleared: bool
    score: int
    rank: Optional[ClearRank] = None  # None = ranked from score


@dataclass
class RewardResult:
    common_gained: int = 0
    special_gained: int = 0
    sources: List[str] = field(default_factory=list)


@dataclass
class GrowthActionResult:
    success: bool
    error_message: str = ""
    stat_changes: Dict[StatType, int] = field(default_factory=empty_stats)
    new_level: int = 0
    action: Optional[GrowthActionDefinition] = None


@dataclass
class EvolutionCondition:
    can_evolve: bool
    required_level: int
    current_level: int
    error_message: str = ""


@dataclass
class EvolutionResult:
    success: bool
    form: EvolutionForm = field(default_factory=EvolutionForm.empty)
    final_stats: Tuple[int, ...] = ()
    error_message: str = ""
    is_new_form: bool = False
    duplicate_reward: int = 0


@dataclass(frozen=True)
class PredictedOutcome:
    form_id: int
    form_name: str
    probability_percent: float


@dataclass
class EvolutionSimulation:
    total_runs: int
    form_counts: Dict[int, int] = field(default_factory=dict)
    stat_probabilities: Dict[StatType, float] = field(default_factory=dict)
    most_common_form: str = ""


@dataclass(frozen=True)
class Registration:
    """Outcome of a collection registration."""

    is_new: bool
    duplicate_reward: int = 0


# ── Events ────────────────────────────────────


@dataclass(frozen=True)
class CurrencyGained:
    currency_id: int
    amount: int
    source: str
    creature_id: int = -1


@dataclass(frozen=True)
class CurrencySpent:
    currency_id: int
    amount: int
    purpose: str
    creature_id: int = -1


@dataclass(frozen=True)
class CurrencyBalanceChanged:
    currency_id: int
    old_amount: int
    new_amount: int
    change_amount: int


@dataclass(frozen=True)
class StatChanged:
    creature_id: int
    stat: StatType
    old_value: int
    new_value: int
    change_amount: int


@dataclass(frozen=True)
class LevelChanged:
    creature_id: int
    old_level: int
    new_level: int
    change_amount: int
    reason: str


@dataclass(frozen=True)
class GrowthActionPerformed:
    creature_id: int
    action_id: int
    cost_common: int
    cost_special: int
    action_name: str


@dataclass(frozen=True)
class EvolutionAttempted:
    creature_id: int
    nurture_level: int
    required_level: int
    can_evolve: bool


@dataclass(frozen=True)
class EvolutionCompleted:
    creature_id: int
    form_id: int
    form_name: str
    final_stats: Tuple[int, ...]


@dataclass(frozen=True)
class EvolutionFailed:
    creature_id: int
    reason: str
    missing_level: int


@dataclass(frozen=True)
class FormRegistered:
    form_id: int
    form_name: str


@dataclass(frozen=True)
class DuplicateFormProcessed:
    form_id: int
    currency_id: int
    amount: int
