"""Static game tables: currencies, creatures, growth actions, evolution rules and forms."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from nurture.schemas import (
    BuffType,
    ClearRank,
    CreatureRow,
    CurrencyRow,
    EvolutionForm,
    EvolutionRuleRow,
    FormProbability,
    GrowthActionDefinition,
    StatDelta,
    StatType,
)

logger = logging.getLogger(__name__)

_DEFAULT_YAML = Path(__file__).parent / "tables_default.yaml"

COMMON_TYPE_TAG = "common"


class TableError(ValueError):
    """Raised when a table file is missing or holds an invalid row."""


def normalize_type(type_tag: Optional[str]) -> str:
    return (type_tag or "").strip().lower()


@dataclass
class EconomyTables:
    """Read-only lookups over the static tables.

    Rows are indexed by id on construction; duplicate ids are rejected.
    """

    currencies: List[CurrencyRow] = field(default_factory=list)
    creatures: List[CreatureRow] = field(default_factory=list)
    growth_actions: List[GrowthActionDefinition] = field(default_factory=list)
    evolution_rules: List[EvolutionRuleRow] = field(default_factory=list)
    evolved_forms: List[EvolutionForm] = field(default_factory=list)
    rank_rewards: Dict[ClearRank, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._currency_by_id = _index(self.currencies, lambda r: r.id, "currency")
        self._creature_by_id = _index(self.creatures, lambda r: r.id, "creature")
        self._action_by_id = _index(self.growth_actions, lambda r: r.id, "growth action")
        self._form_by_id = _index(self.evolved_forms, lambda r: r.form_id, "evolved form")
        _index(self.evolution_rules, lambda r: r.id, "evolution rule")

        self._common_currency_id: Optional[int] = None
        self._special_currency_by_type: Dict[str, int] = {}
        for row in self.currencies:
            tag = normalize_type(row.type_tag)
            if tag == COMMON_TYPE_TAG:
                if self._common_currency_id is None:
                    self._common_currency_id = row.id
            else:
                self._special_currency_by_type.setdefault(tag, row.id)

    @classmethod
    def default(cls) -> "EconomyTables":
        return load_tables(str(_DEFAULT_YAML))

    @classmethod
    def load(cls, path: str) -> "EconomyTables":
        return load_tables(path)

    # ── Currencies ────────────────────────────

    def currency(self, currency_id: int) -> Optional[CurrencyRow]:
        return self._currency_by_id.get(currency_id)

    @property
    def common_currency_id(self) -> Optional[int]:
        return self._common_currency_id

    def special_currency_id(self, creature_type: str) -> Optional[int]:
        """Currency id scoped to *creature_type*, or None if it has none."""
        return self._special_currency_by_type.get(normalize_type(creature_type))

    # ── Creatures / actions / forms ───────────

    def creature(self, creature_id: int) -> Optional[CreatureRow]:
        return self._creature_by_id.get(creature_id)

    def action(self, action_id: int) -> Optional[GrowthActionDefinition]:
        return self._action_by_id.get(action_id)

    def form(self, form_id: int) -> Optional[EvolutionForm]:
        return self._form_by_id.get(form_id)

    def forms_for_type(self, creature_type: str) -> List[EvolutionForm]:
        key = normalize_type(creature_type)
        return [f for f in self.evolved_forms if normalize_type(f.creature_type) == key]

    def rules_for(self, creature_type: str, dominant_stat: StatType) -> List[EvolutionRuleRow]:
        key = normalize_type(creature_type)
        return [
            r for r in self.evolution_rules
            if normalize_type(r.creature_type) == key and r.dominant_stat == dominant_stat
        ]

    def reward_for_rank(self, rank: ClearRank) -> int:
        return self.rank_rewards.get(rank, 0)


def _index(rows: Iterable[Any], key, label: str) -> Dict[int, Any]:
    index: Dict[int, Any] = {}
    for row in rows:
        k = key(row)
        if k in index:
            raise TableError(f"Duplicate {label} id: {k}")
        index[k] = row
    return index


# ── Parsing ───────────────────────────────────


def _stat(value: Any) -> StatType:
    try:
        if isinstance(value, int):
            return StatType(value)
        return StatType[str(value).strip().upper()]
    except (KeyError, ValueError) as e:
        raise TableError(f"Unknown stat: {value!r}") from e


def _buff_type(value: Any) -> BuffType:
    try:
        return BuffType(str(value or "none").strip().lower())
    except ValueError as e:
        raise TableError(f"Unknown buff type: {value!r}") from e


def _rank(value: Any) -> ClearRank:
    try:
        return ClearRank[str(value).strip().upper()]
    except KeyError as e:
        raise TableError(f"Unknown clear rank: {value!r}") from e


def _parse_action(raw: Dict[str, Any]) -> GrowthActionDefinition:
    deltas: Tuple[StatDelta, ...] = tuple(
        StatDelta(stat=_stat(d["stat"]), amount=int(d.get("amount", 1)))
        for d in raw.get("stats") or []
    )
    action = GrowthActionDefinition(
        id=int(raw["id"]),
        name_key=str(raw.get("name", "")),
        cost_common=int(raw.get("cost_common", 0)),
        cost_special=int(raw.get("cost_special", 0)),
        stat_deltas=deltas,
        min_level=int(raw.get("min_level", 1)),
        max_level=int(raw.get("max_level", 99)),
        weight=float(raw.get("weight", 1.0)),
        cooldown_turns=int(raw.get("cooldown_turns", 0)),
        exclusive_with=frozenset(int(i) for i in raw.get("exclusive_with") or []),
    )
    if action.min_level > action.max_level:
        logger.warning("Growth action %d has min_level > max_level", action.id)
    if action.weight <= 0:
        logger.warning("Growth action %d has non-positive weight and is never offered", action.id)
    return action


def _parse_rule(raw: Dict[str, Any]) -> EvolutionRuleRow:
    outcomes = tuple(
        FormProbability(
            form_id=int(o["form_id"]),
            probability_percent=float(o.get("probability", 0.0)),
        )
        for o in raw.get("outcomes") or []
    )
    rule = EvolutionRuleRow(
        id=int(raw["id"]),
        creature_type=normalize_type(raw["creature_type"]),
        dominant_stat=_stat(raw["dominant_stat"]),
        min_nurture_level=int(raw.get("min_nurture_level", 1)),
        outcomes=outcomes,
    )
    total = sum(max(0.0, o.probability_percent) for o in outcomes)
    if abs(total - 100.0) > 0.01:
        logger.warning("Evolution rule %d probabilities sum to %.2f%%, not 100%%", rule.id, total)
    return rule


def _parse_form(raw: Dict[str, Any]) -> EvolutionForm:
    return EvolutionForm(
        form_id=int(raw["id"]),
        name_key=str(raw.get("name", "")),
        creature_type=normalize_type(raw.get("creature_type")),
        grade=int(raw.get("grade", 1)),
        buff_type=_buff_type(raw.get("buff_type")),
        buff_value_percent=float(raw.get("buff_value_percent", 0.0)),
        buff_target_type=normalize_type(raw.get("buff_target_type")),
        duplicate_reward_amount=int(raw.get("duplicate_reward", 0)),
    )


def tables_from_dict(data: Dict[str, Any]) -> EconomyTables:
    """Build tables from the parsed YAML mapping."""
    try:
        return EconomyTables(
            currencies=[
                CurrencyRow(
                    id=int(r["id"]),
                    type_tag=normalize_type(r["type"]),
                    rarity=float(r.get("rarity", 1.0)),
                    description=str(r.get("description", "")),
                )
                for r in data.get("currencies") or []
            ],
            creatures=[
                CreatureRow(
                    id=int(r["id"]),
                    type_tag=normalize_type(r["type"]),
                    name_key=str(r.get("name", "")),
                )
                for r in data.get("creatures") or []
            ],
            growth_actions=[_parse_action(r) for r in data.get("growth_actions") or []],
            evolution_rules=[_parse_rule(r) for r in data.get("evolution_rules") or []],
            evolved_forms=[_parse_form(r) for r in data.get("evolved_forms") or []],
            rank_rewards={
                _rank(k): int(v) for k, v in (data.get("rank_rewards") or {}).items()
            },
        )
    except (KeyError, TypeError, ValueError) as e:
        if isinstance(e, TableError):
            raise
        raise TableError(f"Invalid table row: {e}") from e


def load_tables(path: str) -> EconomyTables:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise TableError(f"Cannot read tables from {path}: {e}") from e
    if not isinstance(data, dict):
        raise TableError(f"Tables file {path} must hold a mapping")
    tables = tables_from_dict(data)
    logger.info(
        "Tables loaded from %s: %d currencies, %d actions, %d rules, %d forms",
        path, len(tables.currencies), len(tables.growth_actions),
        len(tables.evolution_rules), len(tables.evolved_forms),
    )
    return tables
