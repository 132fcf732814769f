"""Evolution resolver: eligibility, probabilistic form selection and history.

Form selection happens in three steps:

1. The dominant stat is the strictly greatest stat; ties go to the first
   stat in canonical order.
2. Among rule rows for (creature type, dominant stat) whose
   ``min_nurture_level`` is at most the level, the row with the highest
   ``min_nurture_level`` wins.  Creatures that are not owned (and id 0)
   are evaluated with an unbounded level.
3. An outcome is drawn from that row by a cumulative walk over the
   non-negative probabilities.

A successful attempt does not reset the creature; callers invoke
``reset_after_evolution`` once the result has been shown.
"""

import dataclasses
import json
import logging
import sys
import threading
from collections import Counter
from collections.abc import Mapping
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import ValidationError

from nurture.action_selector import total_weight, weighted_choice
from nurture.collection import CollectionRegistry
from nurture.documents import (
    EVOLUTION_FILE,
    EvolutionDocument,
    EvolutionHistoryEntry,
    EvolutionRecordEntry,
    RequirementEntry,
    StageEntry,
)
from nurture.event_bus import EventBus
from nurture.growth_actions import GrowthActionService
from nurture.schemas import (
    STAT_ORDER,
    Clock,
    EconomyConfig,
    EvolutionAttempted,
    EvolutionCompleted,
    EvolutionCondition,
    EvolutionFailed,
    EvolutionForm,
    EvolutionRecord,
    EvolutionResult,
    EvolutionRuleRow,
    EvolutionSimulation,
    FormProbability,
    PredictedOutcome,
    StatType,
    unix_now,
)
from nurture.tables import EconomyTables

if TYPE_CHECKING:
    from nurture.store import JsonStore

logger = logging.getLogger(__name__)

Stats = Union[Mapping[StatType, int], Sequence[int]]

UNBOUNDED_LEVEL = sys.maxsize
BALANCE_BONUS = 0.1
BALANCE_SPREAD = 20.0


# ── Pure helpers ──────────────────────────────


def stat_values(stats: Stats) -> Tuple[int, ...]:
    """Normalize a stat mapping or a canonical-order sequence to a 5-tuple."""
    if isinstance(stats, Mapping):
        return tuple(int(stats.get(stat, 0)) for stat in STAT_ORDER)
    values = [int(v) for v in list(stats)[:len(STAT_ORDER)]]
    values += [0] * (len(STAT_ORDER) - len(values))
    return tuple(values)


def dominant_stat(stats: Stats) -> StatType:
    values = stat_values(stats)
    best = STAT_ORDER[0]
    best_value = None
    for stat, value in zip(STAT_ORDER, values):
        if best_value is None or value > best_value:
            best, best_value = stat, value
    return best


def select_rule(rules: Sequence[EvolutionRuleRow], level: int) -> Optional[EvolutionRuleRow]:
    """The qualifying row with the highest ``min_nurture_level``; first wins ties."""
    chosen: Optional[EvolutionRuleRow] = None
    for rule in rules:
        if rule.min_nurture_level > level:
            continue
        if chosen is None or rule.min_nurture_level > chosen.min_nurture_level:
            chosen = rule
    return chosen


def _probability(outcome: FormProbability) -> float:
    return max(0.0, outcome.probability_percent)


def outcome_total(outcomes: Sequence[FormProbability]) -> float:
    return total_weight(outcomes, _probability)


def pick_outcome(outcomes: Sequence[FormProbability], roll: float) -> Optional[FormProbability]:
    """Outcome selected by *roll* in ``[0, outcome_total(outcomes)]``.

    Inclusive boundaries: 0 selects the first outcome with positive
    probability and the total selects the last one.
    """
    if outcome_total(outcomes) <= 0:
        return None
    index = weighted_choice(outcomes, _probability, roll)
    return outcomes[index] if index is not None else None


def evolution_probability(stat: StatType, stats: Stats) -> float:
    """Heuristic chance that *stat* drives an evolution, in ``[0, 1]``.

    Base is the stat value over 100.  A balance bonus is added when the
    largest other stat is within 20 of the mean of the other stats.
    """
    values = dict(zip(STAT_ORDER, stat_values(stats)))
    base = min(1.0, max(0.0, values[stat] / 100.0))
    others = [v for s, v in values.items() if s != stat]
    max_other = max(others) if others else 0
    average_other = sum(others) / max(1, len(others))
    bonus = BALANCE_BONUS if abs(max_other - average_other) < BALANCE_SPREAD else 0.0
    return min(1.0, max(0.0, base + bonus))


# ── Service ───────────────────────────────────


class EvolutionService:
    """Per-creature evolution requirements, history and stage counters."""

    def __init__(
        self,
        tables: EconomyTables,
        bus: EventBus,
        growth: GrowthActionService,
        collection: CollectionRegistry,
        config: Optional[EconomyConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._tables = tables
        self._bus = bus
        self._growth = growth
        self._collection = collection
        self._config = config or EconomyConfig()
        self._clock = clock or unix_now
        self._rng = np.random.default_rng(self._config.random_seed)
        self._requirements: Dict[int, int] = {}
        self._history: Dict[int, List[EvolutionRecord]] = {}
        self._stages: Dict[int, int] = {}
        self._lock = threading.RLock()

    # ── Requirements ──────────────────────────────

    def get_requirement(self, creature_id: int) -> int:
        with self._lock:
            return self._requirements.get(creature_id, self._config.default_required_level)

    def set_requirement(self, creature_id: int, required_level: int) -> None:
        with self._lock:
            self._requirements[creature_id] = max(1, required_level)
        logger.info("Evolution requirement for creature %d set to %d", creature_id, required_level)

    def check_condition(self, creature_id: int, level: int) -> EvolutionCondition:
        required = self.get_requirement(creature_id)
        can_evolve = level >= required
        return EvolutionCondition(
            can_evolve=can_evolve,
            required_level=required,
            current_level=level,
            error_message="" if can_evolve else f"Nurture level {level} below required {required}",
        )

    # ── Form selection ────────────────────────────

    def _effective_level(self, creature_id: int, level: int) -> int:
        if creature_id == 0 or not self._growth.has_creature(creature_id):
            return UNBOUNDED_LEVEL
        return level

    def _rule_for(self, creature_id: int, creature_type: str, level: int, stats: Stats):
        dominant = dominant_stat(stats)
        rule = select_rule(
            self._tables.rules_for(creature_type, dominant),
            self._effective_level(creature_id, level),
        )
        return dominant, rule

    def _roll(self, total: float) -> float:
        with self._lock:
            return float(self._rng.random()) * total

    def determine_form(
        self,
        creature_id: int,
        creature_type: str,
        level: int,
        stats: Stats,
        roll: Optional[float] = None,
    ) -> EvolutionForm:
        """Pick the evolved form for the given state; empty when none applies.

        *roll* overrides the random draw and must lie in
        ``[0, sum of positive probabilities]`` of the selected row.
        """
        dominant, rule = self._rule_for(creature_id, creature_type, level, stats)
        if rule is None or not rule.outcomes:
            logger.debug("No evolution rule for type=%s dominant=%s", creature_type, dominant.name)
            return EvolutionForm.empty()
        total = outcome_total(rule.outcomes)
        if total <= 0:
            return EvolutionForm.empty()
        if roll is None:
            roll = self._roll(total)
        outcome = pick_outcome(rule.outcomes, roll)
        if outcome is None or outcome.form_id == 0:
            return EvolutionForm.empty()

        form = self._tables.form(outcome.form_id)
        if form is None:
            form = EvolutionForm(
                form_id=outcome.form_id,
                name_key=f"form_{outcome.form_id}",
                creature_type=creature_type,
            )
        return dataclasses.replace(form, primary_stat=dominant)

    def get_predicted_outcomes(
        self, creature_id: int, creature_type: str, level: int, stats: Stats,
    ) -> List[PredictedOutcome]:
        """Every form the current state could evolve into, with its chance."""
        _, rule = self._rule_for(creature_id, creature_type, level, stats)
        if rule is None:
            return []
        predicted = []
        for outcome in rule.outcomes:
            if outcome.probability_percent <= 0:
                continue
            form = self._tables.form(outcome.form_id)
            name = form.name_key if form is not None else f"form_{outcome.form_id}"
            predicted.append(PredictedOutcome(outcome.form_id, name, outcome.probability_percent))
        return predicted

    # ── Attempt ───────────────────────────────────

    def attempt_evolution(self, creature_id: int, level: int, stats: Stats) -> EvolutionResult:
        condition = self.check_condition(creature_id, level)
        self._bus.publish(EvolutionAttempted(
            creature_id, level, condition.required_level, condition.can_evolve,
        ))
        if not condition.can_evolve:
            missing = max(0, condition.required_level - level)
            self._bus.publish(EvolutionFailed(creature_id, condition.error_message, missing))
            logger.warning("Evolution of creature %d failed: %s", creature_id, condition.error_message)
            return EvolutionResult(success=False, error_message=condition.error_message)

        if not self._growth.has_creature(creature_id):
            message = f"Unknown creature {creature_id}"
            logger.warning("Evolution rejected: %s", message)
            return EvolutionResult(success=False, error_message=message)

        creature_type = self._growth.get_creature_type(creature_id)
        form = self.determine_form(creature_id, creature_type, level, stats)
        if form.is_empty:
            message = "No evolution form available"
            logger.warning("Evolution of creature %d: %s", creature_id, message)
            return EvolutionResult(success=False, error_message=message)

        final_stats = stat_values(stats)
        with self._lock:
            history = self._history.setdefault(creature_id, [])
            history.append(EvolutionRecord(
                form.form_id, form.name_key, final_stats, self._clock(), self._growth.session_id,
            ))
            overflow = len(history) - self._config.evolution_history_cap
            if overflow > 0:
                del history[:overflow]
            self._stages[creature_id] = self._stages.get(creature_id, 0) + 1

        self._bus.publish(EvolutionCompleted(creature_id, form.form_id, form.name_key, final_stats))
        registration = self._collection.register_form(form.form_id)
        logger.info(
            "Creature %d evolved into form %d (new=%s)", creature_id, form.form_id, registration.is_new,
        )
        return EvolutionResult(
            success=True,
            form=form,
            final_stats=final_stats,
            is_new_form=registration.is_new,
            duplicate_reward=registration.duplicate_reward,
        )

    def reset_after_evolution(self, creature_id: int, form_id: int) -> bool:
        logger.debug("Resetting creature %d after evolving into %d", creature_id, form_id)
        return self._growth.reset_stats(creature_id)

    # ── Queries ───────────────────────────────────

    def get_stage(self, creature_id: int) -> int:
        with self._lock:
            return self._stages.get(creature_id, 0)

    def get_history(self, creature_id: int) -> List[EvolutionRecord]:
        with self._lock:
            return list(self._history.get(creature_id, ()))

    def get_form_info(self, form_id: int) -> EvolutionForm:
        return self._tables.form(form_id) or EvolutionForm.empty()

    def get_available_forms(self, creature_type: str) -> List[EvolutionForm]:
        return self._tables.forms_for_type(creature_type)

    def calculate_evolution_probability(self, stat: StatType, stats: Stats) -> float:
        return evolution_probability(stat, stats)

    def simulate_evolution(self, creature_type: str, stats: Stats, runs: int = 1000) -> EvolutionSimulation:
        """Run ``determine_form`` *runs* times as an unowned creature."""
        counts: Counter = Counter()
        for _ in range(max(0, runs)):
            form = self.determine_form(0, creature_type, UNBOUNDED_LEVEL, stats)
            if not form.is_empty:
                counts[form.form_id] += 1
        result = EvolutionSimulation(
            total_runs=runs,
            form_counts=dict(counts),
            stat_probabilities={stat: evolution_probability(stat, stats) for stat in STAT_ORDER},
        )
        if counts:
            form_id, _ = counts.most_common(1)[0]
            result.most_common_form = self.get_form_info(form_id).name_key or f"form_{form_id}"
        return result

    # ── Persistence ───────────────────────────────

    def to_document(self) -> EvolutionDocument:
        with self._lock:
            requirements = [
                RequirementEntry(egg_id=k, required_level=v) for k, v in sorted(self._requirements.items())
            ]
            history = [
                EvolutionHistoryEntry(
                    egg_id=creature_id,
                    records=[
                        EvolutionRecordEntry(
                            form_id=r.form_id,
                            form_name=r.form_name,
                            stats_at_evolution=list(r.stats_at_evolution),
                            evolved_at=r.evolved_at,
                            session_id=r.session_id,
                        )
                        for r in records
                    ],
                )
                for creature_id, records in sorted(self._history.items())
            ]
            stages = [StageEntry(egg_id=k, stage=v) for k, v in sorted(self._stages.items())]
        return EvolutionDocument(
            requirements=requirements, history=history, stages=stages, save_time=self._clock(),
        )

    def load_document(self, document: Optional[EvolutionDocument]) -> None:
        requirements: Dict[int, int] = {}
        history: Dict[int, List[EvolutionRecord]] = {}
        stages: Dict[int, int] = {}
        if document is not None:
            requirements = {e.egg_id: e.required_level for e in document.requirements}
            cap = self._config.evolution_history_cap
            for entry in document.history:
                records = [
                    EvolutionRecord(
                        r.form_id, r.form_name, stat_values(r.stats_at_evolution), r.evolved_at, r.session_id,
                    )
                    for r in entry.records
                ]
                history[entry.egg_id] = records[-cap:] if cap > 0 else []
            stages = {e.egg_id: e.stage for e in document.stages}
        with self._lock:
            self._requirements = requirements
            self._history = history
            self._stages = stages

    async def save(self, store: "JsonStore") -> bool:
        document = self.to_document()
        try:
            await store.awrite(EVOLUTION_FILE, document)
        except OSError as e:
            logger.error("Failed to save evolution data: %s", e)
            return False
        logger.info("Evolution data saved")
        return True

    async def load(self, store: "JsonStore") -> bool:
        try:
            document = await store.aread(EVOLUTION_FILE, EvolutionDocument)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error("Failed to load evolution data, using defaults: %s", e)
            self.load_document(None)
            return False
        self.load_document(document)
        logger.info("Evolution data loaded")
        return True
