"""Growth orchestration: validate and execute growth actions against creatures.

The service owns every ``Creature`` and its bounded action history.  A
successful action spends its cost through the ledger, applies the stat
deltas (clamped at zero), advances the level by one and records the action.
"""

import dataclasses
import json
import logging
import threading
from typing import TYPE_CHECKING, Dict, List, Optional

import numpy as np
from pydantic import ValidationError

from nurture import action_selector
from nurture.currency_ledger import CurrencyLedger
from nurture.documents import (
    GROWTH_FILE,
    ActionHistoryEntry,
    ActionRecordEntry,
    CreatureEntry,
    GrowthDocument,
)
from nurture.event_bus import EventBus
from nurture.schemas import (
    ActionRecord,
    Clock,
    Creature,
    EconomyConfig,
    GrowthActionDefinition,
    GrowthActionPerformed,
    GrowthActionResult,
    LevelChanged,
    StatChanged,
    StatType,
    empty_stats,
    unix_now,
)
from nurture.tables import EconomyTables, normalize_type

if TYPE_CHECKING:
    from nurture.store import JsonStore

logger = logging.getLogger(__name__)

_SEED_BOUND = 2**31 - 1


class GrowthActionService:
    """Creature state, growth actions and action history.

    Parameters
    ----------
    tables:
        Static tables supplying action definitions and creature types.
    bus:
        Event channel for stat, level and action events.
    ledger:
        Pays for actions.
    config:
        History caps, cooldown window and the seed for drawn selections.
    clock:
        Returns Unix seconds; used for history timestamps and cooldowns.
    """

    def __init__(
        self,
        tables: EconomyTables,
        bus: EventBus,
        ledger: CurrencyLedger,
        config: Optional[EconomyConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._tables = tables
        self._bus = bus
        self._ledger = ledger
        self._config = config or EconomyConfig()
        self._clock = clock or unix_now
        self._rng = np.random.default_rng(self._config.random_seed)
        self._creatures: Dict[int, Creature] = {}
        self._history: Dict[int, List[ActionRecord]] = {}
        self._session_id = self._clock()
        self._lock = threading.RLock()

    @property
    def session_id(self) -> int:
        return self._session_id

    # ── Creatures ─────────────────────────────────

    def create_creature(self, creature_id: int, type_tag: Optional[str] = None) -> Optional[Creature]:
        """Create (or recreate) a creature at level 1 with zeroed stats.

        The type comes from the creature table when *type_tag* is omitted;
        an id with no table row and no explicit type is rejected.
        """
        if type_tag is None:
            row = self._tables.creature(creature_id)
            if row is None:
                logger.error("No creature row for id %d", creature_id)
                return None
            type_tag = row.type_tag
        creature = Creature(creature_id=creature_id, type_tag=normalize_type(type_tag))
        with self._lock:
            self._creatures[creature_id] = creature
            self._history[creature_id] = []
        logger.info("Created creature %d (%s)", creature_id, creature.type_tag)
        return dataclasses.replace(creature, stats=dict(creature.stats))

    def ensure_creature(self, creature_id: int, type_tag: Optional[str] = None) -> Optional[Creature]:
        with self._lock:
            if creature_id in self._creatures:
                return self.get_creature(creature_id)
            return self.create_creature(creature_id, type_tag)

    def remove_creature(self, creature_id: int) -> bool:
        with self._lock:
            self._history.pop(creature_id, None)
            removed = self._creatures.pop(creature_id, None) is not None
        if removed:
            logger.info("Removed creature %d", creature_id)
        return removed

    def has_creature(self, creature_id: int) -> bool:
        with self._lock:
            return creature_id in self._creatures

    def creature_ids(self) -> List[int]:
        with self._lock:
            return list(self._creatures)

    def get_creature(self, creature_id: int) -> Optional[Creature]:
        """A copy of the creature's state, or None."""
        with self._lock:
            creature = self._creatures.get(creature_id)
            if creature is None:
                return None
            return dataclasses.replace(creature, stats=dict(creature.stats))

    def get_creature_type(self, creature_id: int) -> str:
        with self._lock:
            creature = self._creatures.get(creature_id)
            if creature is not None:
                return creature.type_tag
        row = self._tables.creature(creature_id)
        return row.type_tag if row is not None else ""

    # ── Stats & level ─────────────────────────────

    def get_stats(self, creature_id: int) -> Dict[StatType, int]:
        with self._lock:
            creature = self._creatures.get(creature_id)
            return dict(creature.stats) if creature is not None else empty_stats()

    def get_stat(self, creature_id: int, stat: StatType) -> int:
        return self.get_stats(creature_id).get(stat, 0)

    def get_level(self, creature_id: int) -> int:
        with self._lock:
            creature = self._creatures.get(creature_id)
            return creature.level if creature is not None else 1

    def set_level(self, creature_id: int, level: int, reason: str = "manual_set") -> bool:
        with self._lock:
            creature = self._creatures.get(creature_id)
            if creature is None:
                logger.warning("set_level: unknown creature %d", creature_id)
                return False
            old = creature.level
            creature.level = max(1, level)
            self._bus.publish(LevelChanged(creature_id, old, creature.level, creature.level - old, reason))
            return True

    def increase_stat(self, creature_id: int, stat: StatType, amount: int) -> bool:
        """Add *amount* (may be negative) to a stat, clamping at zero."""
        with self._lock:
            creature = self._creatures.get(creature_id)
            if creature is None:
                logger.warning("increase_stat: unknown creature %d", creature_id)
                return False
            self._apply_delta(creature, stat, amount)
            return True

    def set_stat(self, creature_id: int, stat: StatType, value: int) -> bool:
        # No event: used for restores and tooling.
        with self._lock:
            creature = self._creatures.get(creature_id)
            if creature is None:
                return False
            creature.stats[stat] = max(0, value)
            return True

    def _apply_delta(self, creature: Creature, stat: StatType, amount: int) -> int:
        old = creature.stats.get(stat, 0)
        new = max(0, old + amount)
        creature.stats[stat] = new
        logger.debug("Creature %d %s: %d -> %d", creature.creature_id, stat.name, old, new)
        self._bus.publish(StatChanged(creature.creature_id, stat, old, new, amount))
        return new - old

    # ── Actions ───────────────────────────────────

    def find_action(self, action_id: int) -> Optional[GrowthActionDefinition]:
        return self._tables.action(action_id)

    def can_perform_action(self, creature_id: int, action_id: int) -> bool:
        with self._lock:
            creature = self._creatures.get(creature_id)
            action = self.find_action(action_id)
            if creature is None or action is None:
                return False
            if not (action.min_level <= creature.level <= action.max_level):
                return False
            return self._ledger.can_afford(action.cost_common, action.cost_special, creature.type_tag)

    def perform_action(self, creature_id: int, action_id: int) -> GrowthActionResult:
        """Validate, pay for and apply one growth action.

        Checks run in order: creature exists, action exists, level in range,
        cost affordable, cost spent.  The first failing check returns a
        failed result and nothing is mutated.
        """
        with self._lock:
            creature = self._creatures.get(creature_id)
            if creature is None:
                return self._fail(f"Unknown creature {creature_id}")

            action = self.find_action(action_id)
            if action is None:
                return self._fail(f"Unknown growth action {action_id}")

            if not (action.min_level <= creature.level <= action.max_level):
                return self._fail(
                    f"Level {creature.level} outside {action.min_level}..{action.max_level}",
                    action,
                )

            if not self._ledger.can_afford(action.cost_common, action.cost_special, creature.type_tag):
                return self._fail("Insufficient currency", action)

            if not self._ledger.spend_for_cost(
                action.cost_common, action.cost_special, creature.type_tag, creature_id,
            ):
                return self._fail("Currency spend failed", action)

            changes = empty_stats()
            for delta in action.stat_deltas:
                changes[delta.stat] += self._apply_delta(creature, delta.stat, delta.amount)

            old_level = creature.level
            creature.level += 1
            self._bus.publish(LevelChanged(creature_id, old_level, creature.level, 1, "growth_action"))

            self._record(creature_id, action)
            self._bus.publish(GrowthActionPerformed(
                creature_id, action.id, action.cost_common, action.cost_special, action.name_key,
            ))
            logger.debug("Creature %d performed action %d, level %d", creature_id, action.id, creature.level)
            return GrowthActionResult(
                success=True, stat_changes=changes, new_level=creature.level, action=action,
            )

    @staticmethod
    def _fail(message: str, action: Optional[GrowthActionDefinition] = None) -> GrowthActionResult:
        logger.warning("Growth action rejected: %s", message)
        return GrowthActionResult(success=False, error_message=message, action=action)

    def _record(self, creature_id: int, action: GrowthActionDefinition) -> None:
        history = self._history.setdefault(creature_id, [])
        history.append(ActionRecord(action.id, action.name_key, self._clock(), self._session_id))
        overflow = len(history) - self._config.action_history_cap
        if overflow > 0:
            del history[:overflow]

    def get_action_history(self, creature_id: int) -> List[ActionRecord]:
        with self._lock:
            return list(self._history.get(creature_id, ()))

    def get_recent_action_ids(self, creature_id: int) -> List[int]:
        """Ids of recent actions that are still cooling down.

        Only the last ``recent_history_window`` records are considered.  An
        action cools down for ``cooldown_turns * cooldown_unit_seconds``.
        """
        now = self._clock()
        window = self._config.recent_history_window
        with self._lock:
            recent = self._history.get(creature_id, [])[-window:] if window > 0 else []
        ids: List[int] = []
        for record in recent:
            action = self.find_action(record.action_id)
            if action is None or action.cooldown_turns <= 0:
                continue
            if now - record.timestamp < action.cooldown_turns * self._config.cooldown_unit_seconds:
                ids.append(record.action_id)
        return ids

    def get_available_actions(
        self,
        creature_id: int,
        level: int,
        count: int = 5,
        seed: Optional[int] = None,
    ) -> List[GrowthActionDefinition]:
        if not self.has_creature(creature_id):
            return []
        if seed is None:
            with self._lock:
                seed = int(self._rng.integers(0, _SEED_BOUND))
        return action_selector.pick(
            self._tables.growth_actions, level, count,
            self.get_recent_action_ids(creature_id), seed,
        )

    def reset_stats(self, creature_id: int) -> bool:
        """Zero the stats, return to level 1 and clear the action history."""
        with self._lock:
            creature = self._creatures.get(creature_id)
            if creature is None:
                logger.warning("reset_stats: unknown creature %d", creature_id)
                return False
            old_level = creature.level
            creature.stats = empty_stats()
            creature.level = 1
            self._history[creature_id] = []
            self._bus.publish(LevelChanged(creature_id, old_level, 1, 0, "evolution_reset"))
        logger.info("Reset creature %d", creature_id)
        return True

    # ── Persistence ───────────────────────────────

    def to_document(self) -> GrowthDocument:
        with self._lock:
            creatures = [
                CreatureEntry(
                    egg_id=c.creature_id,
                    egg_type=c.type_tag,
                    level=c.level,
                    **{stat.name.lower(): value for stat, value in c.stats.items()},
                )
                for c in self._creatures.values()
            ]
            history = [
                ActionHistoryEntry(
                    egg_id=creature_id,
                    records=[
                        ActionRecordEntry(
                            action_id=r.action_id,
                            action_name=r.action_name,
                            timestamp=r.timestamp,
                            session_id=r.session_id,
                        )
                        for r in records
                    ],
                )
                for creature_id, records in self._history.items()
            ]
            session_id = self._session_id
        return GrowthDocument(
            creatures=creatures,
            action_history=history,
            current_session_id=session_id,
            save_time=self._clock(),
        )

    def load_document(self, document: Optional[GrowthDocument]) -> None:
        """Replace all creatures and histories; None restores an empty state."""
        creatures: Dict[int, Creature] = {}
        history: Dict[int, List[ActionRecord]] = {}
        session_id = self._clock()
        if document is not None:
            for entry in document.creatures:
                type_tag = entry.egg_type
                if not type_tag:
                    row = self._tables.creature(entry.egg_id)
                    type_tag = row.type_tag if row is not None else ""
                stats = {stat: getattr(entry, stat.name.lower()) for stat in StatType}
                creatures[entry.egg_id] = Creature(
                    entry.egg_id, normalize_type(type_tag), entry.level, stats,
                )
            cap = self._config.action_history_cap
            for entry in document.action_history:
                records = [
                    ActionRecord(r.action_id, r.action_name, r.timestamp, r.session_id)
                    for r in entry.records
                ]
                history[entry.egg_id] = records[-cap:] if cap > 0 else []
            for creature_id in creatures:
                history.setdefault(creature_id, [])
            session_id = document.current_session_id or session_id
        with self._lock:
            self._creatures = creatures
            self._history = history
            self._session_id = session_id

    async def save(self, store: "JsonStore") -> bool:
        document = self.to_document()
        try:
            await store.awrite(GROWTH_FILE, document)
        except OSError as e:
            logger.error("Failed to save growth data: %s", e)
            return False
        logger.info("Growth data saved (%d creatures)", len(document.creatures))
        return True

    async def load(self, store: "JsonStore") -> bool:
        try:
            document = await store.aread(GROWTH_FILE, GrowthDocument)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error("Failed to load growth data, using defaults: %s", e)
            self.load_document(None)
            return False
        self.load_document(document)
        logger.info("Growth data loaded (%d creatures)", len(self._creatures))
        return True
