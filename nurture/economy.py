"""EggEconomy -- facade wiring the economy services together."""

import asyncio
import logging
from typing import Dict, Optional

from nurture.collection import CollectionRegistry
from nurture.currency_ledger import CurrencyLedger
from nurture.event_bus import EventBus
from nurture.evolution import EvolutionService
from nurture.growth_actions import GrowthActionService
from nurture.rewards import RankRewardLookup
from nurture.schemas import Clock, EconomyConfig, EvolutionResult, unix_now
from nurture.store import JsonStore
from nurture.tables import EconomyTables

logger = logging.getLogger(__name__)


class EggEconomy:
    """Owns one instance of every service and the bus they share.

    Services are built leaves first; the ledger receives the collection
    registry as its buff source once both exist.
    """

    def __init__(
        self,
        config: Optional[EconomyConfig] = None,
        tables: Optional[EconomyTables] = None,
        store: Optional[JsonStore] = None,
        clock: Optional[Clock] = None,
        reward_lookup: Optional[RankRewardLookup] = None,
    ) -> None:
        self._config = config or EconomyConfig()
        if tables is None:
            if self._config.tables_path:
                tables = EconomyTables.load(self._config.tables_path)
            else:
                tables = EconomyTables.default()
        self._tables = tables
        self._store = store or JsonStore(self._config.data_dir)
        clock = clock or unix_now

        self._bus = EventBus()
        self._ledger = CurrencyLedger(tables, self._bus, reward_lookup, clock)
        self._collection = CollectionRegistry(tables, self._bus, self._ledger, self._config, clock)
        self._ledger.set_buff_source(self._collection)
        self._growth = GrowthActionService(tables, self._bus, self._ledger, self._config, clock)
        self._evolution = EvolutionService(
            tables, self._bus, self._growth, self._collection, self._config, clock,
        )

    # ── Properties ────────────────────────────────

    @property
    def config(self) -> EconomyConfig:
        return self._config

    @property
    def tables(self) -> EconomyTables:
        return self._tables

    @property
    def store(self) -> JsonStore:
        return self._store

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def ledger(self) -> CurrencyLedger:
        return self._ledger

    @property
    def collection(self) -> CollectionRegistry:
        return self._collection

    @property
    def growth(self) -> GrowthActionService:
        return self._growth

    @property
    def evolution(self) -> EvolutionService:
        return self._evolution

    # ── Operations ────────────────────────────────

    def evolve(self, creature_id: int) -> EvolutionResult:
        """Attempt evolution with the creature's current level and stats.

        The creature is not reset; call ``evolution.reset_after_evolution``
        after presenting the result.
        """
        return self._evolution.attempt_evolution(
            creature_id,
            self._growth.get_level(creature_id),
            self._growth.get_stats(creature_id),
        )

    async def load_all(self) -> Dict[str, bool]:
        """Load every document.  The collection loads last so its buffs are current."""
        results = {
            "currency": await self._ledger.load(self._store),
            "growth": await self._growth.load(self._store),
            "evolution": await self._evolution.load(self._store),
            "collection": await self._collection.load(self._store),
        }
        logger.info("Economy loaded from %s: %s", self._store.data_dir, results)
        return results

    async def save_all(self) -> Dict[str, bool]:
        names = ("currency", "growth", "evolution", "collection")
        outcomes = await asyncio.gather(
            self._ledger.save(self._store),
            self._growth.save(self._store),
            self._evolution.save(self._store),
            self._collection.save(self._store),
        )
        results = dict(zip(names, outcomes))
        logger.info("Economy saved to %s: %s", self._store.data_dir, results)
        return results
