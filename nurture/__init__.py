"""Nurture -- growth and evolution economy engine for RollingEgg."""

from nurture.schemas import (
    BuffType,
    ClearRank,
    EconomyConfig,
    EvolutionForm,
    EvolutionResult,
    GrowthActionDefinition,
    GrowthActionResult,
    RewardResult,
    RunningRewardContext,
    StatType,
)
from nurture.event_bus import EventBus
from nurture.tables import EconomyTables, TableError
from nurture.store import JsonStore
from nurture.currency_ledger import CurrencyLedger
from nurture.action_selector import pick
from nurture.growth_actions import GrowthActionService
from nurture.collection import CollectionRegistry
from nurture.evolution import EvolutionService
from nurture.economy import EggEconomy

__all__ = [
    "BuffType",
    "ClearRank",
    "EconomyConfig",
    "EvolutionForm",
    "EvolutionResult",
    "GrowthActionDefinition",
    "GrowthActionResult",
    "RewardResult",
    "RunningRewardContext",
    "StatType",
    "EventBus",
    "EconomyTables",
    "TableError",
    "JsonStore",
    "CurrencyLedger",
    "pick",
    "GrowthActionService",
    "CollectionRegistry",
    "EvolutionService",
    "EggEconomy",
]
