"""Shared fixtures: small in-memory tables and wired services."""

import pytest

from nurture.collection import CollectionRegistry
from nurture.currency_ledger import CurrencyLedger
from nurture.event_bus import EventBus
from nurture.evolution import EvolutionService
from nurture.growth_actions import GrowthActionService
from nurture.schemas import (
    BuffType,
    ClearRank,
    CreatureRow,
    CurrencyBalanceChanged,
    CurrencyGained,
    CurrencyRow,
    CurrencySpent,
    DuplicateFormProcessed,
    EconomyConfig,
    EvolutionAttempted,
    EvolutionCompleted,
    EvolutionFailed,
    EvolutionForm,
    EvolutionRuleRow,
    FormProbability,
    FormRegistered,
    GrowthActionDefinition,
    GrowthActionPerformed,
    LevelChanged,
    StatChanged,
    StatDelta,
    StatType,
)
from nurture.tables import EconomyTables

ALL_EVENTS = (
    CurrencyGained,
    CurrencySpent,
    CurrencyBalanceChanged,
    StatChanged,
    LevelChanged,
    GrowthActionPerformed,
    EvolutionAttempted,
    EvolutionCompleted,
    EvolutionFailed,
    FormRegistered,
    DuplicateFormProcessed,
)

COMMON = 1
BLUE = 2
RED = 3
WHITE = 4


def make_tables() -> EconomyTables:
    return EconomyTables(
        currencies=[
            CurrencyRow(COMMON, "common", 1.0),
            CurrencyRow(BLUE, "blue", 1.0),
            CurrencyRow(RED, "red", 1.4),
            CurrencyRow(WHITE, "white", 1.15),
        ],
        creatures=[
            CreatureRow(1, "blue", "egg_blue"),
            CreatureRow(2, "red", "egg_red"),
            CreatureRow(3, "white", "egg_white"),
        ],
        growth_actions=[
            GrowthActionDefinition(
                id=1, name_key="sun", cost_common=10,
                stat_deltas=(StatDelta(StatType.PURITY, 2),),
            ),
            GrowthActionDefinition(
                id=2, name_key="moon", cost_common=10, cost_special=5,
                stat_deltas=(StatDelta(StatType.CHAOS, 2), StatDelta(StatType.LOVE, -1)),
                exclusive_with=frozenset({1}),
            ),
            GrowthActionDefinition(
                id=3, name_key="climb",
                stat_deltas=(StatDelta(StatType.COURAGE, 3),),
                cooldown_turns=1,
            ),
            GrowthActionDefinition(
                id=4, name_key="gaze", cost_common=5,
                stat_deltas=(StatDelta(StatType.WISDOM, 1),),
                min_level=3, max_level=5,
            ),
            GrowthActionDefinition(id=5, name_key="ghost", weight=0.0),
        ],
        evolution_rules=[
            EvolutionRuleRow(1, "blue", StatType.COURAGE, 1,
                             (FormProbability(101, 60), FormProbability(102, 40))),
            EvolutionRuleRow(2, "blue", StatType.COURAGE, 10, (FormProbability(103, 100),)),
            EvolutionRuleRow(3, "blue", StatType.PURITY, 1,
                             (FormProbability(101, 0), FormProbability(102, 50), FormProbability(103, 50))),
            EvolutionRuleRow(4, "red", StatType.COURAGE, 1, (FormProbability(201, 100),)),
        ],
        evolved_forms=[
            EvolutionForm(101, "blue_knight", "blue", 1, BuffType.COMMON_CURRENCY_GAIN, 10.0,
                          duplicate_reward_amount=50),
            EvolutionForm(102, "blue_sage", "blue", 2, BuffType.COMMON_CURRENCY_GAIN, 5.0,
                          duplicate_reward_amount=40),
            EvolutionForm(103, "blue_spirit", "blue", 2, BuffType.DUPLICATE_REWARD_BONUS, 10.0,
                          duplicate_reward_amount=30),
            EvolutionForm(201, "red_knight", "red", 1, BuffType.SPECIAL_CURRENCY_GAIN, 20.0,
                          buff_target_type="blue", duplicate_reward_amount=60),
            EvolutionForm(202, "red_sage", "red", 2, BuffType.SPECIAL_CURRENCY_GAIN, 10.0,
                          duplicate_reward_amount=40),
        ],
        rank_rewards={ClearRank.F: 50, ClearRank.A: 300, ClearRank.S: 400},
    )


class FakeClock:
    def __init__(self, now: int = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class Recorder:
    """Collects every event published on a bus, in order."""

    def __init__(self, bus: EventBus) -> None:
        self.events = []
        for event_type in ALL_EVENTS:
            bus.subscribe(event_type, self.events.append)

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]

    def types(self):
        return [type(e) for e in self.events]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def tables():
    return make_tables()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return EconomyConfig(random_seed=7)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    return Recorder(bus)


@pytest.fixture
def ledger(tables, bus, clock):
    return CurrencyLedger(tables, bus, clock=clock)


@pytest.fixture
def collection(tables, bus, ledger, config, clock):
    registry = CollectionRegistry(tables, bus, ledger, config, clock)
    ledger.set_buff_source(registry)
    return registry


@pytest.fixture
def growth(tables, bus, ledger, config, clock):
    return GrowthActionService(tables, bus, ledger, config, clock)


@pytest.fixture
def evolution(tables, bus, growth, collection, config, clock):
    return EvolutionService(tables, bus, growth, collection, config, clock)
