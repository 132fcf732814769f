"""Tests for the currency ledger: gains, spends, two-pool costs and rewards."""

import asyncio

import numpy as np
import pytest

from conftest import BLUE, COMMON, RED, WHITE
from nurture.schemas import (
    ClearRank,
    CurrencyBalanceChanged,
    CurrencyGained,
    CurrencySpent,
    RunningRewardContext,
)
from nurture.store import JsonStore


# ── Add / Spend ──────────────────────────────────


class TestAdd:
    def test_rarity_multiplier_applied(self, ledger):
        assert ledger.add(RED, 100) == 140
        assert ledger.get_amount(RED) == 140

    def test_rarity_result_is_floored_without_float_noise(self, ledger):
        assert ledger.add(WHITE, 100) == 115
        assert ledger.add(WHITE, 3) == 3
        assert ledger.get_amount(WHITE) == 118

    def test_non_positive_amount_is_noop(self, ledger, recorder):
        assert ledger.add(COMMON, 0) == 0
        assert ledger.add(COMMON, -5) == 0
        assert ledger.get_amount(COMMON) == 0
        assert recorder.events == []

    def test_unknown_currency_is_noop(self, ledger, recorder):
        assert ledger.add(99, 10) == 0
        assert ledger.get_amount(99) == 0
        assert recorder.events == []

    def test_publishes_gained_then_balance_changed(self, ledger, recorder):
        ledger.add(COMMON, 30, source="quest", creature_id=4)
        ledger.add(COMMON, 20)
        assert recorder.types() == [
            CurrencyGained, CurrencyBalanceChanged, CurrencyGained, CurrencyBalanceChanged,
        ]
        gained = recorder.events[0]
        assert (gained.amount, gained.source, gained.creature_id) == (30, "quest", 4)
        changed = recorder.events[3]
        assert (changed.old_amount, changed.new_amount, changed.change_amount) == (30, 50, 20)


class TestSpend:
    def test_spend_success(self, ledger, recorder):
        ledger.add(COMMON, 50)
        recorder.clear()
        assert ledger.spend(COMMON, 20, purpose="shop") is True
        assert ledger.get_amount(COMMON) == 30
        assert recorder.types() == [CurrencySpent, CurrencyBalanceChanged]
        assert recorder.events[1].change_amount == -20

    def test_spend_more_than_balance_fails_unchanged(self, ledger, recorder):
        ledger.add(COMMON, 10)
        recorder.clear()
        assert ledger.spend(COMMON, 11) is False
        assert ledger.get_amount(COMMON) == 10
        assert recorder.events == []

    def test_spend_exact_balance(self, ledger):
        ledger.add(COMMON, 10)
        assert ledger.spend(COMMON, 10) is True
        assert ledger.get_amount(COMMON) == 0

    def test_non_positive_spend_fails(self, ledger):
        ledger.add(COMMON, 10)
        assert ledger.spend(COMMON, 0) is False
        assert ledger.spend(COMMON, -3) is False
        assert ledger.get_amount(COMMON) == 10

    def test_spend_unknown_currency_fails(self, ledger):
        assert ledger.spend(99, 1) is False

    def test_balances_never_negative(self, ledger):
        rng = np.random.default_rng(3)
        ids = [COMMON, BLUE, RED, WHITE, 99]
        for _ in range(500):
            cid = ids[int(rng.integers(0, len(ids)))]
            amount = int(rng.integers(-20, 60))
            if rng.random() < 0.5:
                ledger.add(cid, amount)
            else:
                ledger.spend(cid, amount)
            assert all(v >= 0 for v in ledger.get_all_amounts().values())


# ── Two-pool costs ───────────────────────────────


class TestTwoPoolCost:
    @pytest.fixture
    def funded(self, ledger):
        ledger.add(COMMON, 50)
        ledger.add(BLUE, 10)
        return ledger

    def test_can_afford_checks_both_pools(self, funded):
        assert funded.can_afford(50, 10, "blue") is True
        assert funded.can_afford(51, 0, "blue") is False
        assert funded.can_afford(50, 20, "blue") is False

    def test_special_cost_for_type_without_currency(self, funded):
        assert funded.can_afford(0, 1, "green") is False
        assert funded.can_afford(10, 0, "green") is True

    def test_can_afford_does_not_mutate(self, funded, recorder):
        funded.can_afford(50, 20, "blue")
        assert funded.get_amount(COMMON) == 50
        assert recorder.events == []

    def test_spend_for_cost_debits_both(self, funded):
        assert funded.spend_for_cost(30, 10, "Blue") is True
        assert funded.get_amount(COMMON) == 20
        assert funded.get_amount(BLUE) == 0

    def test_atomic_spend_rejects_without_debiting(self, funded, recorder):
        recorder.clear()
        assert funded.can_afford(50, 20, "blue") is False
        assert funded.spend_for_cost(50, 20, "blue") is False
        assert funded.get_amount(COMMON) == 50
        assert funded.get_amount(BLUE) == 10
        assert recorder.of_type(CurrencySpent) == []

    def test_atomic_spend_debits_both_before_handlers_run(self, funded, bus):
        seen = []

        def spend_blue_on_common(event):
            if event.currency_id == COMMON:
                seen.append((funded.get_amount(COMMON), funded.get_amount(BLUE)))
                funded.spend(BLUE, 5)

        bus.subscribe(CurrencySpent, spend_blue_on_common)
        assert funded.spend_for_cost(30, 10, "blue") is True
        assert seen == [(20, 0)]
        assert funded.get_amount(COMMON) == 20
        assert funded.get_amount(BLUE) == 0

    def test_atomic_spend_event_order(self, funded, recorder):
        recorder.clear()
        funded.spend_for_cost(30, 10, "blue")
        assert recorder.types() == [
            CurrencySpent, CurrencyBalanceChanged, CurrencySpent, CurrencyBalanceChanged,
        ]
        assert [e.currency_id for e in recorder.events] == [COMMON, COMMON, BLUE, BLUE]
        assert (recorder.events[3].old_amount, recorder.events[3].new_amount) == (10, 0)

    def test_legacy_sequential_spend_leaves_common_debited(self, funded):
        # Caller bypassed can_afford: common goes through, special fails, no refund.
        assert funded.spend_for_cost(50, 20, "blue", atomic=False) is False
        assert funded.get_amount(COMMON) == 0
        assert funded.get_amount(BLUE) == 10

    def test_legacy_mode_succeeds_when_affordable(self, funded):
        assert funded.spend_for_cost(10, 5, "blue", atomic=False) is True
        assert funded.get_amount(COMMON) == 40
        assert funded.get_amount(BLUE) == 5

    def test_zero_cost_always_succeeds(self, ledger, recorder):
        assert ledger.spend_for_cost(0, 0, "green") is True
        assert recorder.events == []


# ── Running-game rewards ─────────────────────────


class TestRunningReward:
    def test_not_cleared_pays_nothing(self, ledger):
        result = ledger.process_running_reward(
            RunningRewardContext(1, "blue", cleared=False, score=120, rank=ClearRank.A),
        )
        assert (result.common_gained, result.special_gained) == (0, 0)
        assert ledger.get_all_amounts()[COMMON] == 0

    def test_zero_score_pays_nothing(self, ledger):
        result = ledger.process_running_reward(
            RunningRewardContext(1, "blue", cleared=True, score=0, rank=ClearRank.S),
        )
        assert (result.common_gained, result.special_gained) == (0, 0)

    def test_pays_score_and_rank_reward(self, ledger):
        result = ledger.process_running_reward(
            RunningRewardContext(1, "blue", cleared=True, score=120, rank=ClearRank.A),
        )
        assert result.common_gained == 120
        assert result.special_gained == 300
        assert ledger.get_common_amount() == 120
        assert ledger.get_special_amount("blue") == 300
        assert result.sources

    def test_special_reward_uses_creature_rarity(self, ledger):
        result = ledger.process_running_reward(
            RunningRewardContext(2, "red", cleared=True, score=10, rank=ClearRank.A),
        )
        assert result.special_gained == 420
        assert ledger.get_amount(RED) == 420

    def test_blank_type_defaults_to_blue(self, ledger):
        ledger.process_running_reward(
            RunningRewardContext(1, "", cleared=True, score=10, rank=ClearRank.F),
        )
        assert ledger.get_amount(BLUE) == 50

    def test_rank_without_reward_pays_common_only(self, ledger):
        result = ledger.process_running_reward(
            RunningRewardContext(1, "blue", cleared=True, score=10, rank=ClearRank.SS),
        )
        assert result.common_gained == 10
        assert result.special_gained == 0

    def test_missing_rank_is_derived_from_score(self, ledger):
        result = ledger.process_running_reward(RunningRewardContext(1, "blue", cleared=True, score=170))
        assert result.common_gained == 170
        assert result.special_gained == 300
        assert "rank:A" in result.sources

    def test_plain_int_rank_is_accepted(self, ledger):
        result = ledger.process_running_reward(
            RunningRewardContext(1, "blue", cleared=True, score=10, rank=int(ClearRank.A)),
        )
        assert result.special_gained == 300
        assert "rank:A" in result.sources

    def test_collection_buffs_apply(self, ledger, collection):
        collection.register(101)  # common +10%
        collection.register(201)  # blue special +20%
        result = ledger.process_running_reward(
            RunningRewardContext(1, "blue", cleared=True, score=100, rank=ClearRank.A),
        )
        assert result.common_gained == 110
        assert result.special_gained == 360

    def test_reward_gain_events_carry_source(self, ledger, recorder):
        ledger.process_running_reward(
            RunningRewardContext(7, "blue", cleared=True, score=5, rank=ClearRank.F),
        )
        gains = recorder.of_type(CurrencyGained)
        assert [g.source for g in gains] == ["running_game", "running_game"]
        assert all(g.creature_id == 7 for g in gains)

    def test_custom_reward_lookup(self, tables, bus):
        from nurture.currency_ledger import CurrencyLedger

        ledger = CurrencyLedger(tables, bus, reward_lookup=lambda rank: 7)
        result = ledger.process_running_reward(
            RunningRewardContext(1, "blue", cleared=True, score=1, rank=ClearRank.F),
        )
        assert result.special_gained == 7


# ── Queries ──────────────────────────────────────


class TestQueries:
    def test_currency_ids(self, ledger):
        assert ledger.common_currency_id == COMMON
        assert ledger.special_currency_id("white") == WHITE
        assert ledger.special_currency_id("green") is None

    def test_all_amounts_is_a_copy(self, ledger):
        amounts = ledger.get_all_amounts()
        amounts[COMMON] = 999
        assert ledger.get_amount(COMMON) == 0
        assert set(amounts) == {COMMON, BLUE, RED, WHITE}

    def test_currency_info(self, ledger):
        assert ledger.get_currency_info(RED).rarity == pytest.approx(1.4)
        assert ledger.get_currency_info(99) is None

    def test_has_enough(self, ledger):
        ledger.add(COMMON, 5)
        assert ledger.has_enough(COMMON, 5)
        assert not ledger.has_enough(COMMON, 6)


# ── Persistence ──────────────────────────────────


class TestPersistence:
    def test_round_trip(self, ledger, tables, bus, clock, tmp_path):
        from nurture.currency_ledger import CurrencyLedger

        ledger.add(COMMON, 40)
        ledger.add(RED, 10)
        store = JsonStore(str(tmp_path))
        assert asyncio.run(ledger.save(store)) is True

        restored = CurrencyLedger(tables, bus, clock=clock)
        assert asyncio.run(restored.load(store)) is True
        assert restored.get_amount(COMMON) == 40
        assert restored.get_amount(RED) == 14

    def test_document_shape(self, ledger, clock, tmp_path):
        import json

        ledger.add(COMMON, 3)
        store = JsonStore(str(tmp_path))
        asyncio.run(ledger.save(store))
        raw = json.loads((tmp_path / "currency_data.json").read_text())
        assert raw["saveTime"] == clock.now
        assert {"id": COMMON, "amount": 3} in raw["currencyAmounts"]

    def test_missing_file_keeps_defaults(self, ledger, tmp_path):
        assert asyncio.run(ledger.load(JsonStore(str(tmp_path)))) is True
        assert ledger.get_amount(COMMON) == 0

    def test_corrupt_file_resets_to_defaults(self, ledger, tmp_path):
        ledger.add(COMMON, 40)
        (tmp_path / "currency_data.json").write_text("{not json")
        assert asyncio.run(ledger.load(JsonStore(str(tmp_path)))) is False
        assert ledger.get_amount(COMMON) == 0

    def test_negative_saved_balance_rejected(self, ledger, tmp_path):
        (tmp_path / "currency_data.json").write_text(
            '{"currencyAmounts": [{"id": 1, "amount": -5}], "saveTime": 0}'
        )
        assert asyncio.run(ledger.load(JsonStore(str(tmp_path)))) is False
        assert ledger.get_amount(COMMON) == 0

    def test_unknown_saved_currency_dropped(self, ledger, tmp_path):
        (tmp_path / "currency_data.json").write_text(
            '{"currencyAmounts": [{"id": 1, "amount": 5}, {"id": 42, "amount": 9}], "saveTime": 0}'
        )
        assert asyncio.run(ledger.load(JsonStore(str(tmp_path)))) is True
        assert ledger.get_amount(COMMON) == 5
        assert 42 not in ledger.get_all_amounts()
