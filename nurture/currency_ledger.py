"""Per-currency integer balances, rarity-scaled gains and running-game rewards."""

import json
import logging
import threading
from typing import TYPE_CHECKING, Dict, Optional

from pydantic import ValidationError

from nurture.documents import CURRENCY_FILE, CurrencyDocument, CurrencyEntry
from nurture.event_bus import EventBus
from nurture.rewards import RankRewardLookup, apply_percent_buff, floor_scaled, rank_for_score
from nurture.schemas import (
    ClearRank,
    Clock,
    CurrencyBalanceChanged,
    CurrencyGained,
    CurrencyRow,
    CurrencySpent,
    RewardResult,
    RunningRewardContext,
    unix_now,
)
from nurture.tables import EconomyTables, normalize_type

if TYPE_CHECKING:
    from nurture.collection import CollectionRegistry
    from nurture.store import JsonStore

logger = logging.getLogger(__name__)

DEFAULT_REWARD_TYPE = "blue"
RUNNING_GAME_SOURCE = "running_game"


class CurrencyLedger:
    """Owns every currency balance.  Balances never go below zero.

    Gains are scaled by the currency's rarity and floored.  Running-game
    rewards are additionally buffed by the collection registry, which is
    attached after construction with ``set_buff_source``.
    """

    def __init__(
        self,
        tables: EconomyTables,
        bus: EventBus,
        reward_lookup: Optional[RankRewardLookup] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._tables = tables
        self._bus = bus
        self._reward_lookup = reward_lookup or tables.reward_for_rank
        self._clock = clock or unix_now
        self._buff_source: Optional["CollectionRegistry"] = None
        self._balances: Dict[int, int] = {}
        self._lock = threading.RLock()
        self._reset_balances()

    def _reset_balances(self) -> None:
        self._balances = {row.id: 0 for row in self._tables.currencies}

    def set_buff_source(self, source: Optional["CollectionRegistry"]) -> None:
        self._buff_source = source

    # ── Queries ───────────────────────────────────

    def get_amount(self, currency_id: int) -> int:
        with self._lock:
            return self._balances.get(currency_id, 0)

    def has_enough(self, currency_id: int, amount: int) -> bool:
        return self.get_amount(currency_id) >= amount

    def get_all_amounts(self) -> Dict[int, int]:
        with self._lock:
            return dict(self._balances)

    def get_currency_info(self, currency_id: int) -> Optional[CurrencyRow]:
        return self._tables.currency(currency_id)

    @property
    def common_currency_id(self) -> Optional[int]:
        return self._tables.common_currency_id

    def special_currency_id(self, creature_type: str) -> Optional[int]:
        return self._tables.special_currency_id(creature_type)

    def get_common_amount(self) -> int:
        cid = self.common_currency_id
        return self.get_amount(cid) if cid is not None else 0

    def get_special_amount(self, creature_type: str) -> int:
        sid = self.special_currency_id(creature_type)
        return self.get_amount(sid) if sid is not None else 0

    # ── Mutations ─────────────────────────────────

    def add(self, currency_id: int, base_amount: int, source: str = "", creature_id: int = -1) -> int:
        """Credit ``floor(base_amount * rarity)`` and return the credited amount."""
        if base_amount <= 0:
            logger.warning("Ignoring non-positive gain %d for currency %d", base_amount, currency_id)
            return 0
        row = self._tables.currency(currency_id)
        if row is None:
            logger.warning("Ignoring gain for unknown currency %d", currency_id)
            return 0
        actual = floor_scaled(base_amount, row.rarity)
        if actual <= 0:
            return 0
        with self._lock:
            old = self._balances.get(currency_id, 0)
            new = old + actual
            self._balances[currency_id] = new
            logger.debug("Currency %d +%d (%s): %d -> %d", currency_id, actual, source, old, new)
            self._bus.publish(CurrencyGained(currency_id, actual, source, creature_id))
            self._bus.publish(CurrencyBalanceChanged(currency_id, old, new, actual))
        return actual

    def spend(self, currency_id: int, amount: int, purpose: str = "", creature_id: int = -1) -> bool:
        if amount <= 0:
            logger.warning("Rejecting non-positive spend %d for currency %d", amount, currency_id)
            return False
        with self._lock:
            old = self._balances.get(currency_id, 0)
            if old < amount:
                logger.warning(
                    "Insufficient currency %d for %s: have %d, need %d",
                    currency_id, purpose, old, amount,
                )
                return False
            new = old - amount
            self._balances[currency_id] = new
            logger.debug("Currency %d -%d (%s): %d -> %d", currency_id, amount, purpose, old, new)
            self._bus.publish(CurrencySpent(currency_id, amount, purpose, creature_id))
            self._bus.publish(CurrencyBalanceChanged(currency_id, old, new, -amount))
        return True

    def can_afford(self, cost_common: int, cost_special: int, creature_type: str) -> bool:
        """Check both pools independently; never mutates."""
        with self._lock:
            if cost_common > 0:
                cid = self.common_currency_id
                if cid is None or self._balances.get(cid, 0) < cost_common:
                    return False
            if cost_special > 0:
                sid = self.special_currency_id(creature_type)
                if sid is None or self._balances.get(sid, 0) < cost_special:
                    return False
            return True

    def spend_for_cost(
        self,
        cost_common: int,
        cost_special: int,
        creature_type: str,
        creature_id: int = -1,
        purpose: str = "growth_action",
        atomic: bool = True,
    ) -> bool:
        """Debit a two-pool cost, common first, then special.

        With ``atomic=True`` both pools are validated and debited under the
        ledger lock before any event is published, so the call either debits
        both or neither.  Handlers of the resulting events see both debits.

        With ``atomic=False`` the pools are debited one after the other and a
        failed special debit does **not** refund the common debit that
        preceded it.  Callers using this mode must call ``can_afford`` first.
        """
        with self._lock:
            if atomic:
                return self._debit_both(cost_common, cost_special, creature_type, creature_id, purpose)

            if cost_common > 0:
                cid = self.common_currency_id
                if cid is None or not self.spend(cid, cost_common, purpose, creature_id):
                    return False

            if cost_special > 0:
                sid = self.special_currency_id(creature_type)
                if sid is None or not self.spend(sid, cost_special, purpose, creature_id):
                    if cost_common > 0:
                        logger.warning(
                            "Special debit failed after common debit of %d; common not refunded",
                            cost_common,
                        )
                    return False
            return True

    def _debit_both(
        self, cost_common: int, cost_special: int, creature_type: str, creature_id: int, purpose: str,
    ) -> bool:
        if not self.can_afford(cost_common, cost_special, creature_type):
            logger.warning(
                "Cannot afford cost (common=%d, special=%d, type=%s)",
                cost_common, cost_special, creature_type,
            )
            return False
        debits = []
        if cost_common > 0:
            debits.append((self.common_currency_id, cost_common))
        if cost_special > 0:
            debits.append((self.special_currency_id(creature_type), cost_special))

        changes = []
        for currency_id, amount in debits:
            old = self._balances.get(currency_id, 0)
            self._balances[currency_id] = old - amount
            changes.append(CurrencyBalanceChanged(currency_id, old, old - amount, -amount))
            logger.debug("Currency %d -%d (%s): %d -> %d", currency_id, amount, purpose, old, old - amount)

        for (currency_id, amount), changed in zip(debits, changes):
            self._bus.publish(CurrencySpent(currency_id, amount, purpose, creature_id))
            self._bus.publish(changed)
        return True

    # ── Running-game rewards ──────────────────────

    def process_running_reward(self, context: RunningRewardContext) -> RewardResult:
        """Pay the score as common currency and the rank reward as special currency.

        A context without a rank is ranked from its score.
        """
        result = RewardResult()
        if not (context.cleared and context.score > 0):
            return result

        if context.rank is None:
            rank = rank_for_score(context.score)
        else:
            rank = ClearRank(context.rank)
        creature_type = normalize_type(context.creature_type) or DEFAULT_REWARD_TYPE
        base_common = max(0, context.score)
        base_special = max(0, int(self._reward_lookup(rank)))

        common_pct = 0.0
        special_pct = 0.0
        if self._buff_source is not None:
            common_pct = self._buff_source.common_currency_buff_percent()
            special_pct = self._buff_source.special_currency_buff_percent(creature_type)

        cid = self.common_currency_id
        if base_common > 0 and cid is not None:
            amount = apply_percent_buff(base_common, common_pct)
            result.common_gained = self.add(cid, amount, RUNNING_GAME_SOURCE, context.creature_id)
            result.sources.append(f"score:{base_common}")
            if common_pct:
                result.sources.append(f"common_buff:{common_pct:g}%")

        sid = self.special_currency_id(creature_type)
        if base_special > 0 and sid is not None:
            amount = apply_percent_buff(base_special, special_pct)
            result.special_gained = self.add(sid, amount, RUNNING_GAME_SOURCE, context.creature_id)
            result.sources.append(f"rank:{rank.name}")
            if special_pct:
                result.sources.append(f"special_buff:{special_pct:g}%")
        elif base_special > 0:
            logger.warning("No special currency for creature type %r", creature_type)

        logger.info(
            "Running reward for creature %d: common=%d special=%d",
            context.creature_id, result.common_gained, result.special_gained,
        )
        return result

    # ── Persistence ───────────────────────────────

    def to_document(self) -> CurrencyDocument:
        with self._lock:
            entries = [CurrencyEntry(id=k, amount=v) for k, v in sorted(self._balances.items())]
        return CurrencyDocument(currency_amounts=entries, save_time=self._clock())

    def load_document(self, document: Optional[CurrencyDocument]) -> None:
        """Replace all balances with *document*; None restores the defaults."""
        with self._lock:
            self._reset_balances()
            if document is None:
                return
            for entry in document.currency_amounts:
                if self._tables.currency(entry.id) is None:
                    logger.warning("Dropping saved balance for unknown currency %d", entry.id)
                    continue
                self._balances[entry.id] = entry.amount

    async def save(self, store: "JsonStore") -> bool:
        document = self.to_document()
        try:
            await store.awrite(CURRENCY_FILE, document)
        except OSError as e:
            logger.error("Failed to save currency data: %s", e)
            return False
        logger.info("Currency data saved")
        return True

    async def load(self, store: "JsonStore") -> bool:
        try:
            document = await store.aread(CURRENCY_FILE, CurrencyDocument)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error("Failed to load currency data, using defaults: %s", e)
            self.load_document(None)
            return False
        self.load_document(document)
        logger.info("Currency data loaded")
        return True
