"""Registry of unlocked evolution forms and the economy buffs they grant.

Registered form ids only ever grow.  Buff accumulators are derived data:
they are rebuilt from the full registered set after every change and after
a load, never adjusted incrementally.
"""

import json
import logging
import threading
from typing import TYPE_CHECKING, Dict, List, Optional, Set

from pydantic import ValidationError

from nurture.currency_ledger import CurrencyLedger
from nurture.documents import COLLECTION_FILE, CollectionDocument
from nurture.event_bus import EventBus
from nurture.rewards import apply_percent_buff
from nurture.schemas import (
    BuffType,
    Clock,
    DuplicateFormProcessed,
    EconomyConfig,
    EvolutionForm,
    FormRegistered,
    Registration,
    unix_now,
)
from nurture.tables import EconomyTables, normalize_type

if TYPE_CHECKING:
    from nurture.store import JsonStore

logger = logging.getLogger(__name__)

DUPLICATE_SOURCE = "duplicate_form"


class CollectionRegistry:
    """Deduplicating set of unlocked forms.

    Registering a new form publishes ``FormRegistered`` and rebuilds the
    buffs.  Registering a form again pays its duplicate reward instead.
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
        self._registered: Set[int] = set()
        self._common_buff = 0.0
        self._special_buffs: Dict[str, float] = {}
        self._duplicate_buff = 0.0
        self._lock = threading.RLock()

    # ── Registration ──────────────────────────────

    def register_form(self, form_id: int) -> Registration:
        """Register *form_id*; a repeat pays the duplicate reward instead."""
        with self._lock:
            if form_id in self._registered:
                return Registration(is_new=False, duplicate_reward=self.process_duplicate(form_id))
            self._registered.add(form_id)
            form = self.get_form_info(form_id)
            self._bus.publish(FormRegistered(form_id, form.name_key))
            self.recompute_buffs()
        logger.info("Registered form %d", form_id)
        return Registration(is_new=True)

    def register(self, form_id: int) -> bool:
        return self.register_form(form_id).is_new

    def process_duplicate(self, form_id: int) -> int:
        """Credit the buffed duplicate reward for *form_id* and return it."""
        form = self._tables.form(form_id)
        if form is None:
            logger.warning("Duplicate of unknown form %d ignored", form_id)
            return 0
        currency_id = self._tables.special_currency_id(form.creature_type)
        if currency_id is None:
            logger.warning("Form %d has no special currency for type %r", form_id, form.creature_type)
            return 0
        with self._lock:
            amount = apply_percent_buff(form.duplicate_reward_amount, self._duplicate_buff)
            if amount > 0:
                self._ledger.add(currency_id, amount, DUPLICATE_SOURCE)
            self._bus.publish(DuplicateFormProcessed(form_id, currency_id, amount))
        logger.info("Duplicate form %d paid %d of currency %d", form_id, amount, currency_id)
        return amount

    def recompute_buffs(self) -> None:
        with self._lock:
            common = 0.0
            duplicate = 0.0
            special: Dict[str, float] = {}
            for form_id in self._registered:
                form = self._tables.form(form_id)
                if form is None or form.buff_type == BuffType.NONE or form.buff_value_percent <= 0:
                    continue
                if form.buff_type == BuffType.COMMON_CURRENCY_GAIN:
                    common += form.buff_value_percent
                elif form.buff_type == BuffType.SPECIAL_CURRENCY_GAIN:
                    target = normalize_type(form.buff_target_type or form.creature_type)
                    if target:
                        special[target] = special.get(target, 0.0) + form.buff_value_percent
                elif form.buff_type == BuffType.DUPLICATE_REWARD_BONUS:
                    duplicate += form.buff_value_percent

            self._common_buff = self._capped(common)
            self._duplicate_buff = self._capped(duplicate)
            self._special_buffs = {k: self._capped(v) for k, v in special.items()}
        logger.debug(
            "Buffs recomputed: common=%.1f%% special=%s duplicate=%.1f%%",
            self._common_buff, self._special_buffs, self._duplicate_buff,
        )

    def _capped(self, percent: float) -> float:
        cap = self._config.max_buff_percent
        return min(percent, cap) if cap is not None else percent

    # ── Queries ───────────────────────────────────

    def is_registered(self, form_id: int) -> bool:
        with self._lock:
            return form_id in self._registered

    def get_registered_forms(self, creature_type: Optional[str] = None) -> List[int]:
        with self._lock:
            ids = sorted(self._registered)
        if not creature_type:
            return ids
        key = normalize_type(creature_type)
        return [i for i in ids if normalize_type(self.get_form_info(i).creature_type) == key]

    def get_form_info(self, form_id: int) -> EvolutionForm:
        return self._tables.form(form_id) or EvolutionForm.empty()

    def common_currency_buff_percent(self) -> float:
        with self._lock:
            return self._common_buff

    def special_currency_buff_percent(self, creature_type: str) -> float:
        with self._lock:
            return self._special_buffs.get(normalize_type(creature_type), 0.0)

    def duplicate_reward_buff_percent(self) -> float:
        with self._lock:
            return self._duplicate_buff

    # ── Persistence ───────────────────────────────

    def to_document(self) -> CollectionDocument:
        with self._lock:
            forms = sorted(self._registered)
        return CollectionDocument(registered_forms=forms, save_time=self._clock())

    def load_document(self, document: Optional[CollectionDocument]) -> None:
        forms = set(document.registered_forms) if document is not None else set()
        with self._lock:
            self._registered = forms
            self.recompute_buffs()

    async def save(self, store: "JsonStore") -> bool:
        document = self.to_document()
        try:
            await store.awrite(COLLECTION_FILE, document)
        except OSError as e:
            logger.error("Failed to save collection data: %s", e)
            return False
        logger.info("Collection data saved (%d forms)", len(document.registered_forms))
        return True

    async def load(self, store: "JsonStore") -> bool:
        try:
            document = await store.aread(COLLECTION_FILE, CollectionDocument)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error("Failed to load collection data, using defaults: %s", e)
            self.load_document(None)
            return False
        self.load_document(document)
        logger.info("Collection data loaded (%d forms)", len(self._registered))
        return True
