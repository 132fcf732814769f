"""Pydantic models for the persisted JSON documents.

Field names on disk are camelCase; Python attributes are snake_case.  A
document that fails validation is rejected as a whole.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

CURRENCY_FILE = "currency_data.json"
GROWTH_FILE = "growth_action_data.json"
EVOLUTION_FILE = "evolution_data.json"
COLLECTION_FILE = "collection_data.json"


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SavedDocument(_Model):
    save_time: int = Field(0, alias="saveTime")


# ── currency_data.json ────────────────────────


class CurrencyEntry(_Model):
    id: int
    amount: int = Field(0, ge=0)


class CurrencyDocument(SavedDocument):
    currency_amounts: List[CurrencyEntry] = Field(default_factory=list, alias="currencyAmounts")


# ── growth_action_data.json ───────────────────


class CreatureEntry(_Model):
    egg_id: int = Field(alias="eggId")
    egg_type: Optional[str] = Field(None, alias="eggType")
    level: int = Field(1, ge=1)
    courage: int = Field(0, ge=0)
    wisdom: int = Field(0, ge=0)
    purity: int = Field(0, ge=0)
    love: int = Field(0, ge=0)
    chaos: int = Field(0, ge=0)


class ActionRecordEntry(_Model):
    action_id: int = Field(alias="actionId")
    action_name: str = Field("", alias="actionName")
    timestamp: int = 0
    session_id: int = Field(0, alias="sessionId")


class ActionHistoryEntry(_Model):
    egg_id: int = Field(alias="eggId")
    records: List[ActionRecordEntry] = Field(default_factory=list)


class GrowthDocument(SavedDocument):
    creatures: List[CreatureEntry] = Field(default_factory=list)
    action_history: List[ActionHistoryEntry] = Field(default_factory=list, alias="actionHistory")
    current_session_id: int = Field(0, alias="currentSessionId")


# ── evolution_data.json ───────────────────────


class RequirementEntry(_Model):
    egg_id: int = Field(alias="eggId")
    required_level: int = Field(alias="requiredLevel", ge=1)


class EvolutionRecordEntry(_Model):
    form_id: int = Field(alias="formId")
    form_name: str = Field("", alias="formName")
    stats_at_evolution: List[int] = Field(default_factory=list, alias="statsAtEvolution")
    evolved_at: int = Field(0, alias="evolvedAt")
    session_id: int = Field(0, alias="sessionId")


class EvolutionHistoryEntry(_Model):
    egg_id: int = Field(alias="eggId")
    records: List[EvolutionRecordEntry] = Field(default_factory=list)


class StageEntry(_Model):
    egg_id: int = Field(alias="eggId")
    stage: int = Field(0, ge=0)


class EvolutionDocument(SavedDocument):
    requirements: List[RequirementEntry] = Field(default_factory=list)
    history: List[EvolutionHistoryEntry] = Field(default_factory=list)
    stages: List[StageEntry] = Field(default_factory=list)


# ── collection_data.json ──────────────────────


class CollectionDocument(SavedDocument):
    registered_forms: List[int] = Field(default_factory=list, alias="registeredForms")
