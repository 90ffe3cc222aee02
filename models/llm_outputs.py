"""
LLM Output Schemas

Pydantic schemas for the JSON the completion provider is asked to return.
Models are lenient: missing or mistyped fields fall back to documented
defaults instead of failing validation, so a partially malformed response
still yields a usable object. Only undecodable JSON or a wrong top-level
shape is treated as a parse failure.
"""

import math
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


def as_float(value: Any, default: Optional[float]) -> Optional[float]:
    """Coerce numbers and numeric strings; anything else becomes the default."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return default
    return default


def confidence_01(value: Any, default: Optional[float]) -> Optional[float]:
    """Coerce a confidence into [0, 1]; non-numeric or non-finite values become the default."""
    number = as_float(value, default)
    if number is None or not math.isfinite(number):
        return default
    return max(0.0, min(1.0, number))


def as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return default


def as_str(value: Any, default: Optional[str]) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return default


def only_dicts(value: Any) -> List[dict]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


class LLMPayload(BaseModel):
    """Base for provider payloads (camelCase aliases, unknown keys ignored)."""

    class Config:
        populate_by_name = True
        extra = "ignore"


class EntityPayload(LLMPayload):
    """Entity as emitted by the provider."""

    type: str = "unknown"
    value: str = ""
    confidence: float = 0.5
    importance: Optional[float] = None  # 0-10 scale, used by chain-of-thought

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v):
        return as_str(v, "unknown")

    @field_validator("value", mode="before")
    @classmethod
    def _value(cls, v):
        return as_str(v, "")

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return confidence_01(v, 0.5)

    @field_validator("importance", mode="before")
    @classmethod
    def _importance(cls, v):
        return as_float(v, None)

    @model_validator(mode="after")
    def _importance_to_confidence(self) -> "EntityPayload":
        if self.importance is not None:
            self.confidence = confidence_01(self.importance / 10.0, self.confidence)
        return self


class AlternativeIntentPayload(LLMPayload):
    """One alternative intent suggested during clarification."""

    intent: str = "unknown"
    confidence: float = 0.0
    explanation: Optional[str] = None

    @field_validator("intent", mode="before")
    @classmethod
    def _intent(cls, v):
        return as_str(v, "unknown")

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return confidence_01(v, 0.0)

    @field_validator("explanation", mode="before")
    @classmethod
    def _explanation(cls, v):
        return as_str(v, None)


class GeneralizedIntentPayload(LLMPayload):
    """Broader-category reclassification."""

    intent: str = "general_query"
    confidence: float = 0.5
    explanation: str = "Generalized intent"
    suggested_next_step: Optional[str] = Field(default=None, alias="suggestedNextStep")

    @field_validator("intent", mode="before")
    @classmethod
    def _intent(cls, v):
        return as_str(v, "general_query")

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return confidence_01(v, 0.5)

    @field_validator("explanation", mode="before")
    @classmethod
    def _explanation(cls, v):
        return as_str(v, "Generalized intent")

    @field_validator("suggested_next_step", mode="before")
    @classmethod
    def _next_step(cls, v):
        return as_str(v, None)


class PartialIntentPayload(LLMPayload):
    """Partial intent and entity extraction."""

    partial_intent: str = Field(default="unclear_intent", alias="partialIntent")
    confidence: float = 0.3
    extracted_entities: List[EntityPayload] = Field(default_factory=list, alias="extractedEntities")
    missing_information: str = Field(default="Additional context needed", alias="missingInformation")

    @field_validator("partial_intent", mode="before")
    @classmethod
    def _partial_intent(cls, v):
        return as_str(v, "unclear_intent")

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return confidence_01(v, 0.3)

    @field_validator("extracted_entities", mode="before")
    @classmethod
    def _entities(cls, v):
        return only_dicts(v)

    @field_validator("missing_information", mode="before")
    @classmethod
    def _missing(cls, v):
        return as_str(v, "Additional context needed")


class IntentDetectionPayload(LLMPayload):
    """Direct LLM intent classification."""

    intent: str = "unknown"
    confidence: float = 0.0
    explanation: Optional[str] = None
    entities: List[EntityPayload] = Field(default_factory=list)

    @field_validator("intent", mode="before")
    @classmethod
    def _intent(cls, v):
        return as_str(v, "unknown")

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return confidence_01(v, 0.0)

    @field_validator("explanation", mode="before")
    @classmethod
    def _explanation(cls, v):
        return as_str(v, None)

    @field_validator("entities", mode="before")
    @classmethod
    def _entities(cls, v):
        return only_dicts(v)


class ReasoningStepPayload(LLMPayload):
    step: int = 0
    thought: str = ""
    conclusion: str = ""

    @field_validator("step", mode="before")
    @classmethod
    def _step(cls, v):
        return as_int(v, 0)

    @field_validator("thought", "conclusion", mode="before")
    @classmethod
    def _text(cls, v):
        return as_str(v, "")


class ChainOfThoughtPayload(LLMPayload):
    """Draft chain-of-thought reasoning."""

    reasoning: List[ReasoningStepPayload] = Field(default_factory=list)
    final_conclusion: str = Field(default="No conclusion provided", alias="finalConclusion")
    confidence_score: float = Field(default=0.5, alias="confidenceScore")
    entities: List[EntityPayload] = Field(default_factory=list)
    suggested_actions: List[str] = Field(default_factory=list, alias="suggestedActions")

    @field_validator("reasoning", "entities", mode="before")
    @classmethod
    def _objects(cls, v):
        return only_dicts(v)

    @field_validator("final_conclusion", mode="before")
    @classmethod
    def _conclusion(cls, v):
        return as_str(v, "No conclusion provided")

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _confidence(cls, v):
        return confidence_01(v, 0.5)

    @field_validator("suggested_actions", mode="before")
    @classmethod
    def _actions(cls, v):
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, str)]


class VerificationIssuePayload(LLMPayload):
    step: int = 0  # 1-based; 0 means no step
    issue: Optional[str] = None
    correction: Optional[str] = None

    @field_validator("step", mode="before")
    @classmethod
    def _step(cls, v):
        return as_int(v, 0)

    @field_validator("issue", "correction", mode="before")
    @classmethod
    def _text(cls, v):
        return as_str(v, None)


class VerificationPayload(LLMPayload):
    """Self-verification critique of a draft.

    Absent confidence/conclusion stay None so reconciliation can fall back to
    the draft's values.
    """

    is_valid: bool = Field(default=True, alias="isValid")
    confidence_score: Optional[float] = Field(default=None, alias="confidenceScore")
    issues: List[VerificationIssuePayload] = Field(default_factory=list)
    improved_conclusion: Optional[str] = Field(default=None, alias="improvedConclusion")

    @field_validator("is_valid", mode="before")
    @classmethod
    def _is_valid(cls, v):
        return v if isinstance(v, bool) else True

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _confidence(cls, v):
        return confidence_01(v, None)

    @field_validator("issues", mode="before")
    @classmethod
    def _issues(cls, v):
        return only_dicts(v)

    @field_validator("improved_conclusion", mode="before")
    @classmethod
    def _conclusion(cls, v):
        return as_str(v, None)


class IntentVerificationPayload(LLMPayload):
    """Self-check of a single intent detection."""

    is_correct: bool = Field(default=True, alias="isCorrect")
    corrected_intent: Optional[str] = Field(default=None, alias="correctedIntent")
    confidence: Optional[float] = None
    explanation: Optional[str] = None

    @field_validator("is_correct", mode="before")
    @classmethod
    def _is_correct(cls, v):
        return v if isinstance(v, bool) else True

    @field_validator("corrected_intent", "explanation", mode="before")
    @classmethod
    def _text(cls, v):
        return as_str(v, None)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return confidence_01(v, None)


class IntentNodePayload(LLMPayload):
    """One node of a hierarchical classification."""

    intent: str = "unknown"
    confidence: float = 0.0
    explanation: Optional[str] = None

    @field_validator("intent", mode="before")
    @classmethod
    def _intent(cls, v):
        return as_str(v, "unknown")

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return confidence_01(v, 0.0)

    @field_validator("explanation", mode="before")
    @classmethod
    def _explanation(cls, v):
        return as_str(v, None)


class HierarchicalIntentPayload(LLMPayload):
    """Top-level intent with its sub-intents.

    A missing or non-object topLevelIntent stays None so the caller can
    report it.
    """

    top_level_intent: Optional[IntentNodePayload] = Field(default=None, alias="topLevelIntent")
    sub_intents: List[IntentNodePayload] = Field(default_factory=list, alias="subIntents")

    @field_validator("top_level_intent", mode="before")
    @classmethod
    def _top_level(cls, v):
        return v if isinstance(v, dict) else None

    @field_validator("sub_intents", mode="before")
    @classmethod
    def _sub_intents(cls, v):
        return only_dicts(v)
