"""
Detection Models

Intent detection results exchanged between the LLM detector, the fallback
manager and the conversation context.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from models.conversation import Entity


class IntentDetectionResult(BaseModel):
    """Single intent hypothesis for a query."""

    intent: str
    confidence: float = 0.0
    query: Optional[str] = None
    explanation: Optional[str] = None
    entities: List[Entity] = Field(default_factory=list)

    @property
    def top_intent(self) -> str:
        return self.intent

    def has_entity(self, entity_type: str) -> bool:
        return any(e.type == entity_type for e in self.entities)

    class Config:
        json_schema_extra = {
            "example": {
                "intent": "billing_inquiry",
                "confidence": 0.42,
                "explanation": "Mentions a subscription charge",
                "entities": [{"type": "product", "value": "subscription", "confidence": 0.8}],
            }
        }


class HierarchicalIntentResult(BaseModel):
    """Top-level intent plus the sub-intents found within it."""

    top_level_intent: IntentDetectionResult
    sub_intents: List[IntentDetectionResult] = Field(default_factory=list)

    @property
    def has_multiple_intents(self) -> bool:
        return len(self.sub_intents) > 0
