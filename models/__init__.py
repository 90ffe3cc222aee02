"""
Intent Resolver - Models Package

Pydantic data models:
- Conversation context
- Intent detection results
- LLM output schemas
"""

from models.conversation import (
    ConversationContext,
    ConversationMessage,
    DetectedIntent,
    Entity,
    TrackedEntity,
)
from models.detection import HierarchicalIntentResult, IntentDetectionResult

__all__ = [
    "ConversationContext",
    "ConversationMessage",
    "DetectedIntent",
    "Entity",
    "TrackedEntity",
    "IntentDetectionResult",
    "HierarchicalIntentResult",
]
