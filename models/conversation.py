"""
Conversation Models

Pydantic models for conversation context: messages, detected intents and
tracked entities. The context manager owns instances of ConversationContext;
the classifier and fallback manager only read them.
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class Entity(BaseModel):
    """Entity extracted from a query."""

    type: str
    value: str = ""
    text: Optional[str] = None
    confidence: float = 0.0
    start_position: Optional[int] = None
    end_position: Optional[int] = None


class ConversationMessage(BaseModel):
    """One conversation turn."""

    role: str  # user, assistant, system
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class DetectedIntent(BaseModel):
    """Intent recorded against a conversation."""

    intent: str
    confidence: float = 0.0
    detected_at: datetime = Field(default_factory=utcnow)
    query: str = ""
    entities: List[Entity] = Field(default_factory=list)


class TrackedEntity(BaseModel):
    """Entity tracked across a conversation."""

    entity: Entity
    first_mentioned_at: datetime = Field(default_factory=utcnow)
    last_mentioned_at: datetime = Field(default_factory=utcnow)
    mention_count: int = 1
    relevance_score: float = 0.5

    @property
    def is_key_entity(self) -> bool:
        return self.mention_count > 1 or self.relevance_score > 0.7


class ConversationContext(BaseModel):
    """
    Conversation state used for contextual classification.

    Messages and detected intents are kept in insertion (chronological)
    order.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    last_updated_at: datetime = Field(default_factory=utcnow)
    messages: List[ConversationMessage] = Field(default_factory=list)
    tracked_entities: List[TrackedEntity] = Field(default_factory=list)
    detected_intents: List[DetectedIntent] = Field(default_factory=list)
    state_data: Dict[str, str] = Field(default_factory=dict)
    current_query: str = ""

    def add_message(self, role: str, content: str) -> ConversationMessage:
        message = ConversationMessage(role=role, content=content)
        self.messages.append(message)
        self.last_updated_at = utcnow()
        return message

    def add_tracked_entity(self, tracked: TrackedEntity):
        """Track an entity, merging with an existing one of the same type and value."""
        for existing in self.tracked_entities:
            if (
                existing.entity.type == tracked.entity.type
                and existing.entity.value == tracked.entity.value
            ):
                existing.last_mentioned_at = utcnow()
                existing.mention_count += 1
                existing.entity.confidence = max(existing.entity.confidence, tracked.entity.confidence)
                break
        else:
            self.tracked_entities.append(tracked)
        self.last_updated_at = utcnow()

    def add_detected_intent(self, detected: DetectedIntent):
        self.detected_intents.append(detected)
        self.last_updated_at = utcnow()

    def get_relevant_history(self, max_messages: int = 10) -> List[ConversationMessage]:
        """Most recent messages, oldest first."""
        ordered = sorted(self.messages, key=lambda m: m.timestamp)
        if len(ordered) <= max_messages:
            return ordered
        return ordered[-max_messages:]

    def recent_intents(self, count: int) -> List[DetectedIntent]:
        """Most recent detected intents, newest first."""
        ordered = sorted(self.detected_intents, key=lambda d: d.detected_at, reverse=True)
        return ordered[:count]

    def get_context_summary(self) -> str:
        """Short summary of key entities and recent topics."""
        lines = []

        if self.tracked_entities:
            lines.append("Key entities in this conversation:")
            top = sorted(self.tracked_entities, key=lambda e: e.mention_count, reverse=True)[:5]
            for tracked in top:
                lines.append(f"- {tracked.entity.type}: {tracked.entity.value}")
            lines.append("")

        if self.detected_intents:
            lines.append("Recent topics discussed:")
            for detected in self.recent_intents(3):
                lines.append(f"- {detected.intent}")
            lines.append("")

        return "\n".join(lines)
