"""
Conversation Context Manager

In-memory conversation store used for contextual classification and
fallback prompts. Implements the ContextStore protocol the classifier and
fallback manager depend on; persistent stores can implement the same
protocol.
"""

import asyncio
from datetime import timedelta
from typing import Dict, Optional, Protocol

from intent.config import ContextSettings, get_context_settings
from models.conversation import (
    ConversationContext,
    DetectedIntent,
    TrackedEntity,
    utcnow,
)
from models.detection import IntentDetectionResult
from observability.logging_config import get_logger

logger = get_logger(__name__)


class ContextStore(Protocol):
    """What the pipeline needs from a conversation store."""

    async def get_context(self, conversation_id: str) -> Optional[ConversationContext]:
        ...

    async def add_message(self, conversation_id: str, role: str, content: str) -> ConversationContext:
        ...

    async def add_detection_result(
        self, conversation_id: str, result: IntentDetectionResult
    ) -> ConversationContext:
        ...


def _require_id(conversation_id: str):
    if not conversation_id or not conversation_id.strip():
        raise ValueError("Conversation ID cannot be empty")


class ContextManager:
    """
    In-memory conversation context store.

    Features:
    - Message window pruning
    - Entity tracking with mention counts
    - Bounded detected-intent history
    - Age-based cleanup
    """

    def __init__(self, settings: Optional[ContextSettings] = None):
        self.settings = settings or get_context_settings()
        self._contexts: Dict[str, ConversationContext] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._contexts)

    async def get_or_create_context(self, conversation_id: str, user_id: str = "") -> ConversationContext:
        """Return the context for a conversation, creating an empty one if needed."""
        _require_id(conversation_id)
        async with self._lock:
            context = self._contexts.get(conversation_id)
            if context is None:
                context = ConversationContext(id=conversation_id, user_id=user_id)
                self._contexts[conversation_id] = context
                logger.info("conversation_created", conversation_id=conversation_id, user_id=user_id)
            return context

    async def get_context(self, conversation_id: str) -> Optional[ConversationContext]:
        _require_id(conversation_id)
        return self._contexts.get(conversation_id)

    async def add_message(self, conversation_id: str, role: str, content: str) -> ConversationContext:
        """Append a turn, creating the conversation on first use."""
        if not content or not content.strip():
            raise ValueError("Message content cannot be empty")
        context = await self.get_or_create_context(conversation_id)
        async with self._lock:
            context.add_message(role, content)
            if role == "user":
                context.current_query = content
            if self.settings.auto_prune_messages:
                self._prune_messages(context)
        logger.debug("message_added", conversation_id=conversation_id, role=role)
        return context

    async def add_user_message(self, conversation_id: str, content: str) -> ConversationContext:
        return await self.add_message(conversation_id, "user", content)

    async def add_assistant_message(self, conversation_id: str, content: str) -> ConversationContext:
        return await self.add_message(conversation_id, "assistant", content)

    async def add_detection_result(
        self,
        conversation_id: str,
        result: IntentDetectionResult,
    ) -> ConversationContext:
        """
        Record a detected intent and its entities.

        Entities beyond the limit are pruned fewest-mentions first, then
        oldest; intents beyond the limit are pruned oldest first.
        """
        if result is None:
            raise ValueError("Detection result cannot be None")
        context = await self.get_or_create_context(conversation_id)

        async with self._lock:
            context.add_detected_intent(
                DetectedIntent(
                    intent=result.intent,
                    confidence=result.confidence,
                    query=result.query or context.current_query,
                    entities=list(result.entities),
                )
            )
            for entity in result.entities:
                context.add_tracked_entity(TrackedEntity(entity=entity.model_copy()))

            limit = self.settings.max_tracked_entities
            if len(context.tracked_entities) > limit:
                context.tracked_entities.sort(key=lambda t: (t.mention_count, t.last_mentioned_at))
                del context.tracked_entities[: len(context.tracked_entities) - limit]
                logger.debug("entities_pruned", conversation_id=conversation_id)

            limit = self.settings.max_stored_intents
            if len(context.detected_intents) > limit:
                context.detected_intents.sort(key=lambda d: d.detected_at)
                del context.detected_intents[: len(context.detected_intents) - limit]
                logger.debug("intents_pruned", conversation_id=conversation_id)

        logger.debug(
            "detection_recorded",
            conversation_id=conversation_id,
            intent=result.intent,
            confidence=result.confidence,
        )
        return context

    def _prune_messages(self, context: ConversationContext) -> int:
        excess = len(context.messages) - self.settings.max_message_history
        if excess <= 0:
            return 0
        del context.messages[:excess]
        logger.debug("messages_pruned", conversation_id=context.id, count=excess)
        return excess

    async def prune_context_window(self, conversation_id: str) -> ConversationContext:
        """Drop the oldest messages beyond the history limit."""
        _require_id(conversation_id)
        async with self._lock:
            context = self._contexts.get(conversation_id)
            if context is None:
                raise KeyError(f"No conversation context found for ID {conversation_id}")
            self._prune_messages(context)
            return context

    async def delete_context(self, conversation_id: str) -> bool:
        _require_id(conversation_id)
        async with self._lock:
            removed = self._contexts.pop(conversation_id, None) is not None
        if removed:
            logger.info("conversation_deleted", conversation_id=conversation_id)
        return removed

    async def cleanup_old_contexts(self, max_age_days: int) -> int:
        """
        Delete conversations not updated within `max_age_days`.

        Returns:
            Number of conversations removed
        """
        if max_age_days <= 0:
            raise ValueError("Max age must be greater than zero")
        cutoff = utcnow() - timedelta(days=max_age_days)
        async with self._lock:
            stale = [cid for cid, ctx in self._contexts.items() if ctx.last_updated_at < cutoff]
            for cid in stale:
                del self._contexts[cid]
        if stale:
            logger.info("conversations_cleaned_up", count=len(stale), max_age_days=max_age_days)
        return len(stale)

    async def generate_context_summary(self, conversation_id: str, max_messages: int = 10) -> str:
        """
        Prompt-ready summary: key entities, recent topics and recent turns.

        Returns an empty string for unknown conversations.
        """
        context = await self.get_context(conversation_id)
        if context is None:
            return ""

        parts = []
        summary = context.get_context_summary()
        if summary:
            parts.append(summary)

        history = context.get_relevant_history(max_messages)
        if history:
            parts.append("Conversation history:")
            parts.extend(f"{m.role.capitalize()}: {m.content}" for m in history)

        return "\n".join(parts).strip()
