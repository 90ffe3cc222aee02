"""
Tests for Conversation Context Manager

Tests cover:
- Message history and pruning
- Entity tracking and merging
- Detected intent limits
- Summaries, deletion and cleanup
"""

from datetime import timedelta

import pytest

from intent.config import ContextSettings
from intent.context_manager import ContextManager
from models.conversation import Entity, utcnow
from models.detection import IntentDetectionResult


def detection(intent, *entities, confidence=0.9):
    return IntentDetectionResult(
        intent=intent,
        confidence=confidence,
        entities=[Entity(type=t, value=v, confidence=0.8) for t, v in entities],
    )


class TestMessages:
    """Test message handling."""

    def setup_method(self):
        """Setup test fixtures."""
        self.manager = ContextManager(ContextSettings(max_message_history=3))

    @pytest.mark.asyncio
    async def test_first_message_creates_context(self):
        """Conversations are created on first use."""
        context = await self.manager.add_user_message("conv-1", "hello")

        assert context.id == "conv-1"
        assert context.current_query == "hello"
        assert len(self.manager) == 1
        assert await self.manager.get_context("conv-1") is context

    @pytest.mark.asyncio
    async def test_auto_prune_keeps_newest(self):
        """Only the newest messages survive the history limit."""
        for i in range(5):
            await self.manager.add_user_message("conv-1", f"message {i}")

        context = await self.manager.get_context("conv-1")
        assert [m.content for m in context.messages] == ["message 2", "message 3", "message 4"]

    @pytest.mark.asyncio
    async def test_manual_prune(self):
        """Pruning on demand when auto-prune is off."""
        manager = ContextManager(ContextSettings(max_message_history=2, auto_prune_messages=False))
        for i in range(4):
            await manager.add_user_message("conv-1", f"message {i}")
        assert len((await manager.get_context("conv-1")).messages) == 4

        context = await manager.prune_context_window("conv-1")

        assert [m.content for m in context.messages] == ["message 2", "message 3"]

    @pytest.mark.asyncio
    async def test_prune_unknown_conversation(self):
        """Pruning an unknown conversation is a KeyError."""
        with pytest.raises(KeyError):
            await self.manager.prune_context_window("missing")

    @pytest.mark.asyncio
    async def test_assistant_message_keeps_current_query(self):
        """Only user turns update the current query."""
        await self.manager.add_user_message("conv-1", "show my invoices")
        context = await self.manager.add_assistant_message("conv-1", "Here they are")
        assert context.current_query == "show my invoices"
        assert context.messages[-1].role == "assistant"

    @pytest.mark.asyncio
    async def test_argument_errors(self):
        """Empty ids and empty content are rejected."""
        with pytest.raises(ValueError):
            await self.manager.add_user_message("", "hello")
        with pytest.raises(ValueError):
            await self.manager.add_user_message("conv-1", "  ")
        with pytest.raises(ValueError):
            await self.manager.get_context(" ")

    @pytest.mark.asyncio
    async def test_unknown_conversation(self):
        """Unknown conversations have no context."""
        assert await self.manager.get_context("missing") is None


class TestDetections:
    """Test detected intents and entities."""

    @pytest.mark.asyncio
    async def test_entities_merge_by_type_and_value(self):
        """Repeated entities increase the mention count."""
        manager = ContextManager(ContextSettings())
        await manager.add_detection_result("conv-1", detection("billing_inquiry", ("invoice_id", "INV-7")))
        context = await manager.add_detection_result(
            "conv-1", detection("billing_inquiry", ("invoice_id", "INV-7"), ("month", "March"))
        )

        assert len(context.tracked_entities) == 2
        invoice = context.tracked_entities[0]
        assert invoice.mention_count == 2
        assert invoice.is_key_entity
        assert len(context.detected_intents) == 2

    @pytest.mark.asyncio
    async def test_entity_limit_prunes_least_mentioned(self):
        """Entities mentioned once are pruned before repeated ones."""
        manager = ContextManager(ContextSettings(max_tracked_entities=2))
        await manager.add_detection_result("conv-1", detection("a", ("k", "repeated")))
        await manager.add_detection_result("conv-1", detection("a", ("k", "repeated")))
        await manager.add_detection_result("conv-1", detection("a", ("k", "once")))
        context = await manager.add_detection_result("conv-1", detection("a", ("k", "latest")))

        values = {t.entity.value for t in context.tracked_entities}
        assert values == {"repeated", "latest"}

    @pytest.mark.asyncio
    async def test_intent_limit_prunes_oldest(self):
        """The oldest detected intents are dropped first."""
        manager = ContextManager(ContextSettings(max_stored_intents=2))
        for name in ("first", "second", "third"):
            context = await manager.add_detection_result("conv-1", detection(name))

        assert [d.intent for d in context.detected_intents] == ["second", "third"]

    @pytest.mark.asyncio
    async def test_query_defaults_to_current_query(self):
        """Detections without a query record the current user turn."""
        manager = ContextManager(ContextSettings())
        await manager.add_user_message("conv-1", "why was I charged twice")
        context = await manager.add_detection_result("conv-1", detection("billing_inquiry"))
        assert context.detected_intents[0].query == "why was I charged twice"

    @pytest.mark.asyncio
    async def test_none_result(self):
        """A detection result is required."""
        with pytest.raises(ValueError):
            await ContextManager(ContextSettings()).add_detection_result("conv-1", None)


class TestLifecycle:
    """Test summaries, deletion and cleanup."""

    def setup_method(self):
        """Setup test fixtures."""
        self.manager = ContextManager(ContextSettings())

    @pytest.mark.asyncio
    async def test_summary(self):
        """Summary lists entities, topics and recent turns."""
        await self.manager.add_user_message("conv-1", "why was I charged twice")
        await self.manager.add_detection_result("conv-1", detection("billing_inquiry", ("month", "March")))
        await self.manager.add_assistant_message("conv-1", "Let me check")

        summary = await self.manager.generate_context_summary("conv-1")

        assert "Key entities in this conversation:" in summary
        assert "- month: March" in summary
        assert "- billing_inquiry" in summary
        assert summary.endswith("User: why was I charged twice\nAssistant: Let me check")

    @pytest.mark.asyncio
    async def test_summary_unknown_conversation(self):
        """Unknown conversations summarize to an empty string."""
        assert await self.manager.generate_context_summary("missing") == ""

    @pytest.mark.asyncio
    async def test_delete(self):
        """Deleting reports whether anything was removed."""
        await self.manager.add_user_message("conv-1", "hello")
        assert await self.manager.delete_context("conv-1") is True
        assert await self.manager.delete_context("conv-1") is False
        assert len(self.manager) == 0

    @pytest.mark.asyncio
    async def test_cleanup_old_contexts(self):
        """Only stale conversations are removed."""
        stale = await self.manager.add_user_message("old", "hello")
        stale.last_updated_at = utcnow() - timedelta(days=10)
        await self.manager.add_user_message("new", "hello")

        removed = await self.manager.cleanup_old_contexts(max_age_days=7)

        assert removed == 1
        assert await self.manager.get_context("old") is None
        assert await self.manager.get_context("new") is not None

    @pytest.mark.asyncio
    async def test_cleanup_rejects_non_positive_age(self):
        """Max age must be positive."""
        with pytest.raises(ValueError):
            await self.manager.cleanup_old_contexts(0)
