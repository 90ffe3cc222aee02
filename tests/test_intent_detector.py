"""
Tests for Intent Detector

Tests cover:
- Context-free and context-aware detection
- Self-verification of low-confidence detections
- Fallback annotation
- Chain-of-thought detection
"""

import json

import pytest

from intent.config import ContextSettings, DetectionSettings, FallbackSettings
from intent.context_manager import ContextManager
from intent.exceptions import ProviderError
from intent.fallback_manager import FallbackLevel, FallbackManager, FallbackResult
from intent.intent_detector import REASONING_INTENT, IntentDetector, annotate_fallback
from models.conversation import ConversationMessage
from models.detection import IntentDetectionResult
from conftest import (
    ALTERNATIVES,
    CLARIFICATION,
    CONTEXT_DETECTION,
    DETECTION,
    HIERARCHICAL,
    INTENT_VERIFICATION,
    REASONING_DRAFT,
    REASONING_VERIFY,
    FakeProvider,
)


def detection_response(intent, confidence, entities=()):
    return json.dumps({
        "intent": intent,
        "confidence": confidence,
        "explanation": f"Looks like {intent}",
        "entities": [{"type": t, "value": v, "confidence": 0.8} for t, v in entities],
    })


class TestDetectIntent:
    """Test context-free detection."""

    @pytest.mark.asyncio
    async def test_confident_detection(self):
        """Confident detections skip verification and fallback."""
        provider = FakeProvider(
            completions={DETECTION: detection_response("billing_inquiry", 0.92, [("invoice_id", "INV-7")])}
        )
        detector = IntentDetector(provider, settings=DetectionSettings())

        result = await detector.detect_intent("where is invoice INV-7")

        assert result.intent == "billing_inquiry"
        assert result.confidence == 0.92
        assert result.entities[0].value == "INV-7"
        assert len(provider.calls) == 1
        assert provider.params_for(DETECTION) == {"temperature": 0.1, "top_p": 0.95}

    @pytest.mark.asyncio
    async def test_unparseable_response(self):
        """Parse failures become unknown at zero confidence."""
        provider = FakeProvider(completions={DETECTION: "I am not sure"})
        detector = IntentDetector(provider, settings=DetectionSettings(enable_self_verification=False))

        result = await detector.detect_intent("hmm")

        assert result.intent == "unknown"
        assert result.confidence == 0.0
        assert result.explanation == "Failed to parse intent detection response"

    @pytest.mark.asyncio
    async def test_self_verification_corrects(self):
        """A low-confidence detection can be corrected by verification."""
        provider = FakeProvider(
            completions={
                INTENT_VERIFICATION: json.dumps(
                    {"isCorrect": False, "correctedIntent": "cancel_subscription", "confidence": 0.8}
                ),
                DETECTION: detection_response("billing_inquiry", 0.55),
            }
        )
        detector = IntentDetector(provider, settings=DetectionSettings(confidence_threshold=0.7))

        result = await detector.detect_intent("stop charging me every month")

        assert result.intent == "cancel_subscription"
        assert result.confidence == 0.8
        assert len(provider.prompts(INTENT_VERIFICATION)) == 1

    @pytest.mark.asyncio
    async def test_verification_failure_keeps_detection(self):
        """A failing verification leaves the detection unchanged."""
        provider = FakeProvider(
            completions={
                INTENT_VERIFICATION: ProviderError("timeout"),
                DETECTION: detection_response("billing_inquiry", 0.55),
            }
        )
        detector = IntentDetector(provider, settings=DetectionSettings())

        result = await detector.detect_intent("stop charging me every month")

        assert result.intent == "billing_inquiry"
        assert result.confidence == 0.55

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self):
        """Detection itself does not swallow provider errors."""
        provider = FakeProvider(completions={DETECTION: ProviderError("down")})
        detector = IntentDetector(provider, settings=DetectionSettings())
        with pytest.raises(ProviderError):
            await detector.detect_intent("hello")

    @pytest.mark.asyncio
    async def test_empty_query(self):
        """Empty queries are rejected."""
        detector = IntentDetector(FakeProvider(), settings=DetectionSettings())
        with pytest.raises(ValueError):
            await detector.detect_intent("")


class TestFallbackAnnotation:
    """Test fallback escalation from the detector."""

    @pytest.mark.asyncio
    async def test_low_confidence_is_annotated(self):
        """Fallback outcome is attached to the returned result."""
        provider = FakeProvider(
            completions={
                INTENT_VERIFICATION: json.dumps({"isCorrect": True}),
                DETECTION: detection_response("cancel_subscription", 0.3),
                ALTERNATIVES: json.dumps([{"intent": "billing_inquiry", "confidence": 0.6}]),
                CLARIFICATION: json.dumps(["Is this about a charge on your bill?"]),
            }
        )
        fallback = FallbackManager(provider, settings=FallbackSettings())
        detector = IntentDetector(provider, fallback_manager=fallback, settings=DetectionSettings())

        result = await detector.detect_intent("cancel my subscription")

        assert result.intent == "billing_inquiry"
        annotations = {e.type: e.value for e in result.entities}
        assert annotations["fallback_level"] == "request_clarification"
        assert annotations["requires_clarification"] == "true"
        assert annotations["clarification_question_1"] == "Is this about a charge on your bill?"
        assert annotations["fallback_reason"] == "Low confidence classification, requesting clarification"
        assert all(e.confidence == 1.0 for e in result.entities)

    def test_annotate_does_not_mutate(self):
        """Annotation works on a copy."""
        original = IntentDetectionResult(intent="general_query", confidence=0.6)
        fallback = FallbackResult(
            fallback_level=FallbackLevel.GENERALIZED_INTENT,
            original_result=original,
            final_result=original,
            is_successful=True,
            fallback_reason="Using generalized intent approach",
        )

        annotated = annotate_fallback(original, fallback)

        assert original.entities == []
        assert [e.type for e in annotated.entities] == ["fallback_level", "fallback_reason"]


class TestContextAwareDetection:
    """Test detection with conversation context."""

    def setup_method(self):
        """Setup test fixtures."""
        self.store = ContextManager(ContextSettings())

    @pytest.mark.asyncio
    async def test_context_path_records_conversation(self):
        """User turn and detection are stored and the summary is in the prompt."""
        provider = FakeProvider(
            completions={CONTEXT_DETECTION: detection_response("billing_inquiry", 0.9, [("month", "March")])}
        )
        detector = IntentDetector(provider, context_manager=self.store, settings=DetectionSettings())
        await self.store.add_user_message("conv-1", "I have a billing question")

        result = await detector.detect_intent("what about March?", conversation_id="conv-1")

        assert result.intent == "billing_inquiry"
        prompt = provider.prompts(CONTEXT_DETECTION)[0]
        assert "User: I have a billing question" in prompt
        assert "User: what about March?" in prompt
        context = await self.store.get_context("conv-1")
        assert [m.content for m in context.messages] == ["I have a billing question", "what about March?"]
        assert context.detected_intents[-1].intent == "billing_inquiry"
        assert context.tracked_entities[0].entity.value == "March"

    @pytest.mark.asyncio
    async def test_context_failure_falls_back(self):
        """A failing context path falls back to context-free detection."""

        class FlakyStore(ContextManager):
            async def add_user_message(self, conversation_id, content):
                raise RuntimeError("store offline")

        store = FlakyStore(ContextSettings())
        provider = FakeProvider(completions={DETECTION: detection_response("greeting", 0.95)})
        detector = IntentDetector(provider, context_manager=store, settings=DetectionSettings())

        result = await detector.detect_intent("hello", conversation_id="conv-1")

        assert result.intent == "greeting"
        assert provider.prompts(CONTEXT_DETECTION) == []
        context = await store.get_context("conv-1")
        assert context.detected_intents[0].intent == "greeting"

    @pytest.mark.asyncio
    async def test_record_failure_keeps_single_detection(self):
        """A failing final write returns the result without detecting again."""

        class ReadOnlyStore(ContextManager):
            async def add_detection_result(self, conversation_id, result):
                raise RuntimeError("store read-only")

        store = ReadOnlyStore(ContextSettings())
        provider = FakeProvider(
            completions={
                CONTEXT_DETECTION: detection_response("cancel_subscription", 0.3),
                ALTERNATIVES: json.dumps([{"intent": "billing_inquiry", "confidence": 0.6}]),
                CLARIFICATION: json.dumps(["Is this about a charge on your bill?"]),
            }
        )
        fallback = FallbackManager(provider, settings=FallbackSettings())
        detector = IntentDetector(
            provider, context_manager=store, fallback_manager=fallback, settings=DetectionSettings()
        )

        result = await detector.detect_intent("cancel my subscription", conversation_id="conv-1")

        assert result.intent == "billing_inquiry"
        assert len(provider.prompts(CONTEXT_DETECTION)) == 1
        assert provider.prompts(DETECTION) == []
        assert len(provider.prompts(ALTERNATIVES)) == 1


class TestDetectWithMessages:
    """Test detection against caller-supplied turns."""

    @pytest.mark.asyncio
    async def test_turns_are_formatted_into_prompt(self):
        """Turns appear oldest first with role labels."""
        provider = FakeProvider(completions={CONTEXT_DETECTION: detection_response("billing_inquiry", 0.9)})
        detector = IntentDetector(provider, settings=DetectionSettings())
        messages = [
            ConversationMessage(role="user", content="I was billed twice"),
            ConversationMessage(role="assistant", content="Sorry to hear that"),
        ]

        result = await detector.detect_intent_with_messages("can I get a refund?", messages)

        assert result.intent == "billing_inquiry"
        assert result.entities == []
        prompt = provider.prompts(CONTEXT_DETECTION)[0]
        assert "Conversation history:\nUser: I was billed twice\nAssistant: Sorry to hear that" in prompt
        assert 'Latest user query: "can I get a refund?"' in prompt

    @pytest.mark.asyncio
    async def test_no_turns(self):
        """Missing turns are stated in the prompt."""
        provider = FakeProvider(completions={CONTEXT_DETECTION: detection_response("greeting", 0.9)})
        detector = IntentDetector(provider, settings=DetectionSettings())

        await detector.detect_intent_with_messages("hello", None)

        assert "No conversation context available." in provider.prompts(CONTEXT_DETECTION)[0]

    @pytest.mark.asyncio
    async def test_fallback_uses_same_turns(self):
        """Low confidence escalates with the supplied turns and is annotated."""
        provider = FakeProvider(
            completions={
                CONTEXT_DETECTION: detection_response("cancel_subscription", 0.3),
                ALTERNATIVES: json.dumps([{"intent": "billing_inquiry", "confidence": 0.6}]),
                CLARIFICATION: json.dumps(["Is this about a charge on your bill?"]),
            }
        )
        fallback = FallbackManager(provider, settings=FallbackSettings())
        detector = IntentDetector(provider, fallback_manager=fallback, settings=DetectionSettings())
        messages = [ConversationMessage(role="user", content="I was billed twice")]

        result = await detector.detect_intent_with_messages("cancel it", messages)

        assert result.intent == "billing_inquiry"
        annotations = {e.type: e.value for e in result.entities}
        assert annotations["fallback_level"] == "request_clarification"
        assert annotations["requires_clarification"] == "true"
        assert "User: I was billed twice" in provider.prompts(ALTERNATIVES)[0]

    @pytest.mark.asyncio
    async def test_empty_query(self):
        """Empty queries are rejected."""
        detector = IntentDetector(FakeProvider(), settings=DetectionSettings())
        with pytest.raises(ValueError):
            await detector.detect_intent_with_messages(" ", [])


class TestHierarchicalIntent:
    """Test hierarchical classification."""

    @pytest.mark.asyncio
    async def test_top_level_and_sub_intents(self):
        """Both levels are returned and the top level is recorded."""
        provider = FakeProvider(
            completions={
                HIERARCHICAL: json.dumps({
                    "topLevelIntent": {"intent": "account_management", "confidence": 0.85, "explanation": "Account"},
                    "subIntents": [
                        {"intent": "cancel_subscription", "confidence": 0.7},
                        {"intent": "billing_inquiry", "confidence": 4},
                        "junk",
                    ],
                })
            }
        )
        store = ContextManager(ContextSettings())
        detector = IntentDetector(provider, context_manager=store, settings=DetectionSettings())

        result = await detector.classify_hierarchical_intent("cancel and refund my plan", "conv-1")

        assert result.top_level_intent.intent == "account_management"
        assert result.top_level_intent.confidence == 0.85
        assert [(s.intent, s.confidence) for s in result.sub_intents] == [
            ("cancel_subscription", 0.7),
            ("billing_inquiry", 1.0),
        ]
        assert result.has_multiple_intents
        assert provider.params_for(HIERARCHICAL) == {"temperature": 0.1, "top_p": 0.95}
        context = await store.get_context("conv-1")
        assert [m.content for m in context.messages] == ["cancel and refund my plan"]
        assert context.detected_intents[0].intent == "account_management"

    @pytest.mark.asyncio
    async def test_missing_top_level(self):
        """A response without a top-level intent reports unknown."""
        provider = FakeProvider(completions={HIERARCHICAL: json.dumps({"subIntents": []})})
        detector = IntentDetector(provider, settings=DetectionSettings())

        result = await detector.classify_hierarchical_intent("hmm")

        assert result.top_level_intent.intent == "unknown"
        assert result.top_level_intent.explanation == "No top-level intent found in response"
        assert not result.has_multiple_intents

    @pytest.mark.asyncio
    async def test_unparseable_response(self):
        """Parse failures report a parse_error intent at zero confidence."""
        provider = FakeProvider(completions={HIERARCHICAL: "not json"})
        detector = IntentDetector(provider, settings=DetectionSettings())

        result = await detector.classify_hierarchical_intent("hmm")

        assert result.top_level_intent.intent == "parse_error"
        assert result.top_level_intent.confidence == 0.0
        assert result.sub_intents == []

    @pytest.mark.asyncio
    async def test_store_failures_are_ignored(self):
        """Failing context writes do not fail the classification."""

        class OfflineStore(ContextManager):
            async def add_user_message(self, conversation_id, content):
                raise RuntimeError("store offline")

            async def add_detection_result(self, conversation_id, result):
                raise RuntimeError("store offline")

        provider = FakeProvider(
            completions={HIERARCHICAL: json.dumps({"topLevelIntent": {"intent": "greeting", "confidence": 0.9}})}
        )
        detector = IntentDetector(provider, context_manager=OfflineStore(ContextSettings()), settings=DetectionSettings())

        result = await detector.classify_hierarchical_intent("hello", "conv-1")

        assert result.top_level_intent.intent == "greeting"
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self):
        """Provider errors are not swallowed."""
        provider = FakeProvider(completions={HIERARCHICAL: ProviderError("down")})
        detector = IntentDetector(provider, settings=DetectionSettings())
        with pytest.raises(ProviderError):
            await detector.classify_hierarchical_intent("hello")


class TestDetectWithReasoning:
    """Test chain-of-thought detection."""

    @pytest.mark.asyncio
    async def test_reasoning_result(self):
        """Conclusion, confidence and suggested actions are carried over."""
        provider = FakeProvider(
            completions={
                REASONING_VERIFY: json.dumps({"isValid": True}),
                REASONING_DRAFT: json.dumps({
                    "reasoning": [{"step": 1, "thought": "t", "conclusion": "c"}],
                    "finalConclusion": "Compare both plans",
                    "confidenceScore": 0.75,
                    "suggestedActions": ["Show plan comparison"],
                }),
            }
        )
        store = ContextManager(ContextSettings())
        detector = IntentDetector(provider, context_manager=store, settings=DetectionSettings())

        result = await detector.detect_with_reasoning("which plan is cheaper long term?", "conv-1")

        assert result.intent == REASONING_INTENT
        assert result.confidence == 0.75
        assert result.explanation == "Compare both plans"
        action = result.entities[-1]
        assert (action.type, action.value, action.confidence) == ("suggested_action", "Show plan comparison", 0.75)
        context = await store.get_context("conv-1")
        assert context.detected_intents[0].intent == REASONING_INTENT

    @pytest.mark.asyncio
    async def test_reasoning_error(self):
        """Reasoning failures report an unknown intent."""
        provider = FakeProvider(completions={REASONING_DRAFT: ProviderError("down")})
        detector = IntentDetector(provider, settings=DetectionSettings())

        result = await detector.detect_with_reasoning("which plan is cheaper long term?")

        assert result.intent == "unknown"
        assert result.confidence == 0.0
        assert result.explanation == "Unable to provide reasoning due to an error"
