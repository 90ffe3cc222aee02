"""
Intent Detector

LLM-based intent detection, complementing the embedding classifier for
open-ended queries. Low-confidence detections go through self-verification
and then the fallback ladder; the fallback outcome is annotated onto the
returned result as entities so it survives into conversation context.
"""

from typing import List, Optional, Sequence

from intent.config import DetectionSettings, get_detection_settings
from intent.context_manager import ContextManager
from intent.fallback_manager import FallbackManager, FallbackResult
from intent.llm_client import BaseLLMClient
from intent.output_parser import parse_llm_output
from intent.reasoning_engine import ReasoningEngine
from models.conversation import ConversationMessage, Entity
from models.detection import HierarchicalIntentResult, IntentDetectionResult
from models.llm_outputs import (
    HierarchicalIntentPayload,
    IntentDetectionPayload,
    IntentVerificationPayload,
)
from observability.logging_config import get_logger

logger = get_logger(__name__)

DETECTION_SAMPLING = {"temperature": 0.1, "top_p": 0.95}

REASONING_INTENT = "complex_reasoning"
ANNOTATION_CONFIDENCE = 1.0
NO_CONTEXT = "No conversation context available."


INTENT_DETECTION_PROMPT = """You are an intent classification system. Determine the most likely intent of the user query below.

User query: "{query}"

Respond with a JSON object in this format:
{{
  "intent": "<intent_name>",
  "confidence": <0.0 to 1.0>,
  "explanation": "<short reason>",
  "entities": [
    {{
      "type": "<entity_type>",
      "value": "<entity_value>",
      "confidence": <0.0 to 1.0>
    }}
  ]
}}

Return only the JSON object."""

CONTEXT_AWARE_PROMPT = """You are an intent classification system. Determine the intent of the latest user query in light of the conversation so far.

{context}

Latest user query: "{query}"

Respond with a JSON object in this format:
{{
  "intent": "<intent_name>",
  "confidence": <0.0 to 1.0>,
  "explanation": "<short reason, including how the context influenced it>",
  "entities": [
    {{
      "type": "<entity_type>",
      "value": "<entity_value>",
      "confidence": <0.0 to 1.0>
    }}
  ]
}}

Return only the JSON object."""

INTENT_VERIFICATION_PROMPT = """Review this intent classification:

User query: "{query}"
Classified intent: "{intent}"
Confidence: {confidence:.2f}

Is the classification correct? If not, give the correct intent.

Respond with a JSON object in this format:
{{
  "isCorrect": <true or false>,
  "correctedIntent": "<intent name if corrected>",
  "confidence": <0.0 to 1.0>,
  "explanation": "<short reason>"
}}

Return only the JSON object."""

HIERARCHICAL_INTENT_PROMPT = """You are a hierarchical intent classification system. Identify the top-level intent of the user query below and any sub-intents it contains.

User query: "{query}"

Respond with a JSON object in this format:
{{
  "topLevelIntent": {{
    "intent": "<intent_name>",
    "confidence": <0.0 to 1.0>,
    "explanation": "<short reason>"
  }},
  "subIntents": [
    {{
      "intent": "<sub_intent_name>",
      "confidence": <0.0 to 1.0>,
      "explanation": "<short reason>"
    }}
  ]
}}

Return only the JSON object."""


def annotate_fallback(result: IntentDetectionResult, fallback: FallbackResult) -> IntentDetectionResult:
    """
    Copy of the result with the fallback outcome attached as entities.

    Adds fallback_level, requires_clarification and clarification_question_N
    when user interaction is needed, and fallback_reason.
    """
    annotated = result.model_copy(deep=True)
    if not annotated.has_entity("fallback_level"):
        annotated.entities.append(
            Entity(
                type="fallback_level",
                value=fallback.fallback_level.value,
                confidence=ANNOTATION_CONFIDENCE,
            )
        )

    if fallback.requires_user_interaction:
        annotated.entities.append(
            Entity(type="requires_clarification", value="true", confidence=ANNOTATION_CONFIDENCE)
        )
        for i, question in enumerate(fallback.clarification_questions, start=1):
            annotated.entities.append(
                Entity(type=f"clarification_question_{i}", value=question, confidence=ANNOTATION_CONFIDENCE)
            )

    if fallback.fallback_reason:
        annotated.entities.append(
            Entity(type="fallback_reason", value=fallback.fallback_reason, confidence=ANNOTATION_CONFIDENCE)
        )
    return annotated


class IntentDetector:
    """
    Detect intents with the completion provider.

    Features:
    - Context-aware prompts from a stored conversation or caller-supplied turns
    - Hierarchical classification into top-level and sub-intents
    - Self-verification of low-confidence detections
    - Fallback escalation with result annotation
    - Chain-of-thought detection for complex queries
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        context_manager: Optional[ContextManager] = None,
        fallback_manager: Optional[FallbackManager] = None,
        reasoning_engine: Optional[ReasoningEngine] = None,
        settings: Optional[DetectionSettings] = None,
    ):
        self.llm = llm_client
        self.context_manager = context_manager
        self.fallback_manager = fallback_manager
        self.settings = settings or get_detection_settings()
        self.reasoning_engine = reasoning_engine or ReasoningEngine(llm_client, self.settings)

    def is_confident(self, confidence: float) -> bool:
        return confidence >= self.settings.confidence_threshold

    async def detect_intent(
        self,
        query: str,
        conversation_id: Optional[str] = None,
    ) -> IntentDetectionResult:
        """
        Detect the intent of a query.

        With a conversation id the user message is recorded, the context
        summary is folded into the prompt and the result is stored back.
        A failure on that path before detection completes falls back to
        context-less detection; a failure to record the result is only logged.

        Raises:
            ValueError: If the query is empty
            ProviderError: If the provider cannot be reached
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")

        if conversation_id and self.context_manager is not None:
            try:
                return await self._detect_with_context(query, conversation_id)
            except Exception as e:
                logger.warning(
                    "context_detection_failed",
                    conversation_id=conversation_id,
                    error=str(e),
                )

        result = await self._detect(INTENT_DETECTION_PROMPT.format(query=query), query)

        if self.settings.enable_self_verification and not self.is_confident(result.confidence):
            logger.debug("intent_self_verification", confidence=result.confidence)
            result = await self._verify_intent(query, result)

        result = await self._apply_fallback(query, result, None)
        await self._record_detection(conversation_id, result)
        return result

    async def _detect_with_context(self, query: str, conversation_id: str) -> IntentDetectionResult:
        await self.context_manager.add_user_message(conversation_id, query)
        summary = await self.context_manager.generate_context_summary(
            conversation_id,
            self.settings.max_context_window_messages,
        )

        result = await self._detect(CONTEXT_AWARE_PROMPT.format(context=summary, query=query), query)
        result = await self._apply_fallback(query, result, conversation_id)

        # Detection already ran; a failed write must not trigger a second one
        await self._record_detection(conversation_id, result)
        logger.info(
            "intent_detected",
            conversation_id=conversation_id,
            intent=result.intent,
            confidence=result.confidence,
        )
        return result

    async def _detect(self, prompt: str, query: str) -> IntentDetectionResult:
        response = await self.llm.generate_completion(self.settings.model_name, prompt, dict(DETECTION_SAMPLING))

        parsed = parse_llm_output(response, IntentDetectionPayload)
        if not parsed.ok:
            return IntentDetectionResult(
                intent="unknown",
                confidence=0.0,
                query=query,
                explanation="Failed to parse intent detection response",
            )

        payload = parsed.value
        return IntentDetectionResult(
            intent=payload.intent,
            confidence=payload.confidence,
            query=query,
            explanation=payload.explanation,
            entities=[Entity(type=e.type, value=e.value, confidence=e.confidence) for e in payload.entities],
        )

    async def _verify_intent(self, query: str, initial: IntentDetectionResult) -> IntentDetectionResult:
        prompt = INTENT_VERIFICATION_PROMPT.format(
            query=query,
            intent=initial.intent,
            confidence=initial.confidence,
        )
        try:
            response = await self.llm.generate_completion(self.settings.model_name, prompt, dict(DETECTION_SAMPLING))
        except Exception as e:
            logger.warning("intent_verification_failed", error=str(e))
            return initial

        verification = parse_llm_output(response, IntentVerificationPayload)
        if not verification.ok or verification.value.is_correct:
            return initial

        payload = verification.value
        corrected = IntentDetectionResult(
            intent=payload.corrected_intent or initial.intent,
            confidence=initial.confidence if payload.confidence is None else payload.confidence,
            query=query,
            explanation=payload.explanation or initial.explanation,
            entities=list(initial.entities),
        )
        logger.info("intent_corrected", original=initial.intent, corrected=corrected.intent)
        return corrected

    async def _apply_fallback(
        self,
        query: str,
        result: IntentDetectionResult,
        conversation_id: Optional[str],
    ) -> IntentDetectionResult:
        if self.fallback_manager is None or not self.fallback_manager.needs_fallback(result):
            return result

        logger.info("detection_needs_fallback", intent=result.intent, confidence=result.confidence)
        fallback = await self.fallback_manager.apply_fallback(query, result, conversation_id)
        return annotate_fallback(fallback.final_result, fallback)

    async def _record_detection(self, conversation_id: Optional[str], result: IntentDetectionResult):
        if not conversation_id or self.context_manager is None:
            return
        try:
            await self.context_manager.add_detection_result(conversation_id, result)
        except Exception as e:
            logger.warning("detection_record_failed", conversation_id=conversation_id, error=str(e))

    def format_conversation_messages(self, messages: Optional[Sequence[ConversationMessage]]) -> str:
        """Most recent turns, oldest first, under a history heading."""
        if not messages:
            return NO_CONTEXT
        ordered = sorted(messages, key=lambda m: m.timestamp)
        window = ordered[-self.settings.max_context_window_messages:]
        lines = ["Conversation history:"]
        lines.extend(f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}" for m in window)
        return "\n".join(lines)

    async def detect_intent_with_messages(
        self,
        query: str,
        messages: Optional[Sequence[ConversationMessage]],
    ) -> IntentDetectionResult:
        """
        Detect intent against caller-supplied conversation turns.

        Nothing is read from or written to the context store. Low-confidence
        results escalate through the fallback ladder with the same turns and
        come back annotated.

        Raises:
            ValueError: If the query is empty
            ProviderError: If the provider cannot be reached
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")

        messages = list(messages or [])
        prompt = CONTEXT_AWARE_PROMPT.format(context=self.format_conversation_messages(messages), query=query)
        result = await self._detect(prompt, query)

        if self.fallback_manager is not None and self.fallback_manager.needs_fallback(result):
            logger.info("detection_needs_fallback", intent=result.intent, confidence=result.confidence)
            fallback = await self.fallback_manager.apply_fallback_with_context(query, result, messages)
            result = annotate_fallback(fallback.final_result, fallback)

        logger.info(
            "intent_detected",
            intent=result.intent,
            confidence=result.confidence,
            message_count=len(messages),
        )
        return result

    async def classify_hierarchical_intent(
        self,
        query: str,
        conversation_id: Optional[str] = None,
    ) -> HierarchicalIntentResult:
        """
        Classify a query into a top-level intent and its sub-intents.

        With a conversation id the user message and the top-level intent are
        recorded; failures to record are logged and ignored.

        Raises:
            ValueError: If the query is empty
            ProviderError: If the provider cannot be reached
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")

        if conversation_id and self.context_manager is not None:
            try:
                await self.context_manager.add_user_message(conversation_id, query)
            except Exception as e:
                logger.warning("user_message_record_failed", conversation_id=conversation_id, error=str(e))

        response = await self.llm.generate_completion(
            self.settings.model_name,
            HIERARCHICAL_INTENT_PROMPT.format(query=query),
            dict(DETECTION_SAMPLING),
        )
        result = self._parse_hierarchy(response, query)

        logger.info(
            "hierarchical_intent_classified",
            intent=result.top_level_intent.intent,
            sub_intent_count=len(result.sub_intents),
        )
        await self._record_detection(conversation_id, result.top_level_intent)
        return result

    @staticmethod
    def _parse_hierarchy(response: str, query: str) -> HierarchicalIntentResult:
        parsed = parse_llm_output(response, HierarchicalIntentPayload)
        if not parsed.ok:
            return HierarchicalIntentResult(
                top_level_intent=IntentDetectionResult(
                    intent="parse_error",
                    confidence=0.0,
                    query=query,
                    explanation="Failed to parse LLM response",
                )
            )

        payload = parsed.value
        if payload.top_level_intent is None:
            top = IntentDetectionResult(
                intent="unknown",
                confidence=0.0,
                query=query,
                explanation="No top-level intent found in response",
            )
        else:
            top = IntentDetectionResult(
                intent=payload.top_level_intent.intent,
                confidence=payload.top_level_intent.confidence,
                query=query,
                explanation=payload.top_level_intent.explanation,
            )
        subs = [
            IntentDetectionResult(intent=s.intent, confidence=s.confidence, query=query, explanation=s.explanation)
            for s in payload.sub_intents
        ]
        return HierarchicalIntentResult(top_level_intent=top, sub_intents=subs)

    async def detect_with_reasoning(
        self,
        query: str,
        conversation_id: Optional[str] = None,
    ) -> IntentDetectionResult:
        """
        Detect intent through chain-of-thought reasoning.

        The conclusion becomes the explanation; suggested actions are added
        as suggested_action entities.
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")

        messages: List[ConversationMessage] = []
        if conversation_id and self.context_manager is not None:
            try:
                context = await self.context_manager.get_context(conversation_id)
                if context is not None:
                    messages = context.get_relevant_history(self.settings.max_context_window_messages)
            except Exception as e:
                logger.warning("reasoning_context_unavailable", conversation_id=conversation_id, error=str(e))

        reasoning = await self.reasoning_engine.perform_reasoning(query, messages)

        entities = list(reasoning.extracted_entities)
        entities.extend(
            Entity(type="suggested_action", value=action, confidence=reasoning.confidence_score)
            for action in reasoning.suggested_actions
        )
        result = IntentDetectionResult(
            intent="unknown" if reasoning.has_error else REASONING_INTENT,
            confidence=reasoning.confidence_score,
            query=query,
            explanation=reasoning.final_conclusion,
            entities=entities,
        )

        if not reasoning.has_error:
            await self._record_detection(conversation_id, result)

        return result
