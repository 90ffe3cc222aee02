"""
Fallback Manager

Tiered escalation for low-confidence or failed classifications:

    1. REQUEST_CLARIFICATION      better alternatives found, ask the user
    2. GENERALIZED_INTENT         reclassify into a broader category
    3. PARTIAL_INTENT_EXTRACTION  keep whatever entities can be extracted
    4. EXPLICIT_HANDOFF           give up, hand over to a human/other system

Tiers run strictly in order and each one degrades to "no result" on
provider or parse failures. apply_fallback() never raises for escalation
errors: anything unexpected becomes an explicit handoff with the error
recorded.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

from intent.classification import ClassificationResult
from intent.config import FallbackSettings, get_fallback_settings
from intent.context_manager import ContextStore
from intent.llm_client import BaseLLMClient
from intent.output_parser import (
    parse_llm_list,
    parse_llm_output,
    salvage_questions,
)
from models.conversation import ConversationMessage, Entity, utcnow
from models.detection import IntentDetectionResult
from models.llm_outputs import (
    AlternativeIntentPayload,
    GeneralizedIntentPayload,
    PartialIntentPayload,
)
from observability.logging_config import get_logger, log_context
from observability.metrics import metrics

logger = get_logger(__name__)

MISSING_INFORMATION_ENTITY = "missing_information"
NEXT_STEP_ENTITY = "next_step"
ANNOTATION_CONFIDENCE = 0.9

ALTERNATIVES_SAMPLING = {"temperature": 0.7, "top_p": 0.95}
CLARIFICATION_SAMPLING = {"temperature": 0.7, "top_p": 0.95}
GENERALIZE_SAMPLING = {"temperature": 0.4, "top_p": 0.95}
PARTIAL_SAMPLING = {"temperature": 0.3, "top_p": 0.95}

ROLE_LABELS = {"user": "User", "assistant": "Assistant", "system": "System"}


ALTERNATIVE_INTENTS_PROMPT = """You are an intent classification assistant. A user's query was classified with low confidence.
Suggest other intents the user may have meant.

User query: "{query}"

Initial classification:
- Intent: {intent}
- Confidence: {confidence:.2f}
- Explanation: {explanation}

Respond with a JSON array of alternatives in this format:
[
  {{
    "intent": "<alternative_intent_name>",
    "confidence": <0.0 to 1.0>,
    "explanation": "<why this could be the intended meaning>"
  }}
]

Return only the JSON array."""

CLARIFICATION_QUESTIONS_PROMPT = """You are helping to disambiguate a user's request. The intended meaning is unclear.

User query: "{query}"

Candidate intents:
{alternatives}

Write {count} short, friendly questions that would tell these candidates apart.
Avoid technical wording.

Respond with a JSON array of strings:
[
  "<question 1>",
  "<question 2>"
]

Return only the JSON array."""

GENERALIZED_INTENT_PROMPT = """You are an intent classification assistant. The query below did not match any specific intent.
Classify it into a broader category of request instead.

User query: "{query}"

{context}

Respond with a JSON object in this format:
{{
  "intent": "<broader_intent_category>",
  "confidence": <0.0 to 1.0>,
  "explanation": "<short reason for the category>",
  "suggestedNextStep": "<what the system should do next>"
}}

Return only the JSON object."""

PARTIAL_INTENT_PROMPT = """You are an intent analysis assistant. The query below is ambiguous.
Extract whatever intent and entities can be identified, even if incomplete.

User query: "{query}"

{context}

Respond with a JSON object in this format:
{{
  "partialIntent": "<what can be determined about the intent>",
  "confidence": <0.0 to 1.0>,
  "extractedEntities": [
    {{
      "type": "<entity_type>",
      "value": "<entity_value>",
      "confidence": <0.0 to 1.0>
    }}
  ],
  "missingInformation": "<what is needed to fully understand the query>"
}}

Return only the JSON object."""


class FallbackLevel(str, Enum):
    """Escalation tier reached, in the order tiers are attempted."""

    NONE = "none"
    REQUEST_CLARIFICATION = "request_clarification"
    GENERALIZED_INTENT = "generalized_intent"
    PARTIAL_INTENT_EXTRACTION = "partial_intent_extraction"
    EXPLICIT_HANDOFF = "explicit_handoff"


@dataclass
class MisclassificationData:
    """Audit record of one fallback attempt."""

    original_query: str
    actual_intent: str
    confidence: float
    fallback_applied: FallbackLevel = FallbackLevel.NONE
    fallback_successful: bool = False
    expected_intent: Optional[str] = None
    user_feedback: Optional[str] = None
    additional_details: Dict[str, str] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "original_query": self.original_query,
            "expected_intent": self.expected_intent,
            "actual_intent": self.actual_intent,
            "confidence": self.confidence,
            "fallback_applied": self.fallback_applied.value,
            "fallback_successful": self.fallback_successful,
            "user_feedback": self.user_feedback,
            "additional_details": dict(self.additional_details),
        }


@dataclass
class FallbackResult:
    """Outcome of an escalation."""

    fallback_level: FallbackLevel
    original_result: IntentDetectionResult
    final_result: IntentDetectionResult
    is_successful: bool
    fallback_reason: str
    requires_user_interaction: bool = False
    alternatives: List[IntentDetectionResult] = field(default_factory=list)
    clarification_questions: List[str] = field(default_factory=list)
    misclassification_data: Optional[MisclassificationData] = None
    classification: Optional[ClassificationResult] = None

    def to_dict(self) -> Dict:
        return {
            "fallback_level": self.fallback_level.value,
            "original_result": self.original_result.model_dump(),
            "final_result": self.final_result.model_dump(),
            "alternatives": [a.model_dump() for a in self.alternatives],
            "clarification_questions": list(self.clarification_questions),
            "is_successful": self.is_successful,
            "fallback_reason": self.fallback_reason,
            "requires_user_interaction": self.requires_user_interaction,
            "misclassification_data": (
                self.misclassification_data.to_dict() if self.misclassification_data else None
            ),
        }


FallbackInput = Union[ClassificationResult, IntentDetectionResult]


def to_detection_result(query: str, result: FallbackInput) -> IntentDetectionResult:
    """
    Normalize a classification into the single-hypothesis form the tiers use.

    A classification without matches becomes intent "unknown" at 0.0.
    """
    if isinstance(result, IntentDetectionResult):
        return result
    top = result.top_match
    if top is None:
        return IntentDetectionResult(
            intent="unknown",
            confidence=0.0,
            query=query,
            explanation=result.explanation or None,
        )
    return IntentDetectionResult(
        intent=top.intent_name,
        confidence=top.confidence,
        query=query,
        explanation=result.explanation or None,
    )


class FallbackManager:
    """
    Four-level fallback escalation.

    Usage:
        manager = FallbackManager(llm_client, context_store)
        if manager.needs_fallback(result):
            fallback = await manager.apply_fallback(query, result, conversation_id)
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        context_store: Optional[ContextStore] = None,
        settings: Optional[FallbackSettings] = None,
    ):
        self.llm = llm_client
        self.context_store = context_store
        self.settings = settings or get_fallback_settings()

    def needs_fallback(self, result: Optional[FallbackInput]) -> bool:
        """True when there is no result or its confidence is below the fallback threshold."""
        if result is None:
            return True
        if isinstance(result, ClassificationResult):
            if not result.has_matches:
                return True
            confidence = result.top_confidence
        else:
            confidence = result.confidence
        return confidence < self.settings.fallback_threshold

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def apply_fallback(
        self,
        query: str,
        result: FallbackInput,
        conversation_id: Optional[str] = None,
    ) -> FallbackResult:
        """
        Run the escalation ladder for a low-confidence result.

        Args:
            query: The user query
            result: Classification or detection result to escalate
            conversation_id: Optional conversation whose recent turns are
                folded into every tier prompt

        Returns:
            FallbackResult at exactly one level

        Raises:
            ValueError: If the query is empty or result is None
        """
        self._validate(query, result)
        detection = to_detection_result(query, result)
        classification = result if isinstance(result, ClassificationResult) else None

        if not self.needs_fallback(result):
            return FallbackResult(
                fallback_level=FallbackLevel.NONE,
                original_result=detection,
                final_result=detection,
                is_successful=True,
                fallback_reason="No fallback needed",
                classification=classification,
            )

        with log_context(conversation_id=conversation_id):
            logger.info(
                "fallback_started",
                intent=detection.intent,
                confidence=round(detection.confidence, 4),
            )
            messages = await self._conversation_messages(conversation_id)
            fallback = await self._escalate(query, detection, messages)
            fallback.classification = classification
            return fallback

    async def apply_fallback_with_context(
        self,
        query: str,
        result: FallbackInput,
        conversation_messages: Optional[Sequence[ConversationMessage]],
    ) -> FallbackResult:
        """Run the escalation ladder with caller-supplied conversation turns."""
        self._validate(query, result)
        detection = to_detection_result(query, result)
        fallback = await self._escalate(query, detection, conversation_messages)
        if isinstance(result, ClassificationResult):
            fallback.classification = result
        return fallback

    @staticmethod
    def _validate(query: str, result: Optional[FallbackInput]):
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")
        if result is None:
            raise ValueError("Result cannot be None")

    async def _conversation_messages(
        self,
        conversation_id: Optional[str],
    ) -> Optional[List[ConversationMessage]]:
        if not conversation_id or self.context_store is None:
            return None
        try:
            context = await self.context_store.get_context(conversation_id)
        except Exception as e:
            logger.warning("fallback_context_unavailable", error=str(e))
            return None
        return list(context.messages) if context else None

    async def _escalate(
        self,
        query: str,
        detection: IntentDetectionResult,
        messages: Optional[Sequence[ConversationMessage]],
    ) -> FallbackResult:
        start_time = time.perf_counter()
        try:
            if self.settings.enable_fallback_strategies:
                fallback = await self._apply_tiered_fallback(query, detection, messages)
            else:
                fallback = self._handoff(
                    query,
                    detection,
                    reason="Fallback strategies disabled",
                )
        except Exception as e:
            logger.error("fallback_failed", error=str(e), error_type=type(e).__name__)
            fallback = self._handoff(
                query,
                detection,
                reason=f"Error in fallback processing: {e}",
                details={"Error": str(e)},
            )

        metrics.record_fallback(fallback.fallback_level.value, fallback.is_successful)
        logger.info(
            "fallback_completed",
            level=fallback.fallback_level.value,
            successful=fallback.is_successful,
            requires_user_interaction=fallback.requires_user_interaction,
            latency_ms=int((time.perf_counter() - start_time) * 1000),
        )
        if self.settings.learn_from_misclassifications and fallback.misclassification_data:
            await self.record_misclassification(fallback.misclassification_data)
        return fallback

    def _handoff(
        self,
        query: str,
        detection: IntentDetectionResult,
        reason: str,
        alternatives: Optional[List[IntentDetectionResult]] = None,
        details: Optional[Dict[str, str]] = None,
    ) -> FallbackResult:
        return FallbackResult(
            fallback_level=FallbackLevel.EXPLICIT_HANDOFF,
            original_result=detection,
            final_result=detection,
            is_successful=False,
            fallback_reason=reason,
            requires_user_interaction=True,
            alternatives=list(alternatives or []),
            misclassification_data=MisclassificationData(
                original_query=query,
                actual_intent=detection.intent,
                confidence=detection.confidence,
                fallback_applied=FallbackLevel.EXPLICIT_HANDOFF,
                fallback_successful=False,
                additional_details=dict(details or {}),
            ),
        )

    async def _apply_tiered_fallback(
        self,
        query: str,
        detection: IntentDetectionResult,
        messages: Optional[Sequence[ConversationMessage]],
    ) -> FallbackResult:
        record = MisclassificationData(
            original_query=query,
            actual_intent=detection.intent,
            confidence=detection.confidence,
        )

        # Level 1
        alternatives = await self._find_alternative_intents(query, detection, messages)
        if any(a.confidence > detection.confidence for a in alternatives):
            logger.debug("fallback_tier_selected", level=FallbackLevel.REQUEST_CLARIFICATION.value)
            questions = await self.generate_clarification_questions(
                query,
                alternatives,
                self.settings.max_clarification_questions,
            )
            record.fallback_applied = FallbackLevel.REQUEST_CLARIFICATION
            record.fallback_successful = bool(questions)
            return FallbackResult(
                fallback_level=FallbackLevel.REQUEST_CLARIFICATION,
                original_result=detection,
                final_result=alternatives[0],
                is_successful=bool(questions),
                fallback_reason="Low confidence classification, requesting clarification",
                requires_user_interaction=True,
                alternatives=alternatives,
                clarification_questions=questions,
                misclassification_data=record,
            )

        # Level 2
        generalized = await self._generalize_intent(query, messages)
        if generalized is not None and generalized.confidence >= self.settings.generalized_intent_threshold:
            logger.debug("fallback_tier_selected", level=FallbackLevel.GENERALIZED_INTENT.value)
            record.fallback_applied = FallbackLevel.GENERALIZED_INTENT
            record.fallback_successful = True
            return FallbackResult(
                fallback_level=FallbackLevel.GENERALIZED_INTENT,
                original_result=detection,
                final_result=generalized,
                is_successful=True,
                fallback_reason="Using generalized intent approach",
                alternatives=alternatives,
                misclassification_data=record,
            )

        # Level 3
        partial = await self._extract_partial_intent(query, messages)
        if partial is not None and self._has_confident_entity(partial):
            logger.debug("fallback_tier_selected", level=FallbackLevel.PARTIAL_INTENT_EXTRACTION.value)
            record.fallback_applied = FallbackLevel.PARTIAL_INTENT_EXTRACTION
            record.fallback_successful = True
            return FallbackResult(
                fallback_level=FallbackLevel.PARTIAL_INTENT_EXTRACTION,
                original_result=detection,
                final_result=partial,
                is_successful=True,
                fallback_reason="Extracted partial intent information",
                alternatives=alternatives,
                misclassification_data=record,
            )

        # Level 4
        logger.debug("fallback_tier_selected", level=FallbackLevel.EXPLICIT_HANDOFF.value)
        return self._handoff(
            query,
            detection,
            reason="All fallback strategies failed",
            alternatives=alternatives,
        )

    def _has_confident_entity(self, partial: IntentDetectionResult) -> bool:
        threshold = self.settings.partial_intent_threshold
        return any(
            e.confidence >= threshold
            for e in partial.entities
            if e.type != MISSING_INFORMATION_ENTITY
        )

    # -------------------------------------------------------------------------
    # Tiers
    # -------------------------------------------------------------------------

    async def _find_alternative_intents(
        self,
        query: str,
        original: IntentDetectionResult,
        messages: Optional[Sequence[ConversationMessage]],
    ) -> List[IntentDetectionResult]:
        """Alternatives other than the original, above the minimum confidence, best first."""
        prompt = ALTERNATIVE_INTENTS_PROMPT.format(
            query=query,
            intent=original.intent,
            confidence=original.confidence,
            explanation=original.explanation or "No explanation provided",
        )
        context = self.format_conversation_context(messages)
        if context:
            prompt = f"Context information:\n{context}\n\n{prompt}"

        try:
            response = await self.llm.generate_completion(
                self.settings.fallback_model_name, prompt, dict(ALTERNATIVES_SAMPLING)
            )
        except Exception as e:
            logger.error("alternative_intents_failed", error=str(e))
            return []

        parsed = parse_llm_list(response, AlternativeIntentPayload)
        if not parsed.ok:
            return []

        original_key = original.intent.casefold()
        candidates = [
            IntentDetectionResult(
                intent=payload.intent,
                confidence=payload.confidence,
                query=query,
                explanation=payload.explanation,
            )
            for payload in parsed.value
            if payload.intent.casefold() != original_key
            and payload.confidence > self.settings.min_alternative_confidence
        ]
        candidates.sort(key=lambda a: a.confidence, reverse=True)
        return candidates[: self.settings.max_alternatives]

    async def generate_clarification_questions(
        self,
        query: str,
        alternatives: List[IntentDetectionResult],
        max_questions: int = 3,
    ) -> List[str]:
        """
        Ask the provider for questions that tell the alternatives apart.

        Falls back to questions salvaged from a malformed response, then to
        one templated question about the first alternative.

        Raises:
            ValueError: If the query or alternatives are empty
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")
        if not alternatives:
            raise ValueError("Alternatives cannot be empty")

        limit = min(max_questions, self.settings.max_clarification_questions)
        templated = [self.settings.clarification_prompt_template.format(intent=alternatives[0].intent)]

        listed = "\n".join(
            f"{i}. Intent: {alt.intent}, Confidence: {alt.confidence:.2f}, "
            f"Explanation: {alt.explanation or 'none'}"
            for i, alt in enumerate(alternatives, start=1)
        )
        prompt = CLARIFICATION_QUESTIONS_PROMPT.format(query=query, alternatives=listed, count=limit)

        try:
            response = await self.llm.generate_completion(
                self.settings.fallback_model_name, prompt, dict(CLARIFICATION_SAMPLING)
            )
        except Exception as e:
            logger.error("clarification_questions_failed", error=str(e))
            return templated

        parsed = parse_llm_list(response, schema_name="clarification_questions")
        if parsed.ok:
            questions = [q.strip() for q in parsed.value if isinstance(q, str) and q.strip()]
            return questions[:limit]

        salvaged = salvage_questions(response, limit)
        if salvaged:
            logger.info("clarification_questions_salvaged", count=len(salvaged))
            return salvaged
        return templated

    async def _generalize_intent(
        self,
        query: str,
        messages: Optional[Sequence[ConversationMessage]],
    ) -> Optional[IntentDetectionResult]:
        context = self.format_conversation_context(messages)
        prompt = GENERALIZED_INTENT_PROMPT.format(
            query=query,
            context=f"Context information:\n{context}" if context else "",
        )

        try:
            response = await self.llm.generate_completion(
                self.settings.fallback_model_name, prompt, dict(GENERALIZE_SAMPLING)
            )
        except Exception as e:
            logger.error("generalize_intent_failed", error=str(e))
            return None

        parsed = parse_llm_output(response, GeneralizedIntentPayload)
        if not parsed.ok:
            return IntentDetectionResult(
                intent="unknown",
                confidence=0.0,
                query=query,
                explanation="Generalized intent could not be parsed",
            )

        payload = parsed.value
        result = IntentDetectionResult(
            intent=payload.intent,
            confidence=payload.confidence,
            query=query,
            explanation=payload.explanation,
        )
        if payload.suggested_next_step:
            result.entities.append(
                Entity(
                    type=NEXT_STEP_ENTITY,
                    value=payload.suggested_next_step,
                    confidence=ANNOTATION_CONFIDENCE,
                )
            )
        return result

    async def _extract_partial_intent(
        self,
        query: str,
        messages: Optional[Sequence[ConversationMessage]],
    ) -> Optional[IntentDetectionResult]:
        context = self.format_conversation_context(messages)
        prompt = PARTIAL_INTENT_PROMPT.format(
            query=query,
            context=f"Context information:\n{context}" if context else "",
        )

        try:
            response = await self.llm.generate_completion(
                self.settings.fallback_model_name, prompt, dict(PARTIAL_SAMPLING)
            )
        except Exception as e:
            logger.error("partial_intent_failed", error=str(e))
            return None

        parsed = parse_llm_output(response, PartialIntentPayload)
        if not parsed.ok:
            return None

        payload = parsed.value
        entities = [
            Entity(type=e.type, value=e.value, confidence=e.confidence)
            for e in payload.extracted_entities
        ]
        entities.append(
            Entity(
                type=MISSING_INFORMATION_ENTITY,
                value=payload.missing_information,
                confidence=ANNOTATION_CONFIDENCE,
            )
        )
        return IntentDetectionResult(
            intent=payload.partial_intent,
            confidence=payload.confidence,
            query=query,
            explanation=f"Partial intent extraction. Missing: {payload.missing_information}",
            entities=entities,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def format_conversation_context(
        self,
        messages: Optional[Sequence[ConversationMessage]],
    ) -> str:
        """Most recent turns, oldest first, one 'Role: content' line each."""
        if not messages:
            return ""
        ordered = sorted(messages, key=lambda m: m.timestamp)
        window = ordered[-self.settings.context_window_messages:]
        return "\n".join(
            f"{ROLE_LABELS.get(m.role.lower(), m.role)}: {m.content}" for m in window
        )

    async def record_misclassification(self, data: MisclassificationData) -> bool:
        """
        Record a fallback attempt for analytics.

        Returns:
            True once recorded
        """
        if data is None:
            raise ValueError("Misclassification data cannot be None")
        try:
            metrics.record_misclassification(data.fallback_applied.value)
            logger.info(
                "misclassification_recorded",
                record_id=data.id,
                expected_intent=data.expected_intent,
                actual_intent=data.actual_intent,
                confidence=data.confidence,
                level=data.fallback_applied.value,
                successful=data.fallback_successful,
                details=data.additional_details or None,
            )
        except Exception as e:
            logger.error("misclassification_record_failed", error=str(e))
            return False
        return True
