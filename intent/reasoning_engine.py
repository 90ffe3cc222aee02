"""
Reasoning Engine

Chain-of-thought reasoning for complex queries, as a two-phase pipeline:

    draft = await engine.draft(query, messages)
    verification = await engine.verify(draft)
    final = reconcile(draft, verification)

reconcile() is pure: it never mutates the draft.
"""

import json
import time
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence

from intent.config import DetectionSettings, get_detection_settings
from intent.llm_client import BaseLLMClient
from intent.output_parser import parse_llm_output
from models.conversation import ConversationMessage, Entity
from models.llm_outputs import ChainOfThoughtPayload, VerificationPayload
from observability.logging_config import get_logger
from observability.metrics import metrics

logger = get_logger(__name__)

DRAFT_SAMPLING = {"temperature": 0.2, "top_p": 0.95, "max_tokens": 2048}
VERIFY_SAMPLING = {"temperature": 0.1, "top_p": 0.95, "max_tokens": 1024}


CHAIN_OF_THOUGHT_PROMPT = """You are a reasoning assistant. Think step by step about the request below.

{query}

Previous context:
{context}

Work through these steps:
1. Parse and clarify the request
2. Identify key entities and their relationships
3. Consider potential approaches to the request
4. Analyze constraints and limitations
5. Develop a multi-step solution plan
6. Refine and validate the solution

Respond with a JSON object in this format:
{{
  "reasoning": [
    {{
      "step": 1,
      "thought": "<your thinking for this step>",
      "conclusion": "<what this step concluded>"
    }}
  ],
  "finalConclusion": "<final conclusion>",
  "confidenceScore": <0.0 to 1.0>,
  "entities": [
    {{
      "type": "<entity_type>",
      "value": "<entity_value>",
      "importance": <0 to 10>
    }}
  ],
  "suggestedActions": ["<action>"]
}}"""

SELF_VERIFICATION_PROMPT = """Review this chain-of-thought reasoning for logical consistency, factual accuracy and sound conclusions:

{draft}

Check:
1. Are the steps logically connected?
2. Are there factual errors?
3. Does the reasoning support the conclusion?
4. Are there incorrect assumptions?
5. Could the reasoning be improved?

Respond with a JSON object in this format:
{{
  "isValid": <true or false>,
  "confidenceScore": <0.0 to 1.0>,
  "issues": [
    {{
      "step": <step_number>,
      "issue": "<what is wrong>",
      "correction": "<corrected conclusion for that step>"
    }}
  ],
  "improvedConclusion": "<improved conclusion if any>"
}}"""


@dataclass
class ChainOfThoughtStep:
    step_number: int
    thought: str = ""
    conclusion: str = ""
    is_revised: bool = False


@dataclass
class ChainOfThoughtResult:
    """Reasoning steps, conclusion and extracted entities for one query."""

    reasoning_steps: List[ChainOfThoughtStep] = field(default_factory=list)
    final_conclusion: str = ""
    confidence_score: float = 0.0
    extracted_entities: List[Entity] = field(default_factory=list)
    suggested_actions: List[str] = field(default_factory=list)
    is_verified: bool = False
    has_error: bool = False
    error_message: Optional[str] = None

    @property
    def revised_steps(self) -> List[ChainOfThoughtStep]:
        return [s for s in self.reasoning_steps if s.is_revised]

    def get_key_reasoning_steps(self, max_steps: int = 3) -> List[ChainOfThoughtStep]:
        """
        Most informative steps for a summary.

        First step, revised steps, last step, then evenly spaced steps to
        fill the remaining slots; returned in step order.
        """
        steps = self.reasoning_steps
        if len(steps) <= max_steps:
            return list(steps)

        selected: List[ChainOfThoughtStep] = [steps[0]]

        for step in self.revised_steps[: max(0, max_steps - 2)]:
            if step not in selected:
                selected.append(step)

        if len(selected) < max_steps and steps[-1] not in selected:
            selected.append(steps[-1])

        if len(selected) < max_steps:
            remaining = max_steps - len(selected)
            interval = len(steps) // (remaining + 1)
            for i in range(1, remaining + 1):
                index = i * interval
                if 0 < index < len(steps) - 1 and steps[index] not in selected:
                    selected.append(steps[index])

        return sorted(selected, key=lambda s: s.step_number)

    def to_dict(self) -> Dict:
        return {
            "reasoning": [
                {
                    "step": s.step_number,
                    "thought": s.thought,
                    "conclusion": s.conclusion,
                    "is_revised": s.is_revised,
                }
                for s in self.reasoning_steps
            ],
            "final_conclusion": self.final_conclusion,
            "confidence_score": self.confidence_score,
            "entities": [e.model_dump(exclude_none=True) for e in self.extracted_entities],
            "suggested_actions": list(self.suggested_actions),
            "is_verified": self.is_verified,
            "has_error": self.has_error,
            "error_message": self.error_message,
        }


def error_result(message: str) -> ChainOfThoughtResult:
    """Result returned when reasoning could not be performed."""
    return ChainOfThoughtResult(
        reasoning_steps=[
            ChainOfThoughtStep(
                step_number=1,
                thought="Error occurred during reasoning",
                conclusion=message,
            )
        ],
        final_conclusion="Unable to provide reasoning due to an error",
        confidence_score=0.0,
        has_error=True,
        error_message=message,
    )


def from_payload(payload: ChainOfThoughtPayload) -> ChainOfThoughtResult:
    return ChainOfThoughtResult(
        reasoning_steps=[
            ChainOfThoughtStep(step_number=s.step, thought=s.thought, conclusion=s.conclusion)
            for s in payload.reasoning
        ],
        final_conclusion=payload.final_conclusion,
        confidence_score=payload.confidence_score,
        extracted_entities=[
            Entity(type=e.type, value=e.value, confidence=e.confidence) for e in payload.entities
        ],
        suggested_actions=list(payload.suggested_actions),
    )


def reconcile(
    draft: ChainOfThoughtResult,
    verification: Optional[VerificationPayload],
) -> ChainOfThoughtResult:
    """
    Combine a draft with its verification into the final result.

    Valid verdict: draft kept, confidence raised to max(draft, verified).
    Invalid verdict: corrections replace the conclusions of the referenced
    1-based steps, conclusion and confidence come from the verifier (the
    draft's when absent). No verification: the draft unchanged.
    """
    if verification is None:
        return draft

    if verification.is_valid:
        verified = verification.confidence_score
        confidence = draft.confidence_score if verified is None else max(draft.confidence_score, verified)
        return replace(
            draft,
            reasoning_steps=[replace(s) for s in draft.reasoning_steps],
            confidence_score=confidence,
            is_verified=True,
        )

    steps = [replace(s) for s in draft.reasoning_steps]
    for issue in verification.issues:
        index = issue.step - 1
        if 0 <= index < len(steps) and issue.correction:
            steps[index] = replace(steps[index], conclusion=issue.correction, is_revised=True)

    return replace(
        draft,
        reasoning_steps=steps,
        final_conclusion=verification.improved_conclusion or draft.final_conclusion,
        confidence_score=(
            draft.confidence_score
            if verification.confidence_score is None
            else verification.confidence_score
        ),
        extracted_entities=list(draft.extracted_entities),
        suggested_actions=list(draft.suggested_actions),
        is_verified=True,
    )


class ReasoningEngine:
    """Chain-of-thought reasoning with optional self-verification."""

    def __init__(
        self,
        llm_client: BaseLLMClient,
        settings: Optional[DetectionSettings] = None,
    ):
        self.llm = llm_client
        self.settings = settings or get_detection_settings()

    @staticmethod
    def format_conversation_context(messages: Optional[Sequence[ConversationMessage]]) -> str:
        if not messages:
            return "No previous context available."
        ordered = sorted(messages, key=lambda m: m.timestamp)
        return "\n".join(f"{m.role}: {m.content}" for m in ordered)

    async def perform_reasoning(
        self,
        query: str,
        conversation_messages: Optional[Sequence[ConversationMessage]] = None,
    ) -> ChainOfThoughtResult:
        """
        Reason about a query step by step.

        Provider and parse failures produce an error result (has_error set)
        instead of raising.

        Raises:
            ValueError: If the query is empty
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")

        start_time = time.perf_counter()
        try:
            draft = await self.draft(query, conversation_messages)
        except Exception as e:
            logger.error("reasoning_failed", error=str(e), error_type=type(e).__name__)
            return error_result(f"Error during reasoning: {e}")

        if draft is None:
            return error_result("Failed to parse reasoning response")

        result = draft
        if self.settings.enable_self_verification:
            result = reconcile(draft, await self.verify(draft))

        revised = bool(result.revised_steps)
        metrics.record_reasoning(verified=result.is_verified, revised=revised)
        logger.info(
            "reasoning_completed",
            steps=len(result.reasoning_steps),
            confidence=round(result.confidence_score, 4),
            verified=result.is_verified,
            revised=revised,
            latency_ms=int((time.perf_counter() - start_time) * 1000),
        )
        return result

    async def draft(
        self,
        query: str,
        conversation_messages: Optional[Sequence[ConversationMessage]] = None,
    ) -> Optional[ChainOfThoughtResult]:
        """First pass. Returns None when the response cannot be parsed."""
        prompt = CHAIN_OF_THOUGHT_PROMPT.format(
            query=query,
            context=self.format_conversation_context(conversation_messages),
        )
        response = await self.llm.generate_completion(self.settings.model_name, prompt, dict(DRAFT_SAMPLING))

        parsed = parse_llm_output(response, ChainOfThoughtPayload)
        if not parsed.ok:
            return None
        return from_payload(parsed.value)

    async def verify(self, draft: ChainOfThoughtResult) -> Optional[VerificationPayload]:
        """
        Second pass critique of a draft.

        Returns None when the provider fails or the critique is malformed,
        which leaves the draft as the final result.
        """
        prompt = SELF_VERIFICATION_PROMPT.format(draft=json.dumps(draft.to_dict(), indent=2))
        try:
            response = await self.llm.generate_completion(self.settings.model_name, prompt, dict(VERIFY_SAMPLING))
        except Exception as e:
            logger.error("reasoning_verification_failed", error=str(e))
            return None

        parsed = parse_llm_output(response, VerificationPayload)
        if not parsed.ok:
            return None
        return parsed.value
