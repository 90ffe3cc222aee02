"""
Confidence Scorer

Combines semantic similarity with conversation signals into one confidence
value per candidate intent:

    raw        = clamp01(similarity * w_sem + context * w_ctx + history * w_hist)
    confidence = clamp(raw + boost, 0, max_confidence)

Context relevance is a property of the query within its conversation;
historical accuracy and the contextual boost are per intent.
"""

import re
from dataclasses import dataclass
from typing import Optional, Sequence

from intent.config import ClassificationSettings, get_classification_settings
from models.conversation import ConversationContext

# Context relevance levels
FOLLOW_UP_RELEVANCE = 0.8
CONTINUATION_RELEVANCE = 0.4
MINIMAL_HISTORY_RELEVANCE = 0.2
NO_HISTORY_RELEVANCE = 0.0

SHORT_QUERY_TOKENS = 3
CONTINUATION_MIN_TURNS = 2
SAMPLE_SIZE_FOR_FULL_TRUST = 5


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class ConfidenceBreakdown:
    """Scored factors for one intent."""

    semantic_similarity: float
    context_relevance: float
    historical_accuracy: float
    contextual_boost: float
    raw_score: float
    confidence: float


class ConfidenceScorer:
    """
    Multi-factor confidence scoring.

    Factors:
    - Semantic similarity of the best example
    - Context relevance (follow-up detection)
    - Historical accuracy over recent detections
    - Contextual boost for recently seen or related intents
    """

    # Back-references that only make sense against an earlier turn
    BACK_REFERENCE_PATTERNS = [
        r"\b(it|its|that|this|those|these|they|them|their|there)\b",
        r"\b(same|also|instead|again|another|other one|the other)\b",
        r"^(and|but|or|so|then)\b",
        r"^(what|how) about\b",
    ]

    def __init__(self, settings: Optional[ClassificationSettings] = None):
        self.settings = settings or get_classification_settings()
        self._back_reference_re = [re.compile(p, re.I) for p in self.BACK_REFERENCE_PATTERNS]

    def is_follow_up(self, query: str) -> bool:
        """True for short queries or queries with pronoun/implicit back-references."""
        if len(query.split()) <= SHORT_QUERY_TOKENS:
            return True
        text = query.strip()
        return any(pattern.search(text) for pattern in self._back_reference_re)

    @staticmethod
    def prior_turns(query: str, context: Optional[ConversationContext]) -> int:
        """Number of turns before the current query."""
        if context is None:
            return 0
        count = len(context.messages)
        if count and context.messages[-1].role == "user" and context.messages[-1].content == query:
            count -= 1
        return count

    def context_relevance(self, query: str, context: Optional[ConversationContext]) -> float:
        """
        Heuristic relevance of the conversation to this query.

        Returns:
            0.8 for a likely follow-up, 0.4 for an ordinary continuation,
            0.2 when only minimal history exists, 0.0 without a prior turn
        """
        turns = self.prior_turns(query, context)
        if turns == 0:
            return NO_HISTORY_RELEVANCE
        if self.is_follow_up(query):
            return FOLLOW_UP_RELEVANCE
        if turns >= CONTINUATION_MIN_TURNS:
            return CONTINUATION_RELEVANCE
        return MINIMAL_HISTORY_RELEVANCE

    def historical_accuracy(self, intent_name: str, context: Optional[ConversationContext]) -> float:
        """
        Share of the last N detected intents that were this intent.

        Discounted by min(1, N/5) so small windows do not dominate.
        """
        if context is None or not context.detected_intents:
            return 0.0
        n = self.settings.historical_interactions_count
        target = intent_name.casefold()
        recent = context.recent_intents(n)
        count = sum(1 for detected in recent if detected.intent.casefold() == target)
        return clamp((count / n) * min(1.0, n / SAMPLE_SIZE_FOR_FULL_TRUST))

    def contextual_boost(
        self,
        intent_name: str,
        context: Optional[ConversationContext],
        related_intents: Sequence[str] = (),
    ) -> float:
        """
        Boost for an intent detected in the most recent turns.

        Full factor for the exact intent, half for a parent/child relation,
        zero otherwise.
        """
        if context is None or not context.detected_intents:
            return 0.0
        recent = {d.intent.casefold() for d in context.recent_intents(self.settings.recent_intent_window)}
        factor = self.settings.contextual_boost_factor
        if intent_name.casefold() in recent:
            return factor
        if any(name.casefold() in recent for name in related_intents):
            return factor / 2
        return 0.0

    def combine(
        self,
        semantic_similarity: float,
        context_relevance: float = 0.0,
        historical_accuracy: float = 0.0,
        contextual_boost: float = 0.0,
    ) -> ConfidenceBreakdown:
        """Weight the factors, add the boost and clamp."""
        s = self.settings
        raw = clamp(
            semantic_similarity * s.semantic_weight
            + context_relevance * s.context_weight
            + historical_accuracy * s.historical_weight
        )
        confidence = clamp(raw + contextual_boost, 0.0, s.max_confidence)
        return ConfidenceBreakdown(
            semantic_similarity=semantic_similarity,
            context_relevance=context_relevance,
            historical_accuracy=historical_accuracy,
            contextual_boost=contextual_boost,
            raw_score=raw,
            confidence=confidence,
        )

    def score(
        self,
        intent_name: str,
        semantic_similarity: float,
        query: str,
        context: Optional[ConversationContext] = None,
        related_intents: Sequence[str] = (),
        context_relevance: Optional[float] = None,
    ) -> ConfidenceBreakdown:
        """
        Score one candidate intent.

        Args:
            intent_name: Candidate intent
            semantic_similarity: Best example similarity
            query: The user query
            context: Conversation context (None for context-free scoring)
            related_intents: Parent/child intents of the candidate
            context_relevance: Precomputed query relevance (computed if None)
        """
        if context_relevance is None:
            context_relevance = self.context_relevance(query, context)
        return self.combine(
            semantic_similarity,
            context_relevance,
            self.historical_accuracy(intent_name, context),
            self.contextual_boost(intent_name, context, related_intents),
        )

