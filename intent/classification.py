"""
Classification Result Builder

Ranks scored intent matches and derives the recommended action:
- Ranking by confidence (stable, discovery order breaks ties)
- Ambiguity differential between the top two matches
- Action precedence: no match, fallback, clarify, proceed, caution
- Clarification question and audit explanation
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from intent.config import ClassificationSettings, get_classification_settings


class RecommendedAction(str, Enum):
    """What the caller should do with a classification."""

    PROCEED = "proceed"
    PROCEED_WITH_CAUTION = "proceed_with_caution"
    CLARIFY = "clarify"
    FALLBACK = "fallback"
    NO_MATCH = "no_match"


@dataclass
class IntentMatch:
    """One scored candidate intent."""

    intent_name: str
    matched_example: str
    semantic_similarity: float
    confidence: float
    context_relevance: float = 0.0
    historical_accuracy: float = 0.0
    contextual_boost: float = 0.0
    raw_score: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "intent_name": self.intent_name,
            "matched_example": self.matched_example,
            "semantic_similarity": self.semantic_similarity,
            "context_relevance": self.context_relevance,
            "historical_accuracy": self.historical_accuracy,
            "contextual_boost": self.contextual_boost,
            "raw_score": self.raw_score,
            "confidence": self.confidence,
        }


@dataclass
class ClassificationResult:
    """
    Outcome of classifying one query.

    Matches are ordered by confidence, highest first.
    """

    query: str
    matches: List[IntentMatch] = field(default_factory=list)
    is_ambiguous: bool = False
    confidence_differential: float = 1.0
    recommended_action: RecommendedAction = RecommendedAction.NO_MATCH
    clarification_question: Optional[str] = None
    explanation: str = ""
    context_relevance: float = 0.0
    historical_accuracy: float = 0.0
    is_confident: bool = False

    @property
    def top_match(self) -> Optional[IntentMatch]:
        return self.matches[0] if self.matches else None

    @property
    def has_matches(self) -> bool:
        return len(self.matches) > 0

    @property
    def top_confidence(self) -> float:
        return self.matches[0].confidence if self.matches else 0.0

    def to_dict(self) -> Dict:
        return {
            "query": self.query,
            "matches": [m.to_dict() for m in self.matches],
            "top_match": self.top_match.intent_name if self.top_match else None,
            "is_ambiguous": self.is_ambiguous,
            "confidence_differential": self.confidence_differential,
            "recommended_action": self.recommended_action.value,
            "clarification_question": self.clarification_question,
            "explanation": self.explanation,
            "context_relevance": self.context_relevance,
            "historical_accuracy": self.historical_accuracy,
        }


def humanize_intent(name: str) -> str:
    """'cancel_subscription' -> 'cancel subscription'."""
    return name.replace("_", " ").replace("-", " ").strip()


class ClassificationResultBuilder:
    """
    Build a ClassificationResult from scored matches.

    Steps run in a fixed order (ranking, ambiguity, action, explanation)
    since each reads fields set by the previous one.
    """

    def __init__(self, settings: Optional[ClassificationSettings] = None):
        self.settings = settings or get_classification_settings()

    def build(
        self,
        query: str,
        matches: List[IntentMatch],
        context_relevance: float = 0.0,
    ) -> ClassificationResult:
        result = ClassificationResult(
            query=query,
            matches=self.rank(matches),
            context_relevance=context_relevance,
        )
        if result.top_match is not None:
            result.historical_accuracy = result.top_match.historical_accuracy

        self._calculate_ambiguity(result)
        self._determine_recommended_action(result)
        result.explanation = self.build_explanation(result)
        return result

    @staticmethod
    def rank(matches: List[IntentMatch]) -> List[IntentMatch]:
        """Sort by confidence descending; sorted() is stable so ties keep discovery order."""
        return sorted(matches, key=lambda m: m.confidence, reverse=True)

    def _calculate_ambiguity(self, result: ClassificationResult):
        if len(result.matches) < 2:
            result.confidence_differential = 1.0
            result.is_ambiguous = False
            return
        differential = result.matches[0].confidence - result.matches[1].confidence
        result.confidence_differential = differential
        result.is_ambiguous = differential < self.settings.ambiguity_threshold

    def _determine_recommended_action(self, result: ClassificationResult):
        s = self.settings
        top = result.top_confidence
        result.is_confident = result.has_matches and top >= s.high_confidence_threshold

        if not result.has_matches:
            result.recommended_action = RecommendedAction.NO_MATCH
        elif top < s.mismatch_threshold:
            result.recommended_action = RecommendedAction.FALLBACK
        elif result.is_ambiguous and top < s.high_confidence_threshold:
            result.recommended_action = RecommendedAction.CLARIFY
            result.clarification_question = self.clarification_question(result.matches)
        elif top >= s.high_confidence_threshold:
            result.recommended_action = RecommendedAction.PROCEED
        else:
            result.recommended_action = RecommendedAction.PROCEED_WITH_CAUTION

    @staticmethod
    def clarification_question(matches: List[IntentMatch]) -> Optional[str]:
        """Templated question naming the top two, or top three, candidates."""
        if len(matches) < 2:
            return None
        if len(matches) == 2:
            first, second = (humanize_intent(m.intent_name) for m in matches)
            return f"Did you mean {first} or {second}?"
        first, second, third = (humanize_intent(m.intent_name) for m in matches[:3])
        return f"I can help with a few things here: {first}, {second}, or {third}. Which one did you mean?"

    @staticmethod
    def build_explanation(result: ClassificationResult) -> str:
        """Factor-by-factor explanation for debugging and audit."""
        top = result.top_match
        if top is None:
            return (
                "No intent matched the query.\n"
                "Final confidence: 0.000\n"
                f"Recommended action: {result.recommended_action.value}"
            )

        lines = [
            f"Top intent: {top.intent_name} (matched example: '{top.matched_example}')",
            f"Semantic similarity: {top.semantic_similarity:.3f}",
            f"Context relevance: {top.context_relevance:.3f}",
            f"Historical accuracy: {top.historical_accuracy:.3f}",
        ]
        if top.contextual_boost:
            lines.append(f"Contextual boost: +{top.contextual_boost:.3f}")
        if result.is_ambiguous:
            runner_up = result.matches[1].intent_name
            lines.append(f"Ambiguity: differential {result.confidence_differential:.3f} vs {runner_up}")
        lines.append(f"Final confidence: {top.confidence:.3f}")
        lines.append(f"Recommended action: {result.recommended_action.value}")
        return "\n".join(lines)
