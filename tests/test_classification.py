"""
Tests for Classification Result Builder

Tests cover:
- Stable ranking
- Ambiguity differential
- Recommended action precedence
- Clarification questions and explanations
"""

import pytest

from intent.classification import (
    ClassificationResultBuilder,
    IntentMatch,
    RecommendedAction,
    humanize_intent,
)
from intent.config import ClassificationSettings


def match(name, confidence, similarity=None, boost=0.0):
    return IntentMatch(
        intent_name=name,
        matched_example=f"{name} example",
        semantic_similarity=confidence if similarity is None else similarity,
        confidence=confidence,
        contextual_boost=boost,
        raw_score=confidence - boost,
    )


class TestRanking:
    """Test match ranking."""

    def setup_method(self):
        """Setup test fixtures."""
        self.builder = ClassificationResultBuilder(ClassificationSettings())

    def test_sorted_by_confidence(self):
        """Highest confidence first."""
        result = self.builder.build("q", [match("a", 0.6), match("b", 0.9), match("c", 0.75)])
        assert [m.intent_name for m in result.matches] == ["b", "c", "a"]
        assert result.top_match.intent_name == "b"

    def test_ties_keep_discovery_order(self):
        """Equal confidences keep their original order."""
        result = self.builder.build("q", [match("first", 0.8), match("second", 0.8)])
        assert [m.intent_name for m in result.matches] == ["first", "second"]


class TestAmbiguity:
    """Test ambiguity detection."""

    def setup_method(self):
        """Setup test fixtures."""
        self.builder = ClassificationResultBuilder(ClassificationSettings(ambiguity_threshold=0.1))

    def test_fewer_than_two_matches(self):
        """Zero or one match is never ambiguous."""
        for matches in ([], [match("only", 0.6)]):
            result = self.builder.build("q", matches)
            assert result.is_ambiguous is False
            assert result.confidence_differential == 1.0

    def test_close_matches_are_ambiguous(self):
        """Differential below the threshold is ambiguous."""
        result = self.builder.build("q", [match("a", 0.70), match("b", 0.65)])
        assert result.confidence_differential == pytest.approx(0.05)
        assert result.is_ambiguous

    def test_distinct_matches(self):
        """Differential at or above the threshold is not ambiguous."""
        result = self.builder.build("q", [match("a", 0.80), match("b", 0.60)])
        assert not result.is_ambiguous


class TestRecommendedAction:
    """Test action precedence."""

    def setup_method(self):
        """Setup test fixtures."""
        self.builder = ClassificationResultBuilder(
            ClassificationSettings(
                ambiguity_threshold=0.1,
                mismatch_threshold=0.5,
                high_confidence_threshold=0.85,
            )
        )

    def test_no_match(self):
        """No matches recommends NO_MATCH."""
        result = self.builder.build("q", [])
        assert result.recommended_action == RecommendedAction.NO_MATCH
        assert result.top_match is None
        assert result.top_confidence == 0.0

    def test_fallback_before_ambiguity(self):
        """Low confidence wins over ambiguity."""
        result = self.builder.build("q", [match("a", 0.45), match("b", 0.44)])
        assert result.is_ambiguous
        assert result.recommended_action == RecommendedAction.FALLBACK
        assert result.clarification_question is None

    def test_clarify(self):
        """Ambiguous medium confidence asks for clarification."""
        result = self.builder.build("q", [match("cancel_subscription", 0.7), match("billing_inquiry", 0.65)])
        assert result.recommended_action == RecommendedAction.CLARIFY
        assert result.clarification_question == "Did you mean cancel subscription or billing inquiry?"

    def test_ambiguous_but_confident_proceeds(self):
        """High confidence overrides ambiguity."""
        result = self.builder.build("q", [match("a", 0.9), match("b", 0.88)])
        assert result.is_ambiguous
        assert result.recommended_action == RecommendedAction.PROCEED
        assert result.is_confident

    def test_proceed_with_caution(self):
        """Medium confidence without ambiguity."""
        result = self.builder.build("q", [match("a", 0.7)])
        assert result.recommended_action == RecommendedAction.PROCEED_WITH_CAUTION
        assert not result.is_confident

    def test_deterministic(self):
        """The same inputs always produce the same action."""
        actions = {
            self.builder.build("q", [match("a", 0.7), match("b", 0.65)]).recommended_action
            for _ in range(5)
        }
        assert actions == {RecommendedAction.CLARIFY}


class TestClarificationAndExplanation:
    """Test question templates and explanation text."""

    def setup_method(self):
        """Setup test fixtures."""
        self.builder = ClassificationResultBuilder(ClassificationSettings())

    def test_three_way_question(self):
        """Three or more matches list the top three."""
        question = ClassificationResultBuilder.clarification_question(
            [match("a_one", 0.7), match("b", 0.68), match("c", 0.66), match("d", 0.6)]
        )
        assert question == "I can help with a few things here: a one, b, or c. Which one did you mean?"

    def test_humanize(self):
        """Underscores and dashes become spaces."""
        assert humanize_intent("billing_inquiry") == "billing inquiry"
        assert humanize_intent("check-status") == "check status"

    def test_explanation_lines(self):
        """Factor lines always appear; boost and ambiguity only when non-zero."""
        result = self.builder.build("q", [match("a", 0.9)])
        explanation = result.explanation
        assert "Semantic similarity: 0.900" in explanation
        assert "Context relevance" in explanation
        assert "Historical accuracy" in explanation
        assert "Contextual boost" not in explanation
        assert "Ambiguity" not in explanation
        assert explanation.endswith("Recommended action: proceed")

    def test_explanation_with_boost_and_ambiguity(self):
        """Boost and ambiguity are explained when present."""
        result = self.builder.build("q", [match("a", 0.7, boost=0.1), match("b", 0.66)])
        assert "Contextual boost: +0.100" in result.explanation
        assert "Ambiguity: differential 0.040 vs b" in result.explanation

    def test_no_match_explanation(self):
        """No-match results explain the empty outcome."""
        result = self.builder.build("q", [])
        assert result.explanation.startswith("No intent matched the query.")
        assert "Final confidence: 0.000" in result.explanation

    def test_to_dict(self):
        """Serialized result names the top match and action."""
        data = self.builder.build("q", [match("a", 0.9)]).to_dict()
        assert data["top_match"] == "a"
        assert data["recommended_action"] == "proceed"
        assert data["matches"][0]["confidence"] == 0.9
