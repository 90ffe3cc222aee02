"""
Intent Resolver - Intent Module

Intent resolution pipeline:
- Embedding similarity and intent model store
- Multi-factor confidence scoring
- Classification results with ambiguity detection
- Tiered fallback escalation
- Chain-of-thought reasoning with self-verification
- LLM intent detection
- Conversation context management
"""

from intent.classification import (
    ClassificationResult,
    ClassificationResultBuilder,
    IntentMatch,
    RecommendedAction,
)
from intent.confidence_scorer import ConfidenceBreakdown, ConfidenceScorer
from intent.context_manager import ContextManager, ContextStore
from intent.exceptions import (
    IntentNotFoundError,
    IntentResolutionError,
    OutputParseError,
    ProviderError,
)
from intent.fallback_manager import (
    FallbackLevel,
    FallbackManager,
    FallbackResult,
    MisclassificationData,
)
from intent.intent_classifier import IntentClassifier
from intent.intent_detector import IntentDetector
from intent.intent_model import EntitySlot, IntentClassificationModel, IntentDefinition
from intent.llm_client import BaseLLMClient, OllamaClient, get_llm_client
from intent.output_parser import ParseResult, parse_llm_output
from intent.reasoning_engine import (
    ChainOfThoughtResult,
    ChainOfThoughtStep,
    ReasoningEngine,
    reconcile,
)
from intent.similarity import best_example_match, cosine_similarity

__all__ = [
    # Similarity and model store
    "cosine_similarity",
    "best_example_match",
    "EntitySlot",
    "IntentDefinition",
    "IntentClassificationModel",

    # Scoring and classification
    "ConfidenceScorer",
    "ConfidenceBreakdown",
    "ClassificationResult",
    "ClassificationResultBuilder",
    "IntentMatch",
    "RecommendedAction",
    "IntentClassifier",

    # Fallback
    "FallbackLevel",
    "FallbackManager",
    "FallbackResult",
    "MisclassificationData",

    # Reasoning and detection
    "ChainOfThoughtResult",
    "ChainOfThoughtStep",
    "ReasoningEngine",
    "reconcile",
    "IntentDetector",

    # Context
    "ContextManager",
    "ContextStore",

    # Provider and parsing
    "BaseLLMClient",
    "OllamaClient",
    "get_llm_client",
    "ParseResult",
    "parse_llm_output",

    # Errors
    "IntentResolutionError",
    "IntentNotFoundError",
    "ProviderError",
    "OutputParseError",
]
