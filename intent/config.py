"""
Intent Pipeline Configuration

Settings for classification scoring, fallback escalation, LLM intent
detection, conversation context and the Ollama provider. Every value can be
overridden through the environment (or a .env file) using the prefix of its
settings class.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class ClassificationSettings(BaseSettings):
    """Embedding classification and confidence scoring."""

    embedding_model: str = Field(default="llama3", description="Embedding model name")
    similarity_threshold: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Minimum semantic similarity for a match"
    )

    # Confidence weights (need not sum to 1, the result is clamped)
    semantic_weight: float = Field(default=1.0, ge=0.0, description="Weight of semantic similarity")
    context_weight: float = Field(default=0.15, ge=0.0, description="Weight of context relevance")
    historical_weight: float = Field(default=0.1, ge=0.0, description="Weight of historical accuracy")

    contextual_boost_factor: float = Field(
        default=0.1, ge=0.0, le=0.5, description="Boost for intents seen recently in the conversation"
    )
    historical_interactions_count: int = Field(
        default=10, ge=1, description="Detected intents considered for historical accuracy"
    )
    recent_intent_window: int = Field(
        default=3, ge=1, description="Detected intents considered for the contextual boost"
    )
    max_confidence: float = Field(default=1.0, ge=0.0, le=1.0, description="Upper bound on confidence")

    # Recommended action thresholds
    ambiguity_threshold: float = Field(
        default=0.1, ge=0.0, le=1.0, description="Top-two differential below which a result is ambiguous"
    )
    mismatch_threshold: float = Field(
        default=0.5, ge=0.0, le=1.0, description="Top confidence below which fallback is recommended"
    )
    high_confidence_threshold: float = Field(
        default=0.85, ge=0.0, le=1.0, description="Top confidence at which the intent is acted on directly"
    )

    intent_catalog_path: Optional[str] = Field(default=None, description="YAML intent catalog to load")

    class Config:
        env_prefix = "INTENT_CLASSIFIER_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


class FallbackSettings(BaseSettings):
    """Tiered fallback escalation."""

    enable_fallback_strategies: bool = Field(default=True, description="Run the escalation tiers")
    fallback_threshold: float = Field(default=0.5, description="Confidence below which fallback is needed")
    generalized_intent_threshold: float = Field(default=0.4, description="Minimum generalized intent confidence")
    partial_intent_threshold: float = Field(default=0.3, description="Minimum extracted entity confidence")
    max_clarification_questions: int = Field(default=3, ge=1, description="Questions generated per clarification")
    max_alternatives: int = Field(default=5, ge=1, description="Alternative intents kept")
    min_alternative_confidence: float = Field(default=0.2, description="Alternatives at or below this are dropped")
    context_window_messages: int = Field(default=5, ge=1, description="Recent turns folded into prompts")
    learn_from_misclassifications: bool = Field(default=True, description="Record misclassification data")
    clarification_prompt_template: str = Field(
        default="I'm not completely sure I understand. Are you asking about: {intent}? Or did you mean something else?",
        description="Generic clarification question",
    )
    fallback_model_name: str = Field(default="llama3", description="Model used for escalation prompts")

    class Config:
        env_prefix = "INTENT_FALLBACK_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


class DetectionSettings(BaseSettings):
    """LLM-based intent detection and chain-of-thought reasoning."""

    model_name: str = Field(default="llama3", description="Completion model for detection")
    confidence_threshold: float = Field(default=0.7, description="Confidence below which self-verification runs")
    enable_self_verification: bool = Field(default=True, description="Run a verification pass")
    max_context_window_messages: int = Field(default=10, ge=1, description="Turns included in context summaries")

    class Config:
        env_prefix = "INTENT_DETECTION_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"
        protected_namespaces = ()


class ContextSettings(BaseSettings):
    """In-memory conversation context."""

    max_message_history: int = Field(default=20, ge=1, description="Messages kept per conversation")
    max_tracked_entities: int = Field(default=50, ge=1, description="Entities kept per conversation")
    max_stored_intents: int = Field(default=10, ge=1, description="Detected intents kept per conversation")
    auto_prune_messages: bool = Field(default=True, description="Prune messages on every append")

    class Config:
        env_prefix = "INTENT_CONTEXT_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


class OllamaSettings(BaseSettings):
    """Ollama embedding/completion provider."""

    base_url: str = Field(default="http://localhost:11434/api", description="Ollama API base URL")
    timeout_seconds: float = Field(default=30.0, description="Request timeout")
    primary_model: str = Field(default="llama3", description="Default model")
    default_temperature: float = Field(default=0.7, description="Default sampling temperature")
    default_top_p: float = Field(default=0.9, description="Default nucleus sampling")
    batch_size: int = Field(default=10, ge=1, description="Texts per batch embedding request")

    class Config:
        env_prefix = "OLLAMA_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache
def get_classification_settings() -> ClassificationSettings:
    """Get cached classification settings."""
    return ClassificationSettings()


@lru_cache
def get_fallback_settings() -> FallbackSettings:
    """Get cached fallback settings."""
    return FallbackSettings()


@lru_cache
def get_detection_settings() -> DetectionSettings:
    """Get cached detection settings."""
    return DetectionSettings()


@lru_cache
def get_context_settings() -> ContextSettings:
    """Get cached context settings."""
    return ContextSettings()


@lru_cache
def get_ollama_settings() -> OllamaSettings:
    """Get cached Ollama settings."""
    return OllamaSettings()
