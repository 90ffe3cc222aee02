"""
Intent Classifier

Embedding-based intent classification with multi-factor confidence scoring.

Flow: embed query -> best example per intent -> similarity threshold ->
confidence scoring (with conversation context when available) -> ranked
ClassificationResult with a recommended action.

The intent model is injected and owned by the caller. Mutating it while
classifications are in flight requires external synchronization.
"""

import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from intent.classification import ClassificationResult, ClassificationResultBuilder, IntentMatch
from intent.confidence_scorer import ConfidenceScorer
from intent.config import ClassificationSettings, get_classification_settings
from intent.context_manager import ContextStore
from intent.exceptions import IntentNotFoundError
from intent.intent_model import EntitySlot, IntentClassificationModel, IntentDefinition
from intent.llm_client import BaseLLMClient
from intent.similarity import best_example_match
from models.conversation import ConversationContext
from observability.logging_config import get_logger, log_context
from observability.metrics import metrics

logger = get_logger(__name__)


class IntentClassifier:
    """
    Classify queries against registered intents.

    Features:
    - Cosine similarity against per-intent example embeddings
    - Context relevance, historical accuracy and contextual boost
    - Ambiguity detection and recommended actions
    - Aliases and YAML intent catalogs
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        settings: Optional[ClassificationSettings] = None,
        model: Optional[IntentClassificationModel] = None,
        context_store: Optional[ContextStore] = None,
    ):
        """
        Initialize classifier.

        Args:
            llm_client: Embedding provider
            settings: Scoring and threshold settings
            model: Intent store (a new empty store if None)
            context_store: Conversation store for contextual classification
        """
        self.llm = llm_client
        self.settings = settings or get_classification_settings()
        self._model = model or IntentClassificationModel(
            embedding_model=self.settings.embedding_model,
            similarity_threshold=self.settings.similarity_threshold,
        )
        self.context_store = context_store
        self.scorer = ConfidenceScorer(self.settings)
        self.builder = ClassificationResultBuilder(self.settings)

    # -------------------------------------------------------------------------
    # Model management
    # -------------------------------------------------------------------------

    def get_model(self) -> IntentClassificationModel:
        return self._model

    def set_model(self, model: IntentClassificationModel):
        if model is None:
            raise ValueError("Model cannot be None")
        self._model = model

    async def _embed_examples(self, examples: List[str]) -> List[List[float]]:
        if not examples:
            return []
        embeddings = await self.llm.generate_batch_embeddings(self._model.embedding_model, examples)
        if len(embeddings) != len(examples):
            raise ValueError(f"Provider returned {len(embeddings)} embeddings for {len(examples)} examples")
        return embeddings

    @staticmethod
    def _validate_examples(examples: List[str]):
        if examples is None:
            raise ValueError("Examples cannot be None")
        if any(not e or not e.strip() for e in examples):
            raise ValueError("Examples cannot be empty strings")

    async def add_intent(
        self,
        name: str,
        description: str,
        examples: List[str],
        entity_slots: Optional[List[EntitySlot]] = None,
        parent_intent: Optional[str] = None,
        child_intents: Optional[List[str]] = None,
    ) -> IntentDefinition:
        """
        Register an intent and embed its examples.

        Embeddings are computed before the model is touched, so a failed or
        cancelled call leaves the model unchanged.
        """
        if not name or not name.strip():
            raise ValueError("Intent name cannot be empty")
        self._validate_examples(examples)

        embeddings = await self._embed_examples(examples)
        intent = IntentDefinition(
            name=name,
            description=description,
            examples=list(examples),
            example_embeddings=embeddings,
            entity_slots=list(entity_slots or []),
            parent_intent=parent_intent,
            child_intents=list(child_intents or []),
        )
        self._model.add_intent(intent)

        logger.info("intent_added", intent=name, examples=len(examples))
        return intent

    async def update_intent_examples(self, intent_name: str, examples: List[str]) -> bool:
        """
        Replace an intent's examples and regenerate embeddings.

        Returns:
            False if the name does not resolve
        """
        self._validate_examples(examples)
        try:
            intent = self._model.get_intent(intent_name)
        except IntentNotFoundError:
            logger.warning("intent_not_found", intent=intent_name)
            return False

        embeddings = await self._embed_examples(examples)
        intent.set_examples(examples, embeddings)

        logger.info("intent_examples_updated", intent=intent.name, examples=len(examples))
        return True

    def remove_intent(self, intent_name: str) -> bool:
        """
        Remove an intent and every alias pointing to it.

        Returns:
            False if the name does not resolve
        """
        try:
            removed_aliases = self._model.remove_intent(intent_name)
        except IntentNotFoundError:
            return False
        logger.info("intent_removed", intent=intent_name, aliases_removed=removed_aliases)
        return True

    def add_intent_alias(self, alias: str, intent_name: str):
        self._model.add_intent_alias(alias, intent_name)
        logger.info("intent_alias_added", alias=alias, intent=intent_name)

    def resolve_intent_name(self, name_or_alias: str) -> str:
        return self._model.resolve_intent_name(name_or_alias)

    async def load_intents(self, path: Optional[str] = None) -> int:
        """
        Load intents from a YAML catalog (default: settings.intent_catalog_path).

        Format:
            intents:
              <name>:
                description: ...
                examples: [...]
                parent: <name>
                children: [...]
                aliases: [...]
                entity_slots: [{name, entity_type, required, default_value}]

        Returns:
            Number of intents loaded
        """
        path = path or self.settings.intent_catalog_path
        if not path:
            raise ValueError("No intent catalog path given or configured")

        with open(Path(path), encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

        entries: Dict[str, Dict[str, Any]] = config.get("intents", {}) or {}
        aliases = []
        for name, spec in entries.items():
            spec = spec or {}
            slots = [EntitySlot(**slot) for slot in spec.get("entity_slots", []) or []]
            await self.add_intent(
                name,
                spec.get("description", ""),
                list(spec.get("examples", []) or []),
                entity_slots=slots,
                parent_intent=spec.get("parent"),
                child_intents=list(spec.get("children", []) or []),
            )
            aliases.extend((alias, name) for alias in spec.get("aliases", []) or [])

        # Aliases last so they can point at any intent in the file
        for alias, name in aliases:
            self.add_intent_alias(alias, name)

        logger.info("intent_catalog_loaded", path=str(path), intents=len(entries), aliases=len(aliases))
        return len(entries)

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    async def classify(
        self,
        query: str,
        similarity_threshold: Optional[float] = None,
    ) -> ClassificationResult:
        """
        Classify a query without conversation context.

        Raises:
            ValueError: If the query is empty
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")
        return await self._classify(query, similarity_threshold, None)

    async def classify_with_context(
        self,
        query: str,
        conversation_id: str,
        similarity_threshold: Optional[float] = None,
    ) -> ClassificationResult:
        """
        Classify a query using the conversation's turns and detected intents.

        Without a context store this is plain classify(); a failing store is
        logged and also degrades to context-free scoring.

        Raises:
            ValueError: If the query or conversation id is empty
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")
        if not conversation_id or not conversation_id.strip():
            raise ValueError("Conversation ID cannot be empty")

        if self.context_store is None:
            logger.debug("context_store_not_configured", conversation_id=conversation_id)
            return await self._classify(query, similarity_threshold, None)

        with log_context(conversation_id=conversation_id):
            context = None
            try:
                context = await self.context_store.get_context(conversation_id)
            except Exception as e:
                logger.warning("context_retrieval_failed", error=str(e))
            return await self._classify(query, similarity_threshold, context)

    async def _classify(
        self,
        query: str,
        similarity_threshold: Optional[float],
        context: Optional[ConversationContext],
    ) -> ClassificationResult:
        start_time = time.perf_counter()
        model = self._model
        threshold = model.similarity_threshold if similarity_threshold is None else similarity_threshold

        query_embedding = await self.llm.generate_embedding(model.embedding_model, query)
        relevance = self.scorer.context_relevance(query, context)

        matches = []
        for intent in model.intents:
            best = best_example_match(query_embedding, intent.examples, intent.example_embeddings)
            if best is None or best.similarity < threshold:
                continue

            breakdown = self.scorer.score(
                intent.name,
                best.similarity,
                query,
                context=context,
                related_intents=model.related_intents(intent.name) if context else (),
                context_relevance=relevance,
            )
            matches.append(
                IntentMatch(
                    intent_name=intent.name,
                    matched_example=best.example,
                    semantic_similarity=breakdown.semantic_similarity,
                    confidence=breakdown.confidence,
                    context_relevance=breakdown.context_relevance,
                    historical_accuracy=breakdown.historical_accuracy,
                    contextual_boost=breakdown.contextual_boost,
                    raw_score=breakdown.raw_score,
                )
            )

        result = self.builder.build(query, matches, context_relevance=relevance)

        metrics.record_classification(
            action=result.recommended_action.value,
            latency=time.perf_counter() - start_time,
            top_confidence=result.top_confidence if result.has_matches else None,
        )
        logger.debug(
            "query_classified",
            matches=len(result.matches),
            top_intent=result.top_match.intent_name if result.top_match else None,
            confidence=round(result.top_confidence, 4),
            action=result.recommended_action.value,
            ambiguous=result.is_ambiguous,
        )
        return result
