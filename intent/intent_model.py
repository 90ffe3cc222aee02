"""
Intent Classification Model

In-memory store of intent definitions, their example embeddings and
aliases. Name and alias lookups are case-insensitive.

The store is not synchronized. Callers that mutate it while classifications
run concurrently must serialize access themselves.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from intent.exceptions import IntentNotFoundError


@dataclass
class EntitySlot:
    """Entity an intent expects to find in a query."""

    name: str
    entity_type: str
    required: bool = False
    default_value: Optional[str] = None
    extraction_prompts: List[str] = field(default_factory=list)


@dataclass
class IntentDefinition:
    """Intent with example phrases and one embedding per example."""

    name: str
    description: Optional[str] = None
    examples: List[str] = field(default_factory=list)
    example_embeddings: List[List[float]] = field(default_factory=list)
    entity_slots: List[EntitySlot] = field(default_factory=list)
    parent_intent: Optional[str] = None
    child_intents: List[str] = field(default_factory=list)
    parameters: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.example_embeddings and len(self.example_embeddings) != len(self.examples):
            raise ValueError(
                f"Intent '{self.name}' has {len(self.examples)} examples "
                f"but {len(self.example_embeddings)} embeddings"
            )

    def add_example(self, example: str, embedding: List[float]):
        """Append an example together with its embedding."""
        if not example or not example.strip():
            raise ValueError("Example cannot be empty")
        self.examples.append(example)
        self.example_embeddings.append(list(embedding))

    def set_examples(self, examples: List[str], embeddings: List[List[float]]):
        """Replace all examples and their embeddings."""
        if len(examples) != len(embeddings):
            raise ValueError(f"Got {len(examples)} examples but {len(embeddings)} embeddings")
        self.examples = list(examples)
        self.example_embeddings = [list(e) for e in embeddings]

    @property
    def has_examples(self) -> bool:
        return len(self.example_embeddings) > 0


class IntentClassificationModel:
    """
    Intent store for one tenant.

    Intents keep their registered spelling; lookups fold case. Removing an
    intent also drops every alias that points to it.
    """

    def __init__(self, embedding_model: str = "llama3", similarity_threshold: float = 0.7):
        self.embedding_model = embedding_model
        self.similarity_threshold = similarity_threshold
        self._intents: Dict[str, IntentDefinition] = {}
        self._aliases: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._intents)

    def __contains__(self, name: str) -> bool:
        return self._key(name) in self._intents

    def __iter__(self) -> Iterator[IntentDefinition]:
        return iter(list(self._intents.values()))

    @staticmethod
    def _key(name: str) -> str:
        return name.strip().casefold()

    @property
    def intents(self) -> List[IntentDefinition]:
        """Intents in registration order."""
        return list(self._intents.values())

    @property
    def intent_names(self) -> List[str]:
        return [intent.name for intent in self._intents.values()]

    @property
    def aliases(self) -> Dict[str, str]:
        """Alias -> canonical intent name."""
        return {alias: self._intents[key].name for alias, key in self._aliases.items()}

    def add_intent(self, intent: IntentDefinition):
        """Register an intent, replacing any existing one with the same name."""
        if intent is None:
            raise ValueError("Intent cannot be None")
        if not intent.name or not intent.name.strip():
            raise ValueError("Intent name cannot be empty")
        self._intents[self._key(intent.name)] = intent

    def add_intent_alias(self, alias: str, intent_name: str):
        """
        Register an alias for an existing intent.

        Raises:
            ValueError: If alias or name is empty
            IntentNotFoundError: If the intent does not exist
        """
        if not alias or not alias.strip():
            raise ValueError("Alias cannot be empty")
        if not intent_name or not intent_name.strip():
            raise ValueError("Intent name cannot be empty")
        key = self._key(intent_name)
        if key not in self._intents:
            raise IntentNotFoundError(intent_name)
        self._aliases[self._key(alias)] = key

    def resolve_intent_name(self, name_or_alias: str) -> str:
        """
        Resolve a name or alias to the canonical intent name.

        Raises:
            IntentNotFoundError: If neither an intent nor an alias matches
        """
        if name_or_alias:
            key = self._key(name_or_alias)
            if key in self._intents:
                return self._intents[key].name
            target = self._aliases.get(key)
            if target is not None:
                return self._intents[target].name
        raise IntentNotFoundError(name_or_alias)

    def get_intent(self, name_or_alias: str) -> IntentDefinition:
        return self._intents[self._key(self.resolve_intent_name(name_or_alias))]

    def remove_intent(self, name_or_alias: str) -> int:
        """
        Remove an intent and its aliases.

        Returns:
            Number of aliases removed

        Raises:
            IntentNotFoundError: If the name does not resolve
        """
        key = self._key(self.resolve_intent_name(name_or_alias))
        del self._intents[key]
        stale = [alias for alias, target in self._aliases.items() if target == key]
        for alias in stale:
            del self._aliases[alias]
        return len(stale)

    def related_intents(self, name: str) -> List[str]:
        """Parent and child intent names of an intent (empty if unknown)."""
        key = self._key(name)
        intent = self._intents.get(key)
        related = []
        if intent is not None:
            if intent.parent_intent:
                related.append(intent.parent_intent)
            related.extend(intent.child_intents)
        # Relations declared from the other side count too
        for other in self._intents.values():
            if other.parent_intent and self._key(other.parent_intent) == key:
                related.append(other.name)
            if any(self._key(child) == key for child in other.child_intents):
                related.append(other.name)

        seen = set()
        unique = []
        for item in related:
            folded = self._key(item)
            if folded not in seen and folded != key:
                seen.add(folded)
                unique.append(item)
        return unique
