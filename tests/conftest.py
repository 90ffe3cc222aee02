"""
Pytest Configuration and Fixtures
"""

import hashlib
from typing import Any, Dict, List, Optional, Union

import pytest

from intent.llm_client import BaseLLMClient

# Prompt markers, one per prompt template
ALTERNATIVES = "Suggest other intents"
CLARIFICATION = "disambiguate"
GENERALIZE = "broader category"
PARTIAL = "Extract whatever intent and entities"
DETECTION = "Determine the most likely intent"
CONTEXT_DETECTION = "in light of the conversation"
INTENT_VERIFICATION = "Review this intent classification"
REASONING_DRAFT = "Think step by step"
REASONING_VERIFY = "Review this chain-of-thought"
HIERARCHICAL = "hierarchical intent classification"

DIMENSION = 4

Scripted = Union[str, BaseException]


class FakeProvider(BaseLLMClient):
    """
    Deterministic embedding/completion provider.

    Embeddings come from a lookup table (case-insensitive), falling back to a
    vector derived from a hash of the text. Completions are scripted by prompt
    marker: the first marker found in the prompt selects the response, and
    exceptions are raised instead of returned. Unscripted prompts get "".
    """

    def __init__(
        self,
        vectors: Optional[Dict[str, List[float]]] = None,
        completions: Optional[Dict[str, Scripted]] = None,
    ):
        self.vectors = {k.casefold(): v for k, v in (vectors or {}).items()}
        self.completions: Dict[str, Scripted] = dict(completions or {})
        self.calls: List[Dict[str, Any]] = []

    def vector(self, text: str) -> List[float]:
        known = self.vectors.get(text.casefold())
        if known is not None:
            return list(known)
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [(b / 255.0) * 2 - 1 for b in digest[:DIMENSION]]

    def _respond(self, prompt: str) -> str:
        for marker, response in self.completions.items():
            if marker in prompt:
                if isinstance(response, BaseException):
                    raise response
                return response
        return ""

    def prompts(self, marker: Optional[str] = None) -> List[str]:
        """Prompts sent so far, optionally only those containing a marker."""
        sent = [c["prompt"] for c in self.calls if "prompt" in c]
        if marker is None:
            return sent
        return [p for p in sent if marker in p]

    def params_for(self, marker: str) -> Dict[str, Any]:
        for call in self.calls:
            if marker in call.get("prompt", ""):
                return call["params"]
        raise AssertionError(f"No prompt containing {marker!r} was sent")

    async def generate_embedding(self, model: str, text: str) -> List[float]:
        self.calls.append({"operation": "embedding", "model": model, "text": text})
        return self.vector(text)

    async def generate_batch_embeddings(self, model: str, texts: List[str]) -> List[List[float]]:
        self.calls.append({"operation": "batch_embedding", "model": model, "texts": list(texts)})
        return [self.vector(t) for t in texts]

    async def generate_completion(self, model: str, prompt: str, params=None) -> str:
        self.calls.append({"operation": "completion", "model": model, "prompt": prompt, "params": params or {}})
        return self._respond(prompt)

    async def generate_chat_completion(self, model: str, messages, params=None) -> str:
        prompt = messages[-1]["content"] if messages else ""
        self.calls.append({"operation": "chat", "model": model, "prompt": prompt, "params": params or {}})
        return self._respond(prompt)


@pytest.fixture
def provider() -> FakeProvider:
    """Fake provider with no scripted completions."""
    return FakeProvider()


@pytest.fixture
def greeting_vectors() -> Dict[str, List[float]]:
    """Embeddings where "hello there" is closest to "hello"."""
    return {
        "hi": [1.0, 0.0, 0.0, 0.0],
        "hello": [0.8, 0.25, 0.0, 0.0],
        "hello there": [0.8, 0.2, 0.0, 0.0],
        "cancel my subscription": [0.0, 0.0, 1.0, 0.0],
        "stop my plan": [0.0, 0.1, 0.9, 0.0],
        "why was I charged twice": [0.0, 0.0, 0.0, 1.0],
        "weather tomorrow": [0.0, 1.0, 0.0, 0.0],
    }
