"""
Intent Pipeline Exceptions
"""

from typing import Optional


class IntentResolutionError(Exception):
    """Base class for intent pipeline errors."""


class IntentNotFoundError(IntentResolutionError, KeyError):
    """Intent name or alias does not resolve to a registered intent."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Intent or alias '{name}' not found")

    def __str__(self) -> str:
        return self.args[0]


class ProviderError(IntentResolutionError):
    """Embedding/completion provider call failed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        model: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.model = model


class OutputParseError(IntentResolutionError):
    """LLM output could not be decoded into the expected schema."""

    def __init__(self, schema: str, reason: str, raw: str = ""):
        super().__init__(f"{schema}: {reason}")
        self.schema = schema
        self.reason = reason
        self.raw = raw
