"""
Intent Resolver - Observability Module

Logging and metrics:
- Structlog configuration
- Prometheus metrics
"""

from observability.logging_config import get_logger, log_context
from observability.metrics import metrics

__all__ = ["get_logger", "log_context", "metrics"]
