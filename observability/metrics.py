"""
Prometheus Metrics

Exposes metrics for monitoring the intent pipeline:
- Classification counts, latencies and confidence
- Fallback escalation levels
- LLM provider calls and parse failures
- Reasoning verification outcomes
"""

from prometheus_client import Counter, Histogram


# -----------------------------------------------------------------------------
# Classification
# -----------------------------------------------------------------------------

CLASSIFICATIONS_TOTAL = Counter(
    "intent_classifications_total",
    "Total intent classifications",
    ["action"],  # proceed, proceed_with_caution, clarify, fallback, no_match
)

CLASSIFICATION_LATENCY = Histogram(
    "intent_classification_latency_seconds",
    "Intent classification latency (including query embedding)",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

TOP_CONFIDENCE = Histogram(
    "intent_top_confidence",
    "Confidence of the top intent match",
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
)

SIMILARITY_CLAMPED = Counter(
    "intent_similarity_clamped_total",
    "Cosine similarities outside [-1, 1] that were clamped",
)

# -----------------------------------------------------------------------------
# Fallback escalation
# -----------------------------------------------------------------------------

FALLBACK_TOTAL = Counter(
    "intent_fallback_total",
    "Fallback escalations by terminal level",
    ["level", "successful"],
)

MISCLASSIFICATIONS_TOTAL = Counter(
    "intent_misclassifications_total",
    "Recorded misclassifications",
    ["level"],
)

# -----------------------------------------------------------------------------
# LLM provider
# -----------------------------------------------------------------------------

LLM_CALLS = Counter(
    "intent_llm_calls_total",
    "Total LLM provider calls",
    ["provider", "model", "operation"],  # embedding, completion, chat
)

LLM_LATENCY = Histogram(
    "intent_llm_latency_seconds",
    "LLM provider call latency",
    ["provider", "operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

LLM_TOKENS = Counter(
    "intent_llm_tokens_total",
    "LLM tokens used",
    ["provider", "type"],  # input, output
)

LLM_PARSE_FAILURES = Counter(
    "intent_llm_parse_failures_total",
    "LLM outputs that failed schema validation",
    ["schema"],
)

# -----------------------------------------------------------------------------
# Reasoning
# -----------------------------------------------------------------------------

REASONING_TOTAL = Counter(
    "intent_reasoning_total",
    "Chain-of-thought reasoning runs",
    ["verified", "revised"],
)


class MetricsHelper:
    """Helper class for recording metrics."""

    def record_classification(self, action: str, latency: float, top_confidence: float = None):
        """Record a classification outcome."""
        CLASSIFICATIONS_TOTAL.labels(action=action).inc()
        CLASSIFICATION_LATENCY.observe(latency)
        if top_confidence is not None:
            TOP_CONFIDENCE.observe(top_confidence)

    def record_similarity_clamped(self):
        """Record an out-of-range similarity."""
        SIMILARITY_CLAMPED.inc()

    def record_fallback(self, level: str, successful: bool):
        """Record the terminal level of a fallback escalation."""
        FALLBACK_TOTAL.labels(level=level, successful=str(successful).lower()).inc()

    def record_misclassification(self, level: str):
        """Record a misclassification entry."""
        MISCLASSIFICATIONS_TOTAL.labels(level=level).inc()

    def record_llm_call(
        self,
        provider: str,
        model: str,
        operation: str,
        latency: float,
        input_tokens: int = 0,
        output_tokens: int = 0,
    ):
        """Record an LLM API call."""
        LLM_CALLS.labels(provider=provider, model=model, operation=operation).inc()
        LLM_LATENCY.labels(provider=provider, operation=operation).observe(latency)
        if input_tokens:
            LLM_TOKENS.labels(provider=provider, type="input").inc(input_tokens)
        if output_tokens:
            LLM_TOKENS.labels(provider=provider, type="output").inc(output_tokens)

    def record_parse_failure(self, schema: str):
        """Record a schema validation failure on LLM output."""
        LLM_PARSE_FAILURES.labels(schema=schema).inc()

    def record_reasoning(self, verified: bool, revised: bool):
        """Record a reasoning run."""
        REASONING_TOTAL.labels(
            verified=str(verified).lower(),
            revised=str(revised).lower(),
        ).inc()


# Singleton
metrics = MetricsHelper()
