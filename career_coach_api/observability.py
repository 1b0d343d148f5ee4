"""Observability utilities: trace IDs, LLM metrics, and attempt logging.

This module provides:
- Trace ID generation and propagation via context vars
- Prometheus metrics for LLM attempts (outcome, latency, tokens)
- Structured logging helpers for dispatcher attempts
"""

import secrets
import time
from contextvars import ContextVar
from dataclasses import dataclass, field

import structlog
from prometheus_client import Counter, Gauge, Histogram

logger = structlog.get_logger()

# =============================================================================
# Trace ID Context
# =============================================================================

# Context variable for trace ID propagation across async calls
trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")


def generate_trace_id() -> str:
    """Generate cryptographically secure trace ID for request tracking."""
    return secrets.token_hex(16)


def get_trace_id() -> str:
    """Get current trace ID from context, or empty string if not set."""
    return trace_id_ctx.get()


def set_trace_id(trace_id: str) -> None:
    """Set trace ID in context."""
    trace_id_ctx.set(trace_id)


# =============================================================================
# Prometheus Metrics
# =============================================================================

llm_attempts_total = Counter(
    "llm_attempts_total",
    "LLM generation attempts made by the fallback dispatcher",
    ["model", "outcome"],  # values: success, rate_limited, error
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Total tokens reported by the LLM provider",
    ["model"],
)

llm_latency_seconds = Histogram(
    "llm_latency_seconds",
    "LLM attempt latency in seconds",
    ["model", "structured"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

llm_dispatch_exhausted_total = Counter(
    "llm_dispatch_exhausted_total",
    "Dispatches in which every provider failed",
    ["rate_limited"],
)

llm_active_requests = Gauge(
    "llm_active_requests",
    "Currently in-flight LLM attempts",
)

parser_repairs_total = Counter(
    "llm_output_repairs_total",
    "Repair passes applied to malformed model output",
    ["outcome"],  # values: attempted, repaired, failed
)


# =============================================================================
# LLM Attempt Logging
# =============================================================================


@dataclass
class LLMAttemptLog:
    """Structured log data for a single provider attempt."""

    trace_id: str
    provider: str
    model: str
    structured: bool
    prompt_chars: int
    has_attachment: bool
    attempt: int
    timestamp: float = field(default_factory=time.time)


def log_llm_attempt(
    provider: str,
    model: str,
    structured: bool,
    prompt: str,
    has_attachment: bool,
    attempt: int,
) -> LLMAttemptLog:
    """Log the start of an attempt; returns the record used to close it."""
    attempt_log = LLMAttemptLog(
        trace_id=get_trace_id(),
        provider=provider,
        model=model,
        structured=structured,
        prompt_chars=len(prompt),
        has_attachment=has_attachment,
        attempt=attempt,
    )

    logger.info(
        "llm_attempt",
        trace_id=attempt_log.trace_id,
        provider=provider,
        model=model,
        structured=structured,
        prompt_chars=attempt_log.prompt_chars,
        has_attachment=has_attachment,
        attempt=attempt,
    )
    llm_active_requests.inc()
    return attempt_log


def log_llm_result(
    attempt_log: LLMAttemptLog,
    tokens_total: int = 0,
    finish_reason: str | None = None,
    error: str | None = None,
    rate_limited: bool = False,
) -> None:
    """Log the outcome of an attempt and update metrics."""
    latency_ms = int((time.time() - attempt_log.timestamp) * 1000)

    if error:
        outcome = "rate_limited" if rate_limited else "error"
        logger.warning(
            "llm_attempt_failed",
            trace_id=attempt_log.trace_id,
            provider=attempt_log.provider,
            model=attempt_log.model,
            attempt=attempt_log.attempt,
            latency_ms=latency_ms,
            rate_limited=rate_limited,
            error=error,
        )
    else:
        outcome = "success"
        logger.info(
            "llm_attempt_succeeded",
            trace_id=attempt_log.trace_id,
            provider=attempt_log.provider,
            model=attempt_log.model,
            attempt=attempt_log.attempt,
            latency_ms=latency_ms,
            tokens_total=tokens_total,
            finish_reason=finish_reason,
        )
        if tokens_total > 0:
            llm_tokens_total.labels(model=attempt_log.model).inc(tokens_total)

    llm_active_requests.dec()
    llm_attempts_total.labels(model=attempt_log.model, outcome=outcome).inc()
    llm_latency_seconds.labels(
        model=attempt_log.model,
        structured=str(attempt_log.structured).lower(),
    ).observe(latency_ms / 1000.0)
