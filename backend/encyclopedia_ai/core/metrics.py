"""
Prometheus metrics collection module.

Metrics Categories:
- RED Metrics: HTTP rate, errors, duration
- LLM Metrics: upstream calls, latency, tokens, request-queue depth and wait
- Agent Metrics: runs by outcome, discovery turns per run, tool calls
- Resource Metrics: process host CPU and memory

Naming follows Prometheus conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for durations
- Gauges: no special suffix
"""
from typing import Optional

import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from encyclopedia_ai.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=registry,
)

# ============================================================================
# LLM METRICS
# ============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "Upstream completion requests",
    ["kind", "status"],  # kind: complete | stream
    registry=registry,
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "Upstream completion latency in seconds (excluding queue wait)",
    ["kind"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0, 80.0],
    registry=registry,
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Tokens reported by the provider",
    ["direction"],  # input | output
    registry=registry,
)

llm_queue_depth = Gauge(
    "llm_queue_depth",
    "Upstream calls queued or in flight in the request serializer",
    registry=registry,
)

llm_queue_wait_seconds = Histogram(
    "llm_queue_wait_seconds",
    "Time a unit of work waited in the request serializer",
    buckets=[0.0, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=registry,
)

# ============================================================================
# AGENT METRICS
# ============================================================================

agent_runs_total = Counter(
    "agent_runs_total",
    "Agent runs by outcome",
    ["outcome"],  # answered | failed | error
    registry=registry,
)

agent_iterations = Histogram(
    "agent_iterations",
    "Tool-discovery turns used per run",
    buckets=[0, 1, 2, 3, 4, 6, 8, 12],
    registry=registry,
)

agent_tool_calls_total = Counter(
    "agent_tool_calls_total",
    "Tool invocations by status",
    ["tool", "status"],  # done | error | skip
    registry=registry,
)

# ============================================================================
# RESOURCE METRICS
# ============================================================================

system_cpu_usage_percent = Gauge(
    "system_cpu_usage_percent",
    "System CPU usage percentage",
    registry=registry,
)

system_memory_usage_bytes = Gauge(
    "system_memory_usage_bytes",
    "System memory usage in bytes",
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record HTTP request metrics (RED metrics)."""
    endpoint = endpoint.split("?")[0]

    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=endpoint,
    ).observe(duration_seconds)


def record_llm_request(kind: str, status: str, duration_seconds: float) -> None:
    llm_requests_total.labels(kind=kind, status=status).inc()
    llm_request_duration_seconds.labels(kind=kind).observe(duration_seconds)


def record_llm_tokens(input_tokens: int, output_tokens: int) -> None:
    if input_tokens > 0:
        llm_tokens_total.labels(direction="input").inc(input_tokens)
    if output_tokens > 0:
        llm_tokens_total.labels(direction="output").inc(output_tokens)


def set_llm_queue_depth(depth: int) -> None:
    llm_queue_depth.set(depth)


def record_llm_queue_wait(wait_seconds: float) -> None:
    llm_queue_wait_seconds.observe(max(0.0, wait_seconds))


def record_agent_run(outcome: str, iterations: Optional[int] = None) -> None:
    """
    Record a finished agent run.

    Args:
        outcome: "answered", "failed" (configuration) or "error" (unexpected)
        iterations: discovery turns used, when the loop got that far
    """
    agent_runs_total.labels(outcome=outcome).inc()
    if iterations is not None:
        agent_iterations.observe(iterations)


def record_tool_call(tool: str, status: str) -> None:
    agent_tool_calls_total.labels(tool=tool, status=status).inc()


def update_resource_metrics() -> None:
    """Refresh CPU and memory gauges; called when metrics are scraped."""
    try:
        system_cpu_usage_percent.set(psutil.cpu_percent(interval=None))
        system_memory_usage_bytes.set(psutil.virtual_memory().used)
    except Exception as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def get_metrics() -> bytes:
    """Prometheus metrics in text exposition format."""
    update_resource_metrics()
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
