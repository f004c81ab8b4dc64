"""
Prometheus metrics for Groundline Support Bot.

HTTP request counters and latency, plus pipeline metrics: outcomes per
inbound message, retrieval and LLM latency, token usage, escalations.
"""

import logging
import time

from fastapi import Request, Response
from prometheus_client import (
    Counter, Histogram, Gauge,
    generate_latest, CONTENT_TYPE_LATEST,
)
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Request metrics
REQUEST_COUNT = Counter(
    "groundline_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)
REQUEST_LATENCY = Histogram(
    "groundline_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)
ACTIVE_REQUESTS = Gauge(
    "groundline_http_active_requests",
    "Currently active HTTP requests",
)

# Pipeline metrics
PIPELINE_OUTCOMES = Counter(
    "groundline_pipeline_messages_total",
    "Inbound messages by pipeline outcome",
    ["outcome"],
)
PIPELINE_LATENCY = Histogram(
    "groundline_pipeline_duration_seconds",
    "End-to-end inbound message handling latency",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)
RETRIEVAL_LATENCY = Histogram(
    "groundline_retrieval_duration_seconds",
    "Embedding plus vector search latency",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0],
)
LLM_LATENCY = Histogram(
    "groundline_llm_duration_seconds",
    "LLM generation latency",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)
LLM_TOKENS = Counter(
    "groundline_llm_tokens_total",
    "LLM tokens consumed",
    ["kind"],
)
ESCALATIONS_CREATED = Counter(
    "groundline_escalations_created_total",
    "Escalations opened by the pipeline",
)


def record_outcome(outcome: str, seconds: float = None):
    PIPELINE_OUTCOMES.labels(outcome=outcome).inc()
    if seconds is not None:
        PIPELINE_LATENCY.observe(seconds)


def record_retrieval_latency(seconds: float):
    RETRIEVAL_LATENCY.observe(seconds)


def record_llm_call(seconds: float, prompt_tokens: int = 0, completion_tokens: int = 0):
    LLM_LATENCY.observe(seconds)
    LLM_TOKENS.labels(kind="prompt").inc(prompt_tokens)
    LLM_TOKENS.labels(kind="completion").inc(completion_tokens)


def record_escalation():
    ESCALATIONS_CREATED.inc()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware that records HTTP request metrics."""

    async def dispatch(self, request: Request, call_next):
        ACTIVE_REQUESTS.inc()
        start = time.time()

        try:
            response = await call_next(request)
        finally:
            ACTIVE_REQUESTS.dec()

        duration = time.time() - start
        endpoint = request.url.path

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        REQUEST_LATENCY.labels(method=request.method, endpoint=endpoint).observe(duration)

        return response


async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
