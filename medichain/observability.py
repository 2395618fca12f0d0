"""Prometheus metrics for the QR access service."""

from __future__ import annotations

from functools import lru_cache

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator


@lru_cache(maxsize=1)
def _instrumentator() -> Instrumentator:
    """Process-wide instrumentator; metrics register once per process."""
    return Instrumentator(excluded_handlers=["/metrics", "/health"])


def setup_instrumentation(app: FastAPI) -> None:
    """Record request metrics, skipping the metrics and health probes, and expose /metrics."""
    instrumentator = _instrumentator()
    instrumentator.instrument(app)
    instrumentator.expose(app, include_in_schema=False, endpoint="/metrics")
