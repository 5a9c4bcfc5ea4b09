"""Prometheus metrics instrumentation."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

REGISTRY = CollectorRegistry()

INGEST_DURATION = Histogram(
    "rbrag_ingest_duration_seconds",
    "Ingest duration, including skipped ingests",
    labelnames=("backend",),
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "rbrag_index_chunks",
    "Number of chunks stored in the index",
    registry=REGISTRY,
)

RETRIEVALS = Counter(
    "rbrag_retrievals_total",
    "Retrieve calls by outcome",
    labelnames=("backend", "outcome"),
    registry=REGISTRY,
)

RETRIEVE_LATENCY = Histogram(
    "rbrag_retrieve_latency_seconds",
    "Latency of retrieve calls",
    labelnames=("backend",),
    registry=REGISTRY,
)


def render_metrics() -> bytes:
    """Return metrics in the Prometheus text exposition format."""
    return generate_latest(REGISTRY)


__all__ = [
    "REGISTRY",
    "INGEST_DURATION",
    "INDEX_SIZE",
    "RETRIEVALS",
    "RETRIEVE_LATENCY",
    "render_metrics",
]
