"""Prometheus instruments for generation and webhook delivery."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

GENERATIONS_TOTAL = Counter(
    "pdfbot_generations_total",
    "Generation attempts grouped by outcome.",
    ["outcome"],
)
GENERATION_SECONDS = Histogram(
    "pdfbot_generation_seconds",
    "Wall time spent rendering and storing a document.",
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120),
)
PINGS_TOTAL = Counter(
    "pdfbot_pings_total",
    "Webhook delivery attempts grouped by outcome.",
    ["outcome"],
)


def record_generation(*, failed: bool, seconds: float) -> None:
    GENERATIONS_TOTAL.labels(outcome="error" if failed else "success").inc()
    GENERATION_SECONDS.observe(seconds)


def record_ping(*, failed: bool) -> None:
    PINGS_TOTAL.labels(outcome="error" if failed else "success").inc()
