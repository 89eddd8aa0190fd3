"""
Metrics Module: Moderation Request Storage and Reporting

Components:
    MetricsStore: Thread-safe in-memory metrics aggregation
    RequestMetric: Individual request metric record
    AggregatedMetrics: Pre-computed aggregates for reporting
    MetricsReporter: Generate MetricsResponse for the /metrics endpoint

Usage:
    from lifeline.metrics import MetricsStore, MetricsReporter, RequestMetric

    store = MetricsStore(latency_budget_ms=50.0)
    store.record(RequestMetric(
        timestamp=time.time(),
        action="ALLOW",
        crisis_level="NONE",
        message_type="general",
        latency_ms=2.1,
    ))
    response = MetricsReporter(store).generate_report()
"""

from lifeline.metrics.store import (
    AggregatedMetrics,
    MetricsStore,
    RequestMetric,
)
from lifeline.metrics.reporter import (
    MetricsReporter,
    percentile,
)

__all__ = [
    "AggregatedMetrics",
    "MetricsStore",
    "RequestMetric",
    "MetricsReporter",
    "percentile",
]
