"""
Metrics Reporter for API Responses

Transforms the aggregated moderation metrics into the MetricsResponse
served by /metrics, and into the one-line summary logged every minute.
"""

import logging

from lifeline.metrics.store import AggregatedMetrics, MetricsStore
from lifeline.schemas.api import LatencySummary, MetricsResponse

logger = logging.getLogger(__name__)


def percentile(values: list[float], pct: float) -> float:
    """Nearest-rank percentile of an unsorted list (0.0 when empty)."""
    if not values:
        return 0.0
    ordered = sorted(values)
    index = min(len(ordered) - 1, max(0, int(round(pct / 100 * len(ordered))) - 1))
    return ordered[index]


class MetricsReporter:
    """
    Generate metrics reports from a MetricsStore.

    Example:
        reporter = MetricsReporter(pipeline.metrics)
        return reporter.generate_report()
    """

    def __init__(self, store: MetricsStore):
        self._store = store

    def generate_report(self) -> MetricsResponse:
        agg = self._store.get_aggregated()

        return MetricsResponse(
            total_requests=agg.total_requests,
            cache_hits=agg.cache_hits,
            cache_hit_rate=(
                round(agg.cache_hits / agg.total_requests, 4)
                if agg.total_requests
                else 0.0
            ),
            requests_by_action=agg.requests_by_action,
            requests_by_crisis_level=agg.requests_by_crisis_level,
            requests_by_message_type=agg.requests_by_message_type,
            crisis_detections=agg.crisis_detections,
            emergency_escalations=agg.emergency_escalations,
            model_failures=agg.model_failures,
            latency=self._latency_summary(agg),
        )

    def validate_performance(self) -> bool:
        """True while the rolling average latency is within budget."""
        agg = self._store.get_aggregated()
        return agg.average_latency_ms <= self._store.latency_budget_ms

    def log_summary(self) -> None:
        agg = self._store.get_aggregated()
        logger.info(
            "Moderation metrics: requests=%d avg_latency=%.2fms crisis=%d emergency=%d cache_hits=%d",
            agg.total_requests,
            agg.average_latency_ms,
            agg.crisis_detections,
            agg.emergency_escalations,
            agg.cache_hits,
        )

    def _latency_summary(self, agg: AggregatedMetrics) -> LatencySummary:
        average = agg.average_latency_ms
        return LatencySummary(
            average_ms=round(average, 3),
            p50_ms=round(percentile(agg.latencies, 50), 3),
            p95_ms=round(percentile(agg.latencies, 95), 3),
            budget_ms=self._store.latency_budget_ms,
            budget_overruns=agg.budget_overruns,
            within_budget=average <= self._store.latency_budget_ms,
        )
