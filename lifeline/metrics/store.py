"""
Metrics Store for Moderation Requests

Aggregates per-request moderation metrics for the /metrics endpoint and
the periodic metrics log line.

The store is thread-safe using threading.Lock: moderation runs on the
event loop while maintenance tasks read it from a background thread.
"""

import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field


@dataclass
class RequestMetric:
    """
    Individual moderation request record.

    Attributes:
        timestamp: Unix timestamp when the request finished
        action: Action returned ('ALLOW', 'FLAG', ...)
        crisis_level: Crisis level returned
        message_type: Context message type of the request
        latency_ms: End-to-end moderation latency
        cached: Served from the result cache
        ensemble_mode: All models were consulted
        failed_models: Models that failed for this request
        system_error: Every model failed; a synthetic result was returned
    """

    timestamp: float
    action: str
    crisis_level: str
    message_type: str
    latency_ms: float
    cached: bool = False
    ensemble_mode: bool = False
    failed_models: int = 0
    system_error: bool = False


@dataclass
class AggregatedMetrics:
    """
    Aggregated metrics snapshot for reporting.

    Returned by ``MetricsStore.get_aggregated()`` as a copy; safe to use
    outside the store's lock.
    """

    total_requests: int = 0
    cache_hits: int = 0
    crisis_detections: int = 0
    emergency_escalations: int = 0
    model_failures: int = 0
    system_errors: int = 0
    budget_overruns: int = 0

    requests_by_action: dict[str, int] = field(default_factory=dict)
    requests_by_crisis_level: dict[str, int] = field(default_factory=dict)
    requests_by_message_type: dict[str, int] = field(default_factory=dict)

    # Latencies of uncached requests, most recent window only
    latencies: list[float] = field(default_factory=list)

    @property
    def average_latency_ms(self) -> float:
        return sum(self.latencies) / len(self.latencies) if self.latencies else 0.0


class MetricsStore:
    """
    Thread-safe in-memory moderation metrics.

    Example:
        store = MetricsStore(latency_budget_ms=50.0)
        store.record(RequestMetric(
            timestamp=time.time(),
            action="ALLOW",
            crisis_level="NONE",
            message_type="general",
            latency_ms=2.4,
        ))
        print(store.get_aggregated().average_latency_ms)
    """

    def __init__(
        self,
        latency_budget_ms: float = 50.0,
        latency_window: int = 1000,
        max_history: int = 10_000,
    ):
        """
        Initialize the metrics store.

        Args:
            latency_budget_ms: Latency above which a request counts as an overrun
            latency_window: Recent latencies kept for averages and percentiles
            max_history: Individual records retained for get_recent()
        """
        self._lock = threading.Lock()
        self._budget_ms = latency_budget_ms
        self._metrics: deque[RequestMetric] = deque(maxlen=max_history)
        self._latencies: deque[float] = deque(maxlen=latency_window)

        self._total_requests = 0
        self._cache_hits = 0
        self._crisis_detections = 0
        self._emergency_escalations = 0
        self._model_failures = 0
        self._system_errors = 0
        self._budget_overruns = 0

        self._by_action: dict[str, int] = defaultdict(int)
        self._by_crisis_level: dict[str, int] = defaultdict(int)
        self._by_message_type: dict[str, int] = defaultdict(int)

    @property
    def latency_budget_ms(self) -> float:
        return self._budget_ms

    def record(self, metric: RequestMetric) -> None:
        """
        Record one moderation request.

        Cached requests count towards totals but not towards latency,
        since they skip analysis.
        """
        with self._lock:
            self._metrics.append(metric)
            self._total_requests += 1

            if metric.cached:
                self._cache_hits += 1
            else:
                self._latencies.append(metric.latency_ms)
                if metric.latency_ms > self._budget_ms:
                    self._budget_overruns += 1

            if metric.crisis_level == "EMERGENCY":
                self._emergency_escalations += 1
            elif metric.crisis_level != "NONE":
                self._crisis_detections += 1

            self._model_failures += metric.failed_models
            if metric.system_error:
                self._system_errors += 1

            self._by_action[metric.action] += 1
            self._by_crisis_level[metric.crisis_level] += 1
            self._by_message_type[metric.message_type] += 1

    def get_aggregated(self) -> AggregatedMetrics:
        """Snapshot of the current aggregates."""
        with self._lock:
            return AggregatedMetrics(
                total_requests=self._total_requests,
                cache_hits=self._cache_hits,
                crisis_detections=self._crisis_detections,
                emergency_escalations=self._emergency_escalations,
                model_failures=self._model_failures,
                system_errors=self._system_errors,
                budget_overruns=self._budget_overruns,
                requests_by_action=dict(self._by_action),
                requests_by_crisis_level=dict(self._by_crisis_level),
                requests_by_message_type=dict(self._by_message_type),
                latencies=list(self._latencies),
            )

    def get_recent(self, count: int = 100) -> list[RequestMetric]:
        with self._lock:
            return list(self._metrics)[-count:]

    def reset(self) -> None:
        """Clear all stored data and aggregates."""
        with self._lock:
            self._metrics.clear()
            self._latencies.clear()
            self._total_requests = 0
            self._cache_hits = 0
            self._crisis_detections = 0
            self._emergency_escalations = 0
            self._model_failures = 0
            self._system_errors = 0
            self._budget_overruns = 0
            self._by_action.clear()
            self._by_crisis_level.clear()
            self._by_message_type.clear()
