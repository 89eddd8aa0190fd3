"""
Audit Recorder - durable, compliance-grade record of every decision.

Write path:
- Ordinary entries are appended to a bounded in-memory buffer and flushed
  in batches (buffer full, or the periodic 5 s flush).
- CRITICAL/EMERGENCY entries and every human_oversight entry bypass the
  buffer and are written synchronously.
- A flush swaps the buffer out under the lock and writes the snapshot, so
  it never observes a half-appended buffer and never blocks appenders on
  store I/O.
- Write failures go to the fallback logger and the batch is requeued;
  they are never raised to the moderation caller. While the store keeps
  failing, buffer-full flushes back off exponentially and pending entries
  are capped at ``audit_buffer_max_entries``, dropping the oldest.

Read path (query, analytics, compliance, integrity) flushes pending
entries first and propagates its errors.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable

from lifeline.audit.analytics import (
    apply_filters,
    compliance_report,
    compute_analytics,
    sort_entries,
    validate_integrity,
)
from lifeline.audit.entries import EntryFactory
from lifeline.audit.store import AuditStore, create_store
from lifeline.config import Settings
from lifeline.moderation.cache import TTLCache
from lifeline.schemas.audit import (
    AuditAnalytics,
    AuditEntry,
    AuditEventType,
    AuditMetrics,
    AuditQuery,
    ComplianceReport,
    IntegrityReport,
    QueryResult,
    RecordResult,
    TimeRange,
)
from lifeline.schemas.moderation import CrisisLevel, ModerationRequest, ModerationResult
from lifeline.schemas.oversight import OversightCase

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger("lifeline.audit.fallback")

RETRY_BASE_SECONDS = 1.0
RETRY_MAX_SECONDS = 60.0


class AuditQueryError(ValueError):
    """A query, analytics or compliance request that cannot be evaluated."""


class AuditRecorder:
    """
    Buffered audit writer with immediate flush for high-stakes events.

    Usage:
        recorder = AuditRecorder(settings)
        recorder.record_moderation(request, result)
        page = recorder.query(AuditQuery(event_types=["crisis_detection"]))
    """

    def __init__(
        self,
        settings: Settings,
        store: AuditStore | None = None,
        factory: EntryFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store if store is not None else create_store(settings.audit_log_dir)
        self.factory = factory or EntryFactory(settings)
        self._buffer_size = settings.audit_buffer_size
        self._max_buffered = settings.audit_buffer_max_entries
        self._write_budget_ms = settings.audit_write_budget_ms

        self._buffer: list[AuditEntry] = []
        self._buffer_lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._on_buffer_full: Callable[[], None] | None = None
        self._clock = clock
        self._consecutive_failures = 0
        self._retry_at = 0.0

        self._analytics_cache: TTLCache[AuditAnalytics] = TTLCache(
            settings.analytics_cache_ttl_seconds, clock=clock
        )

        self._stats_lock = threading.Lock()
        self._write_latencies: deque[float] = deque(maxlen=1000)
        self._query_latencies: deque[float] = deque(maxlen=1000)
        self._flush_count = 0
        self._failed_flushes = 0
        self._dropped_entries = 0

    @property
    def store(self) -> AuditStore:
        return self._store

    def on_buffer_full(self, callback: Callable[[], None]) -> None:
        """
        Hand buffer-full flushes to a background flusher.

        Without a callback the appending thread flushes inline.
        """
        self._on_buffer_full = callback

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def record(self, entry: AuditEntry) -> RecordResult:
        start = time.perf_counter()
        immediate = (
            entry.severity.is_immediate
            or entry.event_type == AuditEventType.HUMAN_OVERSIGHT
        )

        if immediate:
            self._write_now(entry)
        else:
            full = self._enqueue([entry]) >= self._buffer_size
            if full and not self._backing_off():
                if self._on_buffer_full is not None:
                    self._on_buffer_full()
                else:
                    self.flush()

        latency_ms = (time.perf_counter() - start) * 1000
        with self._stats_lock:
            self._write_latencies.append(latency_ms)
        if latency_ms > self._write_budget_ms:
            logger.warning(
                "Audit write exceeded budget: %.2fms (budget %.0fms) for %s",
                latency_ms,
                self._write_budget_ms,
                entry.id,
            )

        return RecordResult(
            audit_id=entry.id, write_latency_ms=latency_ms, buffered=not immediate
        )

    def record_moderation(
        self, request: ModerationRequest, result: ModerationResult
    ) -> str | None:
        """
        Audit one moderation decision, plus a crisis_detection entry when
        a crisis level was assigned. Returns the moderation entry id.

        Never raises: failures are logged on the fallback channel.
        """
        try:
            entry = self.factory.build_moderation_entry(request, result)
            self.record(entry)
            if result.crisis_level != CrisisLevel.NONE:
                self.record(self.factory.build_crisis_entry(request, result, entry.id))
            return entry.id
        except Exception:
            fallback_logger.exception(
                "Failed to audit moderation %s (action=%s)", result.id, result.action.value
            )
            return None

    def record_escalation(self, case: OversightCase) -> str | None:
        try:
            entry = self.factory.build_escalation_entry(case)
            self.record(entry)
            return entry.id
        except Exception:
            fallback_logger.exception("Failed to audit escalation of case %s", case.id)
            return None

    def record_oversight_resolution(self, case: OversightCase) -> str | None:
        try:
            entry = self.factory.build_oversight_entry(case)
            self.record(entry)
            return entry.id
        except Exception:
            fallback_logger.exception("Failed to audit resolution of case %s", case.id)
            return None

    def flush(self) -> int:
        """Write every buffered entry. Returns how many were written."""
        with self._flush_lock:
            with self._buffer_lock:
                batch, self._buffer = self._buffer, []
            if not batch:
                return 0

            try:
                self._store.write(batch)
            except Exception:
                fallback_logger.exception(
                    "Audit flush of %d entries failed; requeued", len(batch)
                )
                self._enqueue(batch, front=True)
                with self._stats_lock:
                    self._failed_flushes += 1
                self._note_failure()
                return 0

            with self._stats_lock:
                self._flush_count += 1
                self._consecutive_failures = 0
            logger.debug("Flushed %d audit entries", len(batch))
            return len(batch)

    def _write_now(self, entry: AuditEntry) -> None:
        try:
            self._store.write([entry])
        except Exception:
            fallback_logger.exception(
                "Immediate audit write failed for %s (%s %s); buffered for retry",
                entry.id,
                entry.event_type.value,
                entry.severity.value,
            )
            self._enqueue([entry])
            self._note_failure()

    def _enqueue(self, entries: list[AuditEntry], front: bool = False) -> int:
        """Add pending entries, dropping the oldest beyond the cap. Returns the new size."""
        with self._buffer_lock:
            if front:
                self._buffer[:0] = entries
            else:
                self._buffer.extend(entries)
            excess = len(self._buffer) - self._max_buffered
            dropped: list[AuditEntry] = []
            if excess > 0:
                dropped = self._buffer[:excess]
                del self._buffer[:excess]
            size = len(self._buffer)

        if dropped:
            with self._stats_lock:
                self._dropped_entries += len(dropped)
            for entry in dropped:
                fallback_logger.error(
                    "Audit buffer over capacity (%d); dropped %s (%s %s)",
                    self._max_buffered,
                    entry.id,
                    entry.event_type.value,
                    entry.severity.value,
                )
        return size

    def _note_failure(self) -> None:
        with self._stats_lock:
            self._consecutive_failures += 1
            exponent = min(self._consecutive_failures - 1, 6)
            delay = min(RETRY_BASE_SECONDS * 2**exponent, RETRY_MAX_SECONDS)
            self._retry_at = self._clock() + delay

    def _backing_off(self) -> bool:
        with self._stats_lock:
            return self._consecutive_failures > 0 and self._clock() < self._retry_at

    def close(self) -> None:
        flushed = self.flush()
        logger.info("Audit recorder closed (%d entries flushed)", flushed)

    @property
    def buffered(self) -> int:
        with self._buffer_lock:
            return len(self._buffer)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def get_entry(self, entry_id: str) -> AuditEntry | None:
        self.flush()
        return self._store.get(entry_id)

    def query(self, query: AuditQuery) -> QueryResult:
        _check_query(query)
        start = time.perf_counter()
        self.flush()

        candidates = self._store.candidates(
            query.start_time, query.end_time, query.event_types
        )
        matched = sort_entries(
            apply_filters(candidates, query), query.order_by, query.order_direction
        )
        page = matched[query.offset : query.offset + query.limit]

        query_ms = (time.perf_counter() - start) * 1000
        with self._stats_lock:
            self._query_latencies.append(query_ms)

        return QueryResult(entries=page, total_count=len(matched), query_time_ms=query_ms)

    def analytics(self, time_range: TimeRange) -> AuditAnalytics:
        """Roll-up over a window, cached per window for the analytics TTL."""
        key = f"{time_range.start.isoformat()}|{time_range.end.isoformat()}"
        cached = self._analytics_cache.get(key)
        if cached is not None:
            return cached

        self.flush()
        entries = self._store.candidates(time_range.start, time_range.end)
        result = compute_analytics(entries, time_range)
        self._analytics_cache.set(key, result)
        return result

    def compliance_report(self, regulation: str, time_range: TimeRange) -> ComplianceReport:
        if not regulation or not regulation.strip():
            raise AuditQueryError("regulation must be a non-empty tag")
        self.flush()
        entries = self._store.candidates(time_range.start, time_range.end)
        return compliance_report(entries, regulation.strip(), time_range)

    def validate_integrity(self, time_range: TimeRange | None = None) -> IntegrityReport:
        self.flush()
        if time_range is None:
            entries = self._store.candidates()
        else:
            entries = self._store.candidates(time_range.start, time_range.end)
        report = validate_integrity(entries)
        if not report.valid:
            logger.error(
                "Audit integrity check found %d issue(s) in %d entries",
                len(report.issues),
                report.total_entries,
            )
        return report

    # ------------------------------------------------------------------
    # Maintenance and metrics
    # ------------------------------------------------------------------

    def sweep_analytics_cache(self) -> int:
        return self._analytics_cache.sweep()

    def metrics(self) -> AuditMetrics:
        with self._stats_lock:
            writes = list(self._write_latencies)
            queries = list(self._query_latencies)
            flush_count = self._flush_count
            failed = self._failed_flushes
            dropped = self._dropped_entries

        return AuditMetrics(
            total_entries=len(self._store),
            buffered_entries=self.buffered,
            flush_count=flush_count,
            failed_flushes=failed,
            dropped_entries=dropped,
            average_write_latency_ms=round(sum(writes) / len(writes), 4) if writes else 0.0,
            average_query_latency_ms=round(sum(queries) / len(queries), 4) if queries else 0.0,
            analytics_cache_hits=self._analytics_cache.hits,
            analytics_cache_misses=self._analytics_cache.misses,
            store=self._store.stats(),
        )


def _check_query(query: AuditQuery) -> None:
    bounds = (
        ("start_time", query.start_time, "end_time", query.end_time),
        ("min_processing_time_ms", query.min_processing_time_ms,
         "max_processing_time_ms", query.max_processing_time_ms),
        ("min_confidence", query.min_confidence, "max_confidence", query.max_confidence),
        ("min_risk_score", query.min_risk_score, "max_risk_score", query.max_risk_score),
    )
    for low_name, low, high_name, high in bounds:
        if low is not None and high is not None and low > high:
            raise AuditQueryError(f"{low_name} must not be greater than {high_name}")
