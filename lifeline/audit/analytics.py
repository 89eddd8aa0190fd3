"""
Audit Query Evaluation and Reporting

Pure functions over lists of AuditEntry: filtering, ordering, analytics
roll-ups, compliance summaries and integrity checks. The recorder narrows
candidates through the store indices and hands them here.
"""

from collections import Counter

from lifeline.metrics.reporter import percentile
from lifeline.schemas.audit import (
    AuditAnalytics,
    AuditEntry,
    AuditQuery,
    AuditSeverity,
    ComplianceReport,
    IntegrityReport,
    LatencyPercentiles,
    PrivacyLevel,
    TimeRange,
)
from lifeline.schemas.oversight import HumanDecision

FALSE_POSITIVE_THRESHOLD = 0.1
HIGH_RISK_THRESHOLD = 7.0
LOW_CONFIDENCE_THRESHOLD = 0.7
MAX_PROCESSING_TIME_MS = 300_000

RISK_BUCKETS = ("0-2", "3-4", "5-6", "7-8", "9-10")

_OVERRIDES = (HumanDecision.OVERRIDE_AI.value, HumanDecision.MODIFY_AI.value)


def is_false_positive(entry: AuditEntry) -> bool:
    return entry.risk_assessment.false_positive_probability >= FALSE_POSITIVE_THRESHOLD


def is_human_override(entry: AuditEntry) -> bool:
    oversight = entry.human_oversight
    return oversight is not None and oversight.decision in _OVERRIDES


def risk_bucket(risk: float) -> str:
    if risk <= 2:
        return "0-2"
    if risk <= 4:
        return "3-4"
    if risk <= 6:
        return "5-6"
    if risk <= 8:
        return "7-8"
    return "9-10"


def apply_filters(entries: list[AuditEntry], query: AuditQuery) -> list[AuditEntry]:
    """Every non-index filter of the query. Time and type are pre-applied by the store."""
    severities = {s.value for s in query.severities} if query.severities else None
    categories = set(query.categories) if query.categories else None
    actions = set(query.actions) if query.actions else None

    def keep(entry: AuditEntry) -> bool:
        processing = entry.performance.total_processing_time_ms
        confidence = entry.final_decision.confidence
        risk = entry.risk_assessment.adjusted_risk

        if severities is not None and entry.severity.value not in severities:
            return False
        if categories is not None and entry.category not in categories:
            return False
        if actions is not None and entry.final_decision.action not in actions:
            return False
        if query.session_hash and entry.session_hash != query.session_hash:
            return False
        if query.user_id_hash and entry.user_id_hash != query.user_id_hash:
            return False
        if query.min_processing_time_ms is not None and processing < query.min_processing_time_ms:
            return False
        if query.max_processing_time_ms is not None and processing > query.max_processing_time_ms:
            return False
        if query.min_confidence is not None and confidence < query.min_confidence:
            return False
        if query.max_confidence is not None and confidence > query.max_confidence:
            return False
        if query.min_risk_score is not None and risk < query.min_risk_score:
            return False
        if query.max_risk_score is not None and risk > query.max_risk_score:
            return False
        if query.false_positive_only and not is_false_positive(entry):
            return False
        if query.human_override_only and not is_human_override(entry):
            return False
        return True

    return [e for e in entries if keep(e)]


_SORT_KEYS = {
    "timestamp": lambda e: e.timestamp,
    "severity": lambda e: e.severity.rank,
    "processing_time": lambda e: e.performance.total_processing_time_ms,
    "risk_score": lambda e: e.risk_assessment.adjusted_risk,
}


def sort_entries(
    entries: list[AuditEntry], order_by: str = "timestamp", direction: str = "DESC"
) -> list[AuditEntry]:
    # sorted() is stable, so equal keys keep write order in both directions.
    return sorted(entries, key=_SORT_KEYS[order_by], reverse=direction == "DESC")


def compute_analytics(entries: list[AuditEntry], time_range: TimeRange) -> AuditAnalytics:
    """Roll up a window of entries. Empty windows produce zeroed analytics."""
    total = len(entries)
    if total == 0:
        return AuditAnalytics(
            time_range=time_range,
            risk_distribution={bucket: 0 for bucket in RISK_BUCKETS},
            hourly_distribution={str(hour): 0 for hour in range(24)},
        )

    processing = [e.performance.total_processing_time_ms for e in entries]
    confidences = [e.final_decision.confidence for e in entries]
    reviewed = [e for e in entries if e.human_oversight and e.human_oversight.decision]

    risk_distribution = {bucket: 0 for bucket in RISK_BUCKETS}
    for entry in entries:
        risk_distribution[risk_bucket(entry.risk_assessment.adjusted_risk)] += 1

    hourly = {str(hour): 0 for hour in range(24)}
    for entry in entries:
        hourly[str(entry.timestamp.hour)] += 1

    hours = max(time_range.hours, 1.0)

    return AuditAnalytics(
        time_range=time_range,
        total_events=total,
        events_by_type=dict(Counter(e.event_type.value for e in entries)),
        events_by_severity=dict(Counter(e.severity.value for e in entries)),
        events_per_hour=round(total / hours, 4),
        average_processing_time_ms=round(sum(processing) / total, 3),
        processing_time_percentiles=LatencyPercentiles(
            p50=percentile(processing, 50),
            p90=percentile(processing, 90),
            p95=percentile(processing, 95),
            p99=percentile(processing, 99),
        ),
        human_override_rate=(
            round(sum(1 for e in reviewed if is_human_override(e)) / len(reviewed), 4)
            if reviewed
            else 0.0
        ),
        false_positive_rate=round(sum(1 for e in entries if is_false_positive(e)) / total, 4),
        risk_distribution=risk_distribution,
        high_risk_events=sum(
            1 for e in entries if e.risk_assessment.adjusted_risk >= HIGH_RISK_THRESHOLD
        ),
        emergency_escalations=sum(
            1 for e in entries if e.severity == AuditSeverity.EMERGENCY
        ),
        average_confidence=round(sum(confidences) / total, 4),
        low_confidence_events=sum(1 for c in confidences if c < LOW_CONFIDENCE_THRESHOLD),
        learning_opportunities=sum(
            1 for e in entries if e.quality_metrics and e.quality_metrics.learning_opportunity
        ),
        hourly_distribution=hourly,
    )


def compliance_report(
    entries: list[AuditEntry], regulation: str, time_range: TimeRange
) -> ComplianceReport:
    """
    Compliance summary for one regulation tag.

    Rates are fractions of all decisions in the window:
    - human_oversight_rate: entries whose oversight snapshot says review was required
    - data_retention_compliance: entries recorded under the regulation
    - privacy_compliance: entries stored anonymous or pseudonymous
    - audit_trail_completeness: entries with a non-empty decision reasoning
    """
    regulation = regulation.upper()
    total = len(entries)
    if total == 0:
        return ComplianceReport(regulation=regulation, time_range=time_range)

    timed = [
        e.performance.total_processing_time_ms
        for e in entries
        if e.performance.total_processing_time_ms > 0
    ]
    private = (PrivacyLevel.ANONYMOUS, PrivacyLevel.PSEUDONYMOUS)

    return ComplianceReport(
        regulation=regulation,
        time_range=time_range,
        total_decisions=total,
        human_oversight_rate=round(
            sum(1 for e in entries if e.human_oversight and e.human_oversight.required) / total,
            4,
        ),
        average_response_time_ms=round(sum(timed) / len(timed), 3) if timed else 0.0,
        high_risk_decisions=sum(
            1 for e in entries if e.risk_assessment.adjusted_risk >= HIGH_RISK_THRESHOLD
        ),
        data_retention_compliance=round(
            sum(1 for e in entries if regulation in e.compliance.regulations) / total, 4
        ),
        privacy_compliance=round(
            sum(1 for e in entries if e.compliance.privacy_level in private) / total, 4
        ),
        audit_trail_completeness=round(
            sum(1 for e in entries if e.final_decision.reasoning.strip()) / total, 4
        ),
    )


def validate_integrity(entries: list[AuditEntry]) -> IntegrityReport:
    issues: list[str] = []
    valid = 0
    for entry in entries:
        problems = _entry_problems(entry)
        if problems:
            issues.extend(f"{entry.id or '<missing id>'}: {p}" for p in problems)
        else:
            valid += 1
    return IntegrityReport(
        valid=not issues,
        total_entries=len(entries),
        valid_entries=valid,
        issues=issues,
    )


def _entry_problems(entry: AuditEntry) -> list[str]:
    problems = []
    if not entry.id:
        problems.append("missing id")
    if entry.timestamp is None:
        problems.append("missing timestamp")
    if not entry.final_decision.reasoning.strip():
        problems.append("missing decision reasoning")
    if len(entry.content_hash) != 64:
        problems.append("content hash is not a SHA-256 digest")
    processing = entry.performance.total_processing_time_ms
    if not 0 <= processing <= MAX_PROCESSING_TIME_MS:
        problems.append(f"processing time out of range: {processing}")
    return problems
