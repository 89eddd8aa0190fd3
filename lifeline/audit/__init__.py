"""
Audit module: immutable compliance records of every decision.

Components:
    EntryFactory: Builds hashed, anonymised AuditEntry records
    AuditStore: Storage protocol (InMemoryAuditStore, JsonlAuditStore)
    AuditRecorder: Buffered writer, queries, analytics and compliance reports

Usage:
    from lifeline.audit import AuditRecorder

    recorder = AuditRecorder(settings)
    recorder.record_moderation(request, result)
    report = recorder.compliance_report("GDPR", TimeRange.last(24))
"""

from lifeline.audit.analytics import (
    apply_filters,
    compliance_report,
    compute_analytics,
    risk_bucket,
    sort_entries,
    validate_integrity,
)
from lifeline.audit.entries import (
    EntryFactory,
    hash_content,
    moderation_severity,
    severity_for_crisis,
    severity_for_priority,
    severity_for_risk,
)
from lifeline.audit.recorder import AuditQueryError, AuditRecorder
from lifeline.audit.store import (
    AuditStore,
    InMemoryAuditStore,
    JsonlAuditStore,
    create_store,
)

__all__ = [
    "apply_filters",
    "compliance_report",
    "compute_analytics",
    "risk_bucket",
    "sort_entries",
    "validate_integrity",
    "EntryFactory",
    "hash_content",
    "moderation_severity",
    "severity_for_crisis",
    "severity_for_priority",
    "severity_for_risk",
    "AuditQueryError",
    "AuditRecorder",
    "AuditStore",
    "InMemoryAuditStore",
    "JsonlAuditStore",
    "create_store",
]
