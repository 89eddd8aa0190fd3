"""
Audit Entry Storage

The recorder talks to storage through the small AuditStore protocol, so a
database-backed store can replace these without touching the recorder.

Both stores here keep every entry serialized exactly once and maintain two
secondary indices (event type, UTC calendar date) so filtered queries only
parse the entries that can match. Reads parse the stored JSON afresh,
which makes repeated reads of one id byte-identical.
"""

import logging
import threading
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Protocol, Sequence

from lifeline.schemas.audit import AuditEntry, AuditEventType

logger = logging.getLogger(__name__)


class AuditStore(Protocol):
    def write(self, entries: Sequence[AuditEntry]) -> None:
        """Persist a batch. Raises on failure; nothing is partially indexed."""
        ...

    def get(self, entry_id: str) -> AuditEntry | None: ...

    def raw(self, entry_id: str) -> str | None: ...

    def candidates(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        event_types: Iterable[AuditEventType] | None = None,
    ) -> list[AuditEntry]:
        """Entries that may match, narrowed by index, in write order."""
        ...

    def __len__(self) -> int: ...

    def stats(self) -> dict[str, Any]: ...


class InMemoryAuditStore:
    """
    Process-local audit store.

    Example:
        store = InMemoryAuditStore()
        store.write([entry])
        assert store.get(entry.id) == entry
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._raw: dict[str, str] = {}
        self._order: dict[str, int] = {}
        self._by_type: dict[str, list[str]] = defaultdict(list)
        self._by_date: dict[date, list[str]] = defaultdict(list)

    def write(self, entries: Sequence[AuditEntry]) -> None:
        serialized = [(entry, entry.model_dump_json()) for entry in entries]
        with self._lock:
            self._index(serialized)

    def _index(self, serialized: Sequence[tuple[AuditEntry, str]]) -> None:
        for entry, payload in serialized:
            if entry.id in self._raw:
                # Entries are append-only; a replayed id keeps its first version.
                continue
            self._raw[entry.id] = payload
            self._order[entry.id] = len(self._order)
            self._by_type[entry.event_type.value].append(entry.id)
            self._by_date[_utc_day(entry.timestamp)].append(entry.id)

    def get(self, entry_id: str) -> AuditEntry | None:
        payload = self.raw(entry_id)
        return AuditEntry.model_validate_json(payload) if payload is not None else None

    def raw(self, entry_id: str) -> str | None:
        with self._lock:
            return self._raw.get(entry_id)

    def candidates(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        event_types: Iterable[AuditEventType] | None = None,
    ) -> list[AuditEntry]:
        with self._lock:
            ids: set[str] | None = None

            if event_types is not None:
                ids = set()
                for event_type in event_types:
                    ids.update(self._by_type.get(AuditEventType(event_type).value, ()))

            if start is not None or end is not None:
                dated: set[str] = set()
                for day in self._days_between(start, end):
                    dated.update(self._by_date.get(day, ()))
                ids = dated if ids is None else ids & dated

            if ids is None:
                ids = set(self._raw)

            payloads = [self._raw[i] for i in sorted(ids, key=self._order.__getitem__)]

        entries = [AuditEntry.model_validate_json(p) for p in payloads]
        return [
            e
            for e in entries
            if (start is None or e.timestamp >= start)
            and (end is None or e.timestamp <= end)
        ]

    def _days_between(self, start: datetime | None, end: datetime | None) -> list[date]:
        # Caller holds the lock.
        known = sorted(self._by_date)
        if not known:
            return []
        first = _utc_day(start) if start is not None else known[0]
        last = _utc_day(end) if end is not None else known[-1]
        if (last - first).days + 1 > len(known):
            return [d for d in known if first <= d <= last]
        return [first + timedelta(days=n) for n in range((last - first).days + 1)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._raw)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "backend": "memory",
                "entries": len(self._raw),
                "indexed_event_types": len(self._by_type),
                "indexed_days": len(self._by_date),
            }


class JsonlAuditStore(InMemoryAuditStore):
    """
    Newline-delimited JSON store, one file per UTC day.

    Entries are appended to ``audit-YYYY-MM-DD.jsonl`` before they are
    indexed, so an entry visible to queries is already on disk. Existing
    files are loaded into the indices at construction.
    """

    def __init__(self, directory: str | Path) -> None:
        super().__init__()
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)
        self._load()

    def _path_for(self, day: date) -> Path:
        return self._directory / f"audit-{day.isoformat()}.jsonl"

    def _load(self) -> None:
        loaded = 0
        for path in sorted(self._directory.glob("audit-*.jsonl")):
            with path.open("r", encoding="utf-8") as f:
                lines = [line.strip() for line in f if line.strip()]
            serialized = [(AuditEntry.model_validate_json(line), line) for line in lines]
            self._index(serialized)
            loaded += len(serialized)
        if loaded:
            logger.info("Loaded %d audit entries from %s", loaded, self._directory)

    def write(self, entries: Sequence[AuditEntry]) -> None:
        serialized = [(entry, entry.model_dump_json()) for entry in entries]
        by_day: dict[date, list[str]] = defaultdict(list)
        for entry, payload in serialized:
            by_day[_utc_day(entry.timestamp)].append(payload)

        with self._lock:
            for day, payloads in by_day.items():
                with self._path_for(day).open("a", encoding="utf-8") as f:
                    f.write("\n".join(payloads) + "\n")
            self._index(serialized)

    def stats(self) -> dict[str, Any]:
        stats = super().stats()
        stats["backend"] = "jsonl"
        stats["directory"] = str(self._directory)
        return stats


def create_store(directory: str | None) -> AuditStore:
    """JSONL store when a directory is configured, in-memory otherwise."""
    if directory:
        return JsonlAuditStore(directory)
    return InMemoryAuditStore()


def _utc_day(moment: datetime) -> date:
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(timezone.utc).date()
