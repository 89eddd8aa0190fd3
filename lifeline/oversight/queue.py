"""Priority-ordered case queue."""

import heapq
import itertools
import threading

from lifeline.schemas.oversight import OversightPriority


class CaseQueue:
    """
    Binary heap keyed by (priority, arrival) with a side table by case id.

    Higher priority wins; equal priorities keep arrival order. Removal and
    priority upgrades are O(1) on the side table, with stale heap entries
    discarded lazily when they surface, or all at once when they outnumber
    live entries. Upgrading keeps the case's original arrival sequence, and
    a priority is never lowered.
    """

    def __init__(self) -> None:
        self._heap: list[tuple[int, int, str]] = []
        self._entries: dict[str, tuple[int, int]] = {}
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    def push(self, case_id: str, priority: OversightPriority) -> None:
        with self._lock:
            current = self._entries.get(case_id)
            if current is None:
                key = (-priority.rank, next(self._sequence))
            elif -current[0] >= priority.rank:
                return
            else:
                key = (-priority.rank, current[1])
            self._entries[case_id] = key
            heapq.heappush(self._heap, (*key, case_id))
            self._compact_if_sparse()

    def remove(self, case_id: str) -> bool:
        with self._lock:
            removed = self._entries.pop(case_id, None) is not None
            self._compact_if_sparse()
            return removed

    def peek(self) -> str | None:
        with self._lock:
            self._discard_stale()
            return self._heap[0][2] if self._heap else None

    def pop(self) -> str | None:
        with self._lock:
            self._discard_stale()
            if not self._heap:
                return None
            _, _, case_id = heapq.heappop(self._heap)
            del self._entries[case_id]
            return case_id

    def ordered(self) -> list[str]:
        """Queued case ids, next-to-serve first."""
        with self._lock:
            return [
                case_id
                for case_id, _ in sorted(self._entries.items(), key=lambda item: item[1])
            ]

    def _discard_stale(self) -> None:
        while self._heap:
            rank, seq, case_id = self._heap[0]
            if self._entries.get(case_id) == (rank, seq):
                return
            heapq.heappop(self._heap)

    def _compact_if_sparse(self) -> None:
        if len(self._heap) <= 2 * len(self._entries):
            return
        self._heap = [
            (rank, seq, case_id)
            for rank, seq, case_id in self._heap
            if self._entries.get(case_id) == (rank, seq)
        ]
        heapq.heapify(self._heap)

    @property
    def heap_size(self) -> int:
        """Heap slots held, stale ones included."""
        with self._lock:
            return len(self._heap)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, case_id: str) -> bool:
        with self._lock:
            return case_id in self._entries
