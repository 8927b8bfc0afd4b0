"""Bounded history of terminated instances and cumulative statistics."""

from __future__ import annotations

from collections import deque
from typing import Deque, Dict, Iterable, List, Optional

from pydantic import BaseModel

from .constants import DEFAULT_HISTORY_LIMIT
from .contracts import (
    GraphStatistics,
    HistoryRecord,
    InstanceStatus,
    WorkflowInstance,
    WorkflowStatistics,
)


class _Tally(BaseModel):
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    completed_duration_ms: float = 0.0

    @property
    def finished(self) -> int:
        return self.completed + self.failed + self.cancelled

    def add(self, record: HistoryRecord) -> None:
        if record.status is InstanceStatus.COMPLETED:
            self.completed += 1
            self.completed_duration_ms += record.duration_ms
        elif record.status is InstanceStatus.FAILED:
            self.failed += 1
        elif record.status is InstanceStatus.CANCELLED:
            self.cancelled += 1

    @property
    def average_duration_ms(self) -> float:
        return self.completed_duration_ms / self.completed if self.completed else 0.0


class InstanceHistory:
    """Append-only record store that evicts the oldest entries first.

    Counters are cumulative, so statistics do not drift when old records are
    evicted. Not synchronised; the orchestrator guards every call with its
    registry lock.
    """

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError("history limit must be at least 1")
        self.limit = limit
        self._records: Deque[HistoryRecord] = deque()
        self._index: Dict[str, HistoryRecord] = {}
        self._overall = _Tally()
        self._per_graph: Dict[str, _Tally] = {}

    def append(self, record: HistoryRecord) -> None:
        if len(self._records) >= self.limit:
            evicted = self._records.popleft()
            self._index.pop(evicted.instance_id, None)
        self._records.append(record)
        self._index[record.instance_id] = record
        self._overall.add(record)
        self._per_graph.setdefault(record.graph_name, _Tally()).add(record)

    def recent(self, limit: Optional[int] = None) -> List[HistoryRecord]:
        """Most recent records first."""
        records = list(reversed(self._records))
        if limit is None:
            return records
        return records[: max(0, limit)]

    def find(self, instance_id: str) -> Optional[HistoryRecord]:
        return self._index.get(instance_id)

    def __contains__(self, instance_id: object) -> bool:
        return instance_id in self._index

    def __len__(self) -> int:
        return len(self._records)

    def statistics(self, active: Iterable[WorkflowInstance]) -> WorkflowStatistics:
        running_by_graph: Dict[str, int] = {}
        for instance in active:
            running_by_graph[instance.graph_name] = (
                running_by_graph.get(instance.graph_name, 0) + 1
            )
        running = sum(running_by_graph.values())

        per_graph: Dict[str, GraphStatistics] = {}
        for name in sorted(set(self._per_graph) | set(running_by_graph)):
            tally = self._per_graph.get(name, _Tally())
            graph_running = running_by_graph.get(name, 0)
            per_graph[name] = GraphStatistics(
                total=tally.finished + graph_running,
                completed=tally.completed,
                failed=tally.failed,
                cancelled=tally.cancelled,
                running=graph_running,
                average_duration_ms=tally.average_duration_ms,
            )

        overall = self._overall
        total = overall.finished + running
        return WorkflowStatistics(
            total=total,
            completed=overall.completed,
            failed=overall.failed,
            cancelled=overall.cancelled,
            running=running,
            success_rate=overall.completed / total if total else 0.0,
            average_duration_ms=overall.average_duration_ms,
            per_graph=per_graph,
        )


__all__ = ["InstanceHistory"]
