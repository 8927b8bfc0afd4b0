"""Core data contracts for the policyflow workflow engine."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field


PayloadT = TypeVar("PayloadT")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def duration_ms(started_at: datetime, ended_at: Optional[datetime] = None) -> float:
    """Milliseconds between ``started_at`` and ``ended_at`` (or now)."""
    end = ended_at or utcnow()
    return max(0.0, (end - started_at).total_seconds() * 1000.0)


class InstanceStatus(str, Enum):
    """Lifecycle status of a workflow instance."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not InstanceStatus.RUNNING


class StepError(BaseModel):
    """Error recorded against the step that produced it."""

    step: str
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class ExecutionMetadata(BaseModel):
    """Execution bookkeeping carried on every state container."""

    instance_id: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    total_steps: int = 0


class WorkflowState(BaseModel, Generic[PayloadT]):
    """Mutable state owned by exactly one running workflow instance.

    ``data`` holds the domain payload and is opaque to the engine; routing
    functions read whatever fields of it they need. The executor maintains
    ``iteration_count`` and ``metadata.total_steps``; step failures are
    appended to ``errors``.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    data: Optional[PayloadT] = None
    errors: List[StepError] = Field(default_factory=list)
    iteration_count: int = Field(default=0, ge=0)
    metadata: ExecutionMetadata = Field(default_factory=ExecutionMetadata)

    def add_error(self, step: str, error: BaseException | str) -> StepError:
        """Record ``error`` as raised by ``step``."""
        message = error if isinstance(error, str) else str(error) or type(error).__name__
        record = StepError(step=step, message=message)
        self.errors.append(record)
        return record

    def errors_for(self, step: str) -> List[StepError]:
        return [e for e in self.errors if e.step == step]

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


class WorkflowInstance(BaseModel):
    """A tracked execution of one registered graph."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    instance_id: str
    graph_name: str
    state: WorkflowState
    status: InstanceStatus = InstanceStatus.RUNNING
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    error: Optional[str] = None
    terminal_step: Optional[str] = None

    @property
    def duration_ms(self) -> float:
        return duration_ms(self.started_at, self.ended_at)

    def summary(self) -> "InstanceSummary":
        """Return a lightweight snapshot of this instance."""
        return InstanceSummary(
            instance_id=self.instance_id,
            graph_name=self.graph_name,
            status=self.status,
            started_at=self.started_at,
            ended_at=self.ended_at,
            duration_ms=self.duration_ms,
            total_steps=self.state.metadata.total_steps,
            error=self.error,
        )


class InstanceSummary(BaseModel):
    """Snapshot of an instance for listings; never a live reference."""

    model_config = ConfigDict(frozen=True)

    instance_id: str
    graph_name: str
    status: InstanceStatus
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_ms: float = 0.0
    total_steps: int = 0
    error: Optional[str] = None


class HistoryRecord(BaseModel):
    """Frozen snapshot of a terminated workflow instance."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    instance_id: str
    graph_name: str
    status: InstanceStatus
    started_at: datetime
    ended_at: datetime
    duration_ms: float
    terminal_step: Optional[str] = None
    error: Optional[str] = None
    state: WorkflowState

    @classmethod
    def from_instance(cls, instance: WorkflowInstance) -> "HistoryRecord":
        ended_at = instance.ended_at or utcnow()
        return cls(
            instance_id=instance.instance_id,
            graph_name=instance.graph_name,
            status=instance.status,
            started_at=instance.started_at,
            ended_at=ended_at,
            duration_ms=duration_ms(instance.started_at, ended_at),
            terminal_step=instance.terminal_step,
            error=instance.error,
            state=instance.state.model_copy(deep=True),
        )

    @property
    def total_steps(self) -> int:
        return self.state.metadata.total_steps


class WorkflowResult(BaseModel):
    """What a caller receives once an instance reaches a terminal status."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    instance_id: str
    graph_name: str
    status: InstanceStatus
    state: WorkflowState
    terminal_step: Optional[str] = None
    duration_ms: float = 0.0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is InstanceStatus.COMPLETED


class GraphStatistics(BaseModel):
    """Aggregates for a single graph name."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    running: int = 0
    average_duration_ms: float = 0.0


class WorkflowStatistics(BaseModel):
    """Aggregate statistics across all graphs."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    running: int = 0
    success_rate: float = 0.0
    average_duration_ms: float = 0.0
    per_graph: Dict[str, GraphStatistics] = Field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


__all__ = [
    "InstanceStatus",
    "StepError",
    "ExecutionMetadata",
    "WorkflowState",
    "WorkflowInstance",
    "InstanceSummary",
    "HistoryRecord",
    "WorkflowResult",
    "GraphStatistics",
    "WorkflowStatistics",
    "duration_ms",
    "utcnow",
]
