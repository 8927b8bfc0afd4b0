"""Error hierarchy for graph registration and workflow execution.

Hierarchy::

    WorkflowError
      ├── InvalidGraphError          ── malformed graph rejected at registration
      ├── UnknownGraphError          ── graph name not registered
      ├── UnroutableStateError       ── routing function produced no usable outcome
      ├── StepExecutionError         ── step failure, fatal only when flagged
      ├── MaxIterationsExceededError ── iteration ceiling reached
      └── WorkflowCancelledError     ── instance cancelled while running
"""

from __future__ import annotations

from typing import Iterable, List, Optional


class WorkflowError(Exception):
    """Base exception for all policyflow errors."""


class InvalidGraphError(WorkflowError):
    """Raised when a graph definition fails registration checks."""

    def __init__(
        self,
        graph_name: str,
        problems: Iterable[str],
        unreachable: Optional[Iterable[str]] = None,
    ) -> None:
        self.graph_name = graph_name
        self.problems: List[str] = list(problems)
        self.unreachable: List[str] = sorted(unreachable or [])
        details = "; ".join(self.problems) or "invalid graph"
        super().__init__(f"Graph '{graph_name}' is invalid: {details}")


class UnknownGraphError(WorkflowError):
    """Raised when a graph is requested that was never registered."""

    def __init__(self, graph_name: str) -> None:
        self.graph_name = graph_name
        super().__init__(f"Workflow graph not registered: {graph_name}")


class UnroutableStateError(WorkflowError):
    """Raised when a routing function returns an outcome with no edge."""

    def __init__(self, step_name: str, outcome: object, message: str | None = None):
        self.step_name = step_name
        self.outcome = outcome
        super().__init__(
            message or f"Step '{step_name}' routed to unmapped outcome {outcome!r}"
        )


class StepExecutionError(WorkflowError):
    """Failure raised by or on behalf of a step function.

    Steps raise this with ``fatal=True`` to halt the instance, e.g. when an
    external dependency is unrecoverable. Non-fatal errors are recorded on the
    state and routing proceeds.
    """

    def __init__(self, step_name: str, message: str, fatal: bool = False) -> None:
        self.step_name = step_name
        self.message = message
        self.fatal = fatal
        super().__init__(f"Step '{step_name}' failed: {message}")


class MaxIterationsExceededError(WorkflowError):
    """Raised when an instance reaches its iteration ceiling."""

    def __init__(self, graph_name: str, max_iterations: int, step_name: str) -> None:
        self.graph_name = graph_name
        self.max_iterations = max_iterations
        self.step_name = step_name
        super().__init__(
            f"Workflow '{graph_name}' exceeded {max_iterations} iterations "
            f"before step '{step_name}'"
        )


class WorkflowCancelledError(WorkflowError):
    """Raised inside the executor once an instance has been cancelled."""

    def __init__(self, instance_id: str | None = None) -> None:
        self.instance_id = instance_id
        super().__init__(f"Workflow instance cancelled: {instance_id}")


__all__ = [
    "WorkflowError",
    "InvalidGraphError",
    "UnknownGraphError",
    "UnroutableStateError",
    "StepExecutionError",
    "MaxIterationsExceededError",
    "WorkflowCancelledError",
]
