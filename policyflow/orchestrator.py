"""Workflow orchestrator: graph registry, instance lifecycle and history."""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

from .constants import DEFAULT_HISTORY_LIMIT, DEFAULT_HISTORY_PAGE_SIZE, DEFAULT_MAX_ITERATIONS
from .contracts import (
    ExecutionMetadata,
    HistoryRecord,
    InstanceStatus,
    InstanceSummary,
    WorkflowInstance,
    WorkflowResult,
    WorkflowState,
    WorkflowStatistics,
    utcnow,
)
from .errors import WorkflowCancelledError, WorkflowError
from .execute import CancellationToken, GraphExecutor
from .graph import WorkflowDefinition
from .history import InstanceHistory
from .registry import GraphRegistry

if TYPE_CHECKING:
    from .config import PolicyflowConfig

logger = logging.getLogger(__name__)


def _coerce_state(initial_state: Any) -> WorkflowState:
    if initial_state is None:
        return WorkflowState()
    if isinstance(initial_state, WorkflowState):
        if initial_state.metadata.instance_id:
            # Already owned by another instance; run on a fresh copy.
            state = initial_state.model_copy(deep=True)
            state.iteration_count = 0
            state.errors = []
            state.metadata = ExecutionMetadata()
            return state
        return initial_state
    return WorkflowState(data=initial_state)


class WorkflowOrchestrator:
    """Starts, tracks and records workflow instances.

    Running instances live in an active registry keyed by instance id. When
    an instance reaches a terminal status it is removed from the registry and
    a frozen :class:`HistoryRecord` is appended to a bounded history, in one
    step under a single lock, so that :meth:`get_statistics` never observes a
    half-moved instance. The lock is a :class:`threading.Lock` so monitoring
    code may poll from other threads.

    Example::

        orchestrator = WorkflowOrchestrator()
        orchestrator.register_graph(definition)
        result = await orchestrator.start("review", {"draft": ""})
        print(result.status, result.state.metadata.total_steps)
    """

    def __init__(
        self,
        registry: Optional[GraphRegistry] = None,
        executor: Optional[GraphExecutor] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        self._registry = registry or GraphRegistry()
        self._executor = executor or GraphExecutor(
            self._registry, max_iterations=max_iterations
        )
        self._lock = threading.Lock()
        self._active: Dict[str, WorkflowInstance] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._history = InstanceHistory(history_limit)
        self._tasks: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_config(cls, config: "PolicyflowConfig") -> "WorkflowOrchestrator":
        return cls(
            history_limit=config.orchestrator.history_limit,
            max_iterations=config.engine.max_iterations,
        )

    # ------------------------------------------------------------------
    # Graph registry
    @property
    def registry(self) -> GraphRegistry:
        return self._registry

    @property
    def graphs(self) -> List[str]:
        return self._registry.names()

    def register_graph(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """Validate and register ``definition``.

        Raises:
            InvalidGraphError: The graph is malformed or its name is taken.
        """
        return self._registry.register(definition)

    def get_graph(self, name: str) -> WorkflowDefinition:
        return self._registry.get(name)

    # ------------------------------------------------------------------
    # Instance lifecycle
    def _open(
        self, definition: WorkflowDefinition, initial_state: Any
    ) -> tuple[WorkflowInstance, CancellationToken]:
        state = _coerce_state(initial_state)
        instance_id = str(uuid.uuid4())
        started_at = utcnow()
        state.metadata.instance_id = instance_id
        state.metadata.start_time = started_at
        instance = WorkflowInstance(
            instance_id=instance_id,
            graph_name=definition.name,
            state=state,
            started_at=started_at,
        )
        token = CancellationToken()
        with self._lock:
            self._active[instance_id] = instance
            self._tokens[instance_id] = token
        logger.info(f"Started workflow {definition.name} instance {instance_id}")
        return instance, token

    def _finalize(
        self,
        instance_id: str,
        status: InstanceStatus,
        *,
        state: Optional[WorkflowState] = None,
        terminal_step: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[WorkflowInstance]:
        """Move an active instance to history. ``None`` if it was not active."""
        with self._lock:
            instance = self._active.pop(instance_id, None)
            if instance is None:
                return None
            token = self._tokens.pop(instance_id)
            if state is not None:
                instance.state = state
            instance.status = status
            instance.ended_at = utcnow()
            instance.terminal_step = terminal_step
            instance.error = error
            instance.state.metadata.end_time = instance.ended_at
            self._history.append(HistoryRecord.from_instance(instance))
        if status is InstanceStatus.CANCELLED:
            token.cancel()
        return instance

    def _follow_state(self, instance_id: str) -> Callable[[WorkflowState], None]:
        """Listener that keeps an active instance on its current state object."""

        def follow(state: WorkflowState) -> None:
            with self._lock:
                instance = self._active.get(instance_id)
                if instance is not None:
                    instance.state = state

        return follow

    def _result(self, instance: WorkflowInstance) -> WorkflowResult:
        state = instance.state
        if instance.status is InstanceStatus.CANCELLED:
            with self._lock:
                record = self._history.find(instance.instance_id)
            if record is not None:
                state = record.state.model_copy(deep=True)
        return WorkflowResult(
            instance_id=instance.instance_id,
            graph_name=instance.graph_name,
            status=instance.status,
            state=state,
            terminal_step=instance.terminal_step,
            duration_ms=instance.duration_ms,
            error=instance.error,
        )

    async def _drive(
        self,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        token: CancellationToken,
    ) -> WorkflowResult:
        instance_id = instance.instance_id
        try:
            outcome = await self._executor.run(
                definition,
                instance.state,
                cancellation=token,
                on_state=self._follow_state(instance_id),
            )
        except WorkflowCancelledError:
            self._finalize(instance_id, InstanceStatus.CANCELLED)
            logger.info(f"Workflow {definition.name} instance {instance_id} stopped after cancellation")
            return self._result(instance)
        except asyncio.CancelledError:
            # The awaiting task was cancelled, e.g. by a caller timeout.
            if self._finalize(
                instance_id, InstanceStatus.CANCELLED, error="task cancelled"
            ) is not None:
                logger.warning(f"Workflow {definition.name} instance {instance_id} task cancelled")
            raise
        except Exception as exc:
            failed = self._finalize(instance_id, InstanceStatus.FAILED, error=str(exc))
            if failed is None and instance.status is InstanceStatus.CANCELLED:
                return self._result(instance)
            logger.error(f"Workflow {definition.name} instance {instance_id} failed: {exc}")
            raise

        finished = self._finalize(
            instance_id,
            InstanceStatus.COMPLETED,
            state=outcome.state,
            terminal_step=outcome.terminal_step,
        )
        if finished is not None:
            logger.info(
                f"Workflow {definition.name} instance {instance_id} completed at "
                f"{outcome.terminal_step} after {outcome.state.metadata.total_steps} steps"
            )
        return self._result(instance)

    async def start(
        self,
        graph_name: str,
        initial_state: Union[WorkflowState, Any, None] = None,
    ) -> WorkflowResult:
        """Run a new instance of ``graph_name`` to a terminal status.

        ``initial_state`` may be a :class:`WorkflowState`, or a domain payload
        that becomes its ``data``.

        Returns:
            The instance id, final status and state. A cancelled instance is
            returned with status ``cancelled`` rather than raised.

        Raises:
            UnknownGraphError: ``graph_name`` is not registered; no instance
                is created.
            WorkflowError: The instance failed. Its history record and the
                statistics are already updated when this propagates.
        """
        definition = self._registry.get(graph_name)
        instance, token = self._open(definition, initial_state)
        return await self._drive(definition, instance, token)

    def submit(
        self,
        graph_name: str,
        initial_state: Union[WorkflowState, Any, None] = None,
    ) -> str:
        """Schedule a new instance on the running loop and return its id.

        Use :meth:`wait` for the result or poll :meth:`get_instance`. The task
        is released as soon as it finishes; its outcome stays in history.
        """
        definition = self._registry.get(graph_name)
        loop = asyncio.get_running_loop()
        instance, token = self._open(definition, initial_state)
        task = loop.create_task(self._drive(definition, instance, token))
        self._tasks[instance.instance_id] = task
        task.add_done_callback(lambda done: self._release_task(instance.instance_id, done))
        return instance.instance_id

    def _release_task(self, instance_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(instance_id) is task:
            del self._tasks[instance_id]
        # Failures are recorded in history and re-raised from ``wait``.
        if not task.cancelled():
            task.exception()

    async def wait(self, instance_id: str) -> WorkflowResult:
        """Await an instance started with :meth:`submit`.

        Raises the instance's failure like :meth:`start` does. Once the task
        has been released the result is rebuilt from the history record, and
        a failure surfaces as :class:`WorkflowError` carrying the recorded
        message.

        Raises:
            KeyError: ``instance_id`` is neither running nor in history.
        """
        task = self._tasks.get(instance_id)
        if task is not None:
            return await task

        with self._lock:
            record = self._history.find(instance_id)
        if record is None:
            raise KeyError(f"No submitted workflow instance {instance_id}")
        if record.status is InstanceStatus.FAILED:
            raise WorkflowError(record.error)
        return WorkflowResult(
            instance_id=record.instance_id,
            graph_name=record.graph_name,
            status=record.status,
            state=record.state.model_copy(deep=True),
            terminal_step=record.terminal_step,
            duration_ms=record.duration_ms,
            error=record.error,
        )

    def cancel(self, instance_id: str) -> bool:
        """Cancel an active instance.

        The status flips immediately; a step already in flight finishes and
        its result is discarded. Returns ``False`` for unknown or already
        terminal instances.
        """
        instance = self._finalize(instance_id, InstanceStatus.CANCELLED)
        if instance is None:
            return False
        logger.info(f"Workflow instance {instance_id} cancelled")
        return True

    async def shutdown(self) -> None:
        """Cancel every active instance and wait for submitted tasks."""
        logger.info("Shutting down workflow orchestrator")
        with self._lock:
            active_ids = list(self._active)
        for instance_id in active_ids:
            self.cancel(instance_id)
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    # ------------------------------------------------------------------
    # Queries
    def get_active(self) -> List[InstanceSummary]:
        with self._lock:
            return [instance.summary() for instance in self._active.values()]

    def get_history(self, limit: int = DEFAULT_HISTORY_PAGE_SIZE) -> List[HistoryRecord]:
        """Most recent terminated instances first."""
        with self._lock:
            return self._history.recent(limit)

    def get_instance(
        self, instance_id: str
    ) -> Union[InstanceSummary, HistoryRecord, None]:
        with self._lock:
            instance = self._active.get(instance_id)
            if instance is not None:
                return instance.summary()
            return self._history.find(instance_id)

    def get_statistics(self) -> WorkflowStatistics:
        with self._lock:
            return self._history.statistics(self._active.values())



__all__ = ["WorkflowOrchestrator"]
