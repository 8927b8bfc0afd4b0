"""Graph execution engine for policyflow workflows."""

from __future__ import annotations

import inspect
import logging
import threading
from typing import Callable, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

from .constants import DEFAULT_MAX_ITERATIONS, DEFAULT_OUTCOME
from .contracts import WorkflowState
from .errors import (
    MaxIterationsExceededError,
    StepExecutionError,
    UnknownGraphError,
    UnroutableStateError,
    WorkflowCancelledError,
)
from .graph import WorkflowDefinition, outcome_key
from .registry import GraphRegistry

logger = logging.getLogger(__name__)

StateListener = Callable[[WorkflowState], None]


class CancellationToken:
    """Cooperative cancellation flag checked between steps."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ExecutionResult(BaseModel):
    """Final state of a run and the step it ended on."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    state: WorkflowState
    terminal_step: str


class GraphExecutor:
    """Drives one workflow instance from its entry point to a terminal step.

    Steps of an instance run strictly one after another; a step's awaited
    result is always in place before its routing function is called. When an
    outcome names several successors they run in declared order against the
    same state, and the last of them decides where execution continues.
    """

    def __init__(
        self,
        registry: GraphRegistry,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self._registry = registry
        self.max_iterations = max_iterations

    def ceiling_for(self, definition: WorkflowDefinition) -> int:
        return definition.max_iterations or self.max_iterations

    async def run(
        self,
        definition: Union[WorkflowDefinition, str],
        state: Optional[WorkflowState] = None,
        cancellation: Optional[CancellationToken] = None,
        on_state: Optional[StateListener] = None,
    ) -> ExecutionResult:
        """Execute ``definition`` against ``state`` until it terminates.

        ``on_state`` is called whenever a step hands back a replacement
        state, so owners of the original object can follow it.

        Raises:
            UnknownGraphError: ``definition`` is not the registered graph.
            StepExecutionError: a fatal step failed.
            UnroutableStateError: a routing function returned an unmapped outcome.
            MaxIterationsExceededError: the iteration ceiling was reached.
            WorkflowCancelledError: the cancellation token was set.
        """
        if isinstance(definition, str):
            definition = self._registry.get(definition)
        elif not self._registry.is_registered(definition):
            raise UnknownGraphError(definition.name)

        if state is None:
            state = WorkflowState()
        ceiling = self.ceiling_for(definition)
        current = definition.entry_point

        while True:
            state = await self._execute_step(
                definition, current, state, ceiling, cancellation, on_state
            )
            if definition.is_terminal(current):
                logger.debug(
                    f"Instance {state.metadata.instance_id} reached terminal step {current}"
                )
                return ExecutionResult(state=state, terminal_step=current)

            successors = self._route(definition, current, state)
            if not successors:
                logger.debug(
                    f"Instance {state.metadata.instance_id} ended after {current} "
                    "with no successors"
                )
                return ExecutionResult(state=state, terminal_step=current)

            for stage in successors[:-1]:
                state = await self._execute_step(
                    definition, stage, state, ceiling, cancellation, on_state
                )
            current = successors[-1]

    async def _execute_step(
        self,
        definition: WorkflowDefinition,
        name: str,
        state: WorkflowState,
        ceiling: int,
        cancellation: Optional[CancellationToken],
        on_state: Optional[StateListener] = None,
    ) -> WorkflowState:
        if state.iteration_count >= ceiling:
            raise MaxIterationsExceededError(definition.name, ceiling, name)
        self._check_cancelled(state, cancellation)

        step = definition.get_step(name)
        state.iteration_count += 1
        state.metadata.total_steps += 1
        logger.debug(
            f"Instance {state.metadata.instance_id} running step {name} "
            f"(iteration {state.iteration_count}/{ceiling})"
        )

        try:
            result = step.func(state)
            if inspect.isawaitable(result):
                result = await result
            if result is not None and not isinstance(result, WorkflowState):
                raise TypeError(
                    f"step returned {type(result).__name__}, expected WorkflowState or None"
                )
        except StepExecutionError as exc:
            state.add_error(name, exc.message)
            if exc.fatal or step.fatal:
                logger.error(f"Fatal failure in step {name}: {exc.message}")
                raise StepExecutionError(name, exc.message, fatal=True) from exc
            logger.warning(f"Step {name} failed, routing on current state: {exc.message}")
        except Exception as exc:
            record = state.add_error(name, exc)
            if step.fatal:
                logger.error(f"Fatal failure in step {name}: {record.message}")
                raise StepExecutionError(name, record.message, fatal=True) from exc
            logger.warning(f"Step {name} failed, routing on current state: {record.message}")
        else:
            if result is not None and result is not state:
                # Execution bookkeeping stays with the executor.
                result.iteration_count = state.iteration_count
                result.metadata = state.metadata
                state = result
                if on_state is not None:
                    on_state(state)

        self._check_cancelled(state, cancellation)
        return state

    def _route(
        self, definition: WorkflowDefinition, name: str, state: WorkflowState
    ) -> Tuple[str, ...]:
        route = definition.route_for(name)
        if route is None:
            raise UnroutableStateError(
                name, None, f"Step '{name}' is not terminal and has no outgoing edges"
            )
        if route.router is None:
            outcome = DEFAULT_OUTCOME
        else:
            try:
                outcome = outcome_key(route.router(state))
            except Exception as exc:
                raise UnroutableStateError(
                    name, None, f"Routing function for step '{name}' raised: {exc}"
                ) from exc

        try:
            successors = route.successors(outcome)
        except (KeyError, TypeError) as exc:
            # TypeError: the router returned an unhashable value.
            raise UnroutableStateError(name, outcome) from exc
        logger.debug(f"Step {name} routed on {outcome!r} to {list(successors)}")
        return successors

    @staticmethod
    def _check_cancelled(
        state: WorkflowState, cancellation: Optional[CancellationToken]
    ) -> None:
        if cancellation is not None and cancellation.cancelled:
            raise WorkflowCancelledError(state.metadata.instance_id)


__all__ = ["CancellationToken", "ExecutionResult", "GraphExecutor"]
