"""Fluent builder for workflow graphs."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from ..constants import END
from ..errors import InvalidGraphError
from .models import Route, RouterFunc, StepFunc, StepSpec, WorkflowDefinition, outcome_key
from .validation import validate_definition

logger = logging.getLogger(__name__)

Successors = Union[str, Iterable[str]]


def _normalise_successors(value: Successors) -> Tuple[str, ...]:
    names = [value] if isinstance(value, str) else list(value)
    return tuple(name for name in names if name != END)


def _closed_outcomes(
    mapping: Mapping[Any, Successors], outcomes: Any = None
) -> FrozenSet[Any]:
    if outcomes is not None:
        if isinstance(outcomes, type) and issubclass(outcomes, Enum):
            return frozenset(member.value for member in outcomes)
        return frozenset(outcome_key(o) for o in outcomes)
    enum_keys = [key for key in mapping if isinstance(key, Enum)]
    if enum_keys:
        return frozenset(member.value for member in type(enum_keys[0]))
    return frozenset(mapping)


class GraphBuilder:
    """Collect steps and edges, then compile a validated definition.

    Example::

        graph = GraphBuilder("review")
        graph.add_step("draft", draft)
        graph.add_step("check", check)
        graph.add_step("publish", publish)
        graph.set_entry_point("draft")
        graph.add_edge("draft", "check")
        graph.add_conditional_edges(
            "check", route_check, {Verdict.OK: "publish", Verdict.REDO: "draft"}
        )
        graph.add_terminal("publish")
        definition = graph.compile()
    """

    def __init__(
        self,
        name: str,
        description: Optional[str] = None,
        max_iterations: Optional[int] = None,
    ) -> None:
        self.name = name
        self.description = description
        self.max_iterations = max_iterations
        self._steps: Dict[str, StepSpec] = {}
        self._routes: Dict[str, Route] = {}
        self._entry_point: Optional[str] = None
        self._terminals: List[str] = []

    def _reject(self, problem: str) -> None:
        raise InvalidGraphError(self.name, [problem])

    def add_step(
        self,
        name: str,
        func: StepFunc,
        *,
        fatal: bool = False,
        description: Optional[str] = None,
    ) -> "GraphBuilder":
        """Declare a step. ``fatal`` steps halt the instance when they raise."""
        if name == END:
            self._reject(f"'{END}' is reserved and cannot be used as a step name")
        if name in self._steps:
            self._reject(f"step '{name}' declared twice")
        self._steps[name] = StepSpec(
            name=name,
            func=func,
            fatal=fatal,
            description=description,
        )
        return self

    def add_edge(self, source: str, target: Successors) -> "GraphBuilder":
        """Unconditional transition from ``source``."""
        if source in self._routes:
            self._reject(f"step '{source}' already has outgoing edges")
        self._routes[source] = Route.unconditional(source, _normalise_successors(target))
        return self

    def add_conditional_edges(
        self,
        source: str,
        router: RouterFunc,
        mapping: Mapping[Any, Successors],
        outcomes: Any = None,
    ) -> "GraphBuilder":
        """Route from ``source`` on the outcome returned by ``router``.

        ``mapping`` keys may be enum members, in which case the whole enum is
        the closed outcome set and every member must be mapped. ``outcomes``
        overrides the closed set explicitly.
        """
        if source in self._routes:
            self._reject(f"step '{source}' already has outgoing edges")
        edges = {
            outcome_key(outcome): _normalise_successors(successors)
            for outcome, successors in mapping.items()
        }
        self._routes[source] = Route(
            source=source,
            router=router,
            edges=edges,
            outcomes=_closed_outcomes(mapping, outcomes),
        )
        return self

    def set_entry_point(self, name: str) -> "GraphBuilder":
        self._entry_point = name
        return self

    def add_terminal(self, *names: str) -> "GraphBuilder":
        """Mark steps as terminal markers."""
        for name in names:
            if name not in self._terminals:
                self._terminals.append(name)
        return self

    set_finish_point = add_terminal

    def build(self) -> WorkflowDefinition:
        """Assemble the definition without validating it."""
        return WorkflowDefinition(
            name=self.name,
            steps=dict(self._steps),
            routes=dict(self._routes),
            entry_point=self._entry_point,
            terminals=frozenset(self._terminals),
            max_iterations=self.max_iterations,
            description=self.description,
        )

    def compile(self) -> WorkflowDefinition:
        """Assemble and validate the definition."""
        definition = self.build()
        validate_definition(definition)
        logger.debug(f"Compiled graph {self.name}")
        return definition


__all__ = ["GraphBuilder"]
