"""Immutable models describing a workflow graph."""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..constants import DEFAULT_OUTCOME

StepFunc = Callable[..., Any]
RouterFunc = Callable[..., Any]


def outcome_key(outcome: Any) -> Any:
    """Normalise an enum outcome to its value; other keys pass through."""
    if isinstance(outcome, Enum):
        return outcome.value
    return outcome


class StepSpec(BaseModel):
    """A named unit of work in a graph."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    func: StepFunc
    fatal: bool = False
    description: Optional[str] = None


class Route(BaseModel):
    """Outgoing conditional edges of one step.

    ``outcomes`` is the closed set of keys ``router`` may return. ``edges``
    maps each of them to the ordered successors; an empty tuple ends the
    instance.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    source: str
    router: Optional[RouterFunc] = None
    edges: Dict[Any, Tuple[str, ...]]
    outcomes: FrozenSet[Any]

    @property
    def is_unconditional(self) -> bool:
        return self.router is None

    def successors(self, outcome: Any) -> Tuple[str, ...]:
        return self.edges[outcome_key(outcome)]

    def targets(self) -> List[str]:
        """All successor names across outcomes, in declaration order."""
        seen: List[str] = []
        for names in self.edges.values():
            for name in names:
                if name not in seen:
                    seen.append(name)
        return seen

    @classmethod
    def unconditional(cls, source: str, target: Tuple[str, ...]) -> "Route":
        return cls(
            source=source,
            router=None,
            edges={DEFAULT_OUTCOME: target},
            outcomes=frozenset({DEFAULT_OUTCOME}),
        )


class WorkflowDefinition(BaseModel):
    """Static description of the steps and edges of one workflow type.

    Instances are produced by :class:`~policyflow.graph.builder.GraphBuilder`
    and validated before they are registered.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    steps: Dict[str, StepSpec]
    routes: Dict[str, Route] = Field(default_factory=dict)
    entry_point: Optional[str] = None
    terminals: FrozenSet[str] = frozenset()
    max_iterations: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = None

    @property
    def step_names(self) -> List[str]:
        return list(self.steps)

    def get_step(self, name: str) -> StepSpec:
        return self.steps[name]

    def is_terminal(self, name: str) -> bool:
        return name in self.terminals

    def route_for(self, name: str) -> Optional[Route]:
        return self.routes.get(name)

    def describe(self) -> Dict[str, Any]:
        """Plain dictionary view used by the CLI."""
        return {
            "name": self.name,
            "description": self.description,
            "entry_point": self.entry_point,
            "terminals": sorted(self.terminals),
            "max_iterations": self.max_iterations,
            "steps": [
                {
                    "name": step.name,
                    "fatal": step.fatal,
                    "edges": {
                        str(outcome): list(names)
                        for outcome, names in self.routes[step.name].edges.items()
                    }
                    if step.name in self.routes
                    else {},
                }
                for step in self.steps.values()
            ],
        }


__all__ = ["StepSpec", "Route", "WorkflowDefinition", "outcome_key"]
