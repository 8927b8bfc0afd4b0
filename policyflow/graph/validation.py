"""Registration-time checks for workflow graphs."""

from __future__ import annotations

import logging
from collections import deque
from typing import List, Set, Tuple

from ..errors import InvalidGraphError
from .models import WorkflowDefinition

logger = logging.getLogger(__name__)


def _structural_problems(definition: WorkflowDefinition) -> List[str]:
    problems: List[str] = []
    steps = definition.steps

    if not steps:
        problems.append("no steps declared")

    entry = definition.entry_point
    if entry is None:
        problems.append("no entry point set")
    elif entry not in steps:
        problems.append(f"entry point '{entry}' is not a declared step")

    if not definition.terminals:
        problems.append("no terminal step declared")
    for terminal in sorted(definition.terminals):
        if terminal not in steps:
            problems.append(f"terminal '{terminal}' is not a declared step")
        elif terminal in definition.routes:
            problems.append(f"terminal step '{terminal}' must not have outgoing edges")

    for source, route in definition.routes.items():
        if source not in steps:
            problems.append(f"edges declared for unknown step '{source}'")

        unmapped = [o for o in route.outcomes if o not in route.edges]
        if unmapped:
            problems.append(
                f"step '{source}' has no edge for outcomes "
                f"{sorted(map(str, unmapped))}"
            )
        extra = [o for o in route.edges if o not in route.outcomes]
        if extra:
            problems.append(
                f"step '{source}' maps outcomes its router never returns "
                f"{sorted(map(str, extra))}"
            )

        for outcome, names in route.edges.items():
            for position, name in enumerate(names):
                if name not in steps:
                    problems.append(
                        f"step '{source}' outcome {outcome!r} references "
                        f"unknown step '{name}'"
                    )
                elif name in definition.terminals and position != len(names) - 1:
                    problems.append(
                        f"terminal step '{name}' must be last in the successors "
                        f"of '{source}' outcome {outcome!r}"
                    )
    return problems


def _walk(definition: WorkflowDefinition) -> Tuple[Set[str], Set[str]]:
    """Return (reachable steps, continuation steps) starting at the entry point.

    Continuation steps are the ones whose own routes are consulted: the entry
    point and the last successor of every outcome. Earlier successors run as
    pipeline stages only.
    """
    entry = definition.entry_point
    reachable: Set[str] = {entry}
    continuations: Set[str] = {entry}
    queue = deque([entry])
    while queue:
        current = queue.popleft()
        route = definition.route_for(current)
        if route is None:
            continue
        for names in route.edges.values():
            reachable.update(names)
            if names and names[-1] not in continuations:
                continuations.add(names[-1])
                queue.append(names[-1])
    return reachable, continuations


def _terminating(definition: WorkflowDefinition, continuations: Set[str]) -> Set[str]:
    """Continuation steps from which some path ends the instance."""
    good = {name for name in continuations if definition.is_terminal(name)}
    changed = True
    while changed:
        changed = False
        for name in continuations - good:
            route = definition.route_for(name)
            if route is None:
                continue
            if any(not names or names[-1] in good for names in route.edges.values()):
                good.add(name)
                changed = True
    return good


def validate_definition(definition: WorkflowDefinition) -> None:
    """Raise :class:`InvalidGraphError` if ``definition`` is malformed."""
    problems = _structural_problems(definition)
    if problems:
        raise InvalidGraphError(definition.name, problems)

    reachable, continuations = _walk(definition)
    unreachable = [name for name in definition.steps if name not in reachable]
    if unreachable:
        problems.append(f"steps unreachable from entry point: {', '.join(unreachable)}")

    for name in sorted(continuations):
        if not definition.is_terminal(name) and definition.route_for(name) is None:
            problems.append(f"step '{name}' has no outgoing edges and is not terminal")

    good = _terminating(definition, continuations)
    for name in sorted(continuations):
        route = definition.route_for(name)
        if route is None:
            continue
        for outcome, names in route.edges.items():
            if names and names[-1] not in good:
                problems.append(
                    f"outcome {outcome!r} of step '{name}' never reaches a terminal step"
                )

    if problems:
        raise InvalidGraphError(definition.name, problems, unreachable)

    logger.debug(
        f"Graph {definition.name} validated: {len(definition.steps)} steps, "
        f"{len(definition.terminals)} terminals"
    )


__all__ = ["validate_definition"]
