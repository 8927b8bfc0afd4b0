"""Registry of validated workflow graph definitions."""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional

from ..errors import InvalidGraphError, UnknownGraphError
from ..graph import WorkflowDefinition, validate_definition

logger = logging.getLogger(__name__)


class GraphRegistry:
    """Named graph definitions.

    Graphs are registered once at startup and only read afterwards, so
    lookups take no lock. Registration validates the definition and refuses
    to replace an existing name.
    """

    def __init__(self) -> None:
        self._graphs: Dict[str, WorkflowDefinition] = {}

    def register(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        if definition.name in self._graphs:
            raise InvalidGraphError(
                definition.name, [f"graph '{definition.name}' is already registered"]
            )
        validate_definition(definition)
        self._graphs[definition.name] = definition
        logger.info(
            f"Registered graph {definition.name} with {len(definition.steps)} steps"
        )
        return definition

    def get(self, name: str) -> WorkflowDefinition:
        """Return the definition for ``name`` or raise :class:`UnknownGraphError`."""
        try:
            return self._graphs[name]
        except KeyError:
            raise UnknownGraphError(name) from None

    def find(self, name: str) -> Optional[WorkflowDefinition]:
        return self._graphs.get(name)

    def is_registered(self, definition: WorkflowDefinition) -> bool:
        return self._graphs.get(definition.name) is definition

    def names(self) -> List[str]:
        return list(self._graphs)

    def __contains__(self, name: object) -> bool:
        return name in self._graphs

    def __iter__(self) -> Iterator[WorkflowDefinition]:
        return iter(list(self._graphs.values()))

    def __len__(self) -> int:
        return len(self._graphs)


__all__ = ["GraphRegistry"]
