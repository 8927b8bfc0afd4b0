"""Graph definition, construction and validation."""

from __future__ import annotations

from ..constants import DEFAULT_OUTCOME, END
from .builder import GraphBuilder
from .models import Route, StepSpec, WorkflowDefinition, outcome_key
from .validation import validate_definition

__all__ = [
    "END",
    "DEFAULT_OUTCOME",
    "GraphBuilder",
    "Route",
    "StepSpec",
    "WorkflowDefinition",
    "outcome_key",
    "validate_definition",
]
