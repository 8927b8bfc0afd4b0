"""Built-in workflow kinds and orchestrator wiring."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from ..collaborators import Collaborators, get_collaborators
from ..config import PolicyflowConfig, load_config
from ..contracts import WorkflowState
from ..graph import WorkflowDefinition
from ..orchestrator import WorkflowOrchestrator
from .compliance_validation import build_compliance_validation_graph
from .payloads import (
    ComplianceValidationData,
    DomainPayload,
    PolicyGenerationData,
    ThreatResponseData,
    new_state,
    parse_payload,
)
from .policy_generation import build_policy_generation_graph
from .threat_response import build_threat_response_graph

logger = logging.getLogger(__name__)

POLICY_GENERATION = "policy_generation"
THREAT_RESPONSE = "threat_response"
COMPLIANCE_VALIDATION = "compliance_validation"

GRAPH_BUILDERS: Dict[str, Callable[[Collaborators], WorkflowDefinition]] = {
    POLICY_GENERATION: build_policy_generation_graph,
    THREAT_RESPONSE: build_threat_response_graph,
    COMPLIANCE_VALIDATION: build_compliance_validation_graph,
}


def build_builtin_graphs(collaborators: Collaborators) -> List[WorkflowDefinition]:
    return [builder(collaborators) for builder in GRAPH_BUILDERS.values()]


def register_builtin_graphs(
    orchestrator: WorkflowOrchestrator, collaborators: Collaborators
) -> List[WorkflowDefinition]:
    """Register every built-in graph with ``orchestrator``."""
    definitions = [
        orchestrator.register_graph(definition)
        for definition in build_builtin_graphs(collaborators)
    ]
    logger.info(f"Registered {len(definitions)} built-in workflow graphs")
    return definitions


def create_orchestrator(
    config: Optional[PolicyflowConfig] = None,
    collaborators: Optional[Collaborators] = None,
) -> WorkflowOrchestrator:
    """Build an orchestrator from configuration with the built-in graphs registered.

    Each call returns a new orchestrator; callers pass it to whatever needs it.
    """
    config = config or load_config()
    collaborators = collaborators or get_collaborators(config)
    orchestrator = WorkflowOrchestrator.from_config(config)
    register_builtin_graphs(orchestrator, collaborators)
    return orchestrator


def initial_state(kind: str, data: Optional[Dict[str, Any]] = None) -> WorkflowState:
    """Initial state for a built-in ``kind`` from plain data (e.g. parsed JSON)."""
    if kind not in GRAPH_BUILDERS:
        raise ValueError(f"Unknown workflow kind: {kind}")
    return new_state(parse_payload(kind, data))


__all__ = [
    "POLICY_GENERATION",
    "THREAT_RESPONSE",
    "COMPLIANCE_VALIDATION",
    "GRAPH_BUILDERS",
    "ComplianceValidationData",
    "DomainPayload",
    "PolicyGenerationData",
    "ThreatResponseData",
    "build_builtin_graphs",
    "create_orchestrator",
    "initial_state",
    "register_builtin_graphs",
]
