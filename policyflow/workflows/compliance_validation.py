"""Compliance validation workflow.

Checks an existing policy against a compliance framework, collects gaps and
improvement suggestions for anything short of compliant, and always closes
with an audit trail entry.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import List, Optional

from ..collaborators import Collaborators
from ..contracts import WorkflowState, utcnow
from ..graph import GraphBuilder, WorkflowDefinition
from .payloads import ComplianceValidationData, new_state

logger = logging.getLogger(__name__)

NAME = "compliance_validation"
MAX_ITERATIONS = 10
DEFAULT_FRAMEWORK = "CIS"
PARTIAL_THRESHOLD = 0.5


class Framework(str, Enum):
    SOC2 = "SOC2"
    ISO27001 = "ISO27001"
    NIST = "NIST"
    CIS = "CIS"


class Verdict(str, Enum):
    COMPLIANT = "compliant"
    PARTIAL = "partial"
    NON_COMPLIANT = "non_compliant"


def normalise_framework(name: Optional[str]) -> str:
    candidate = (name or "").strip().upper()
    return candidate if candidate in Framework.__members__ else DEFAULT_FRAMEWORK


def requirement_covered(requirement: str, policy: str) -> bool:
    """At least half of the requirement's significant words appear in the policy."""
    words = [word for word in requirement.lower().split() if len(word) > 3]
    if not words:
        return True
    lowered = policy.lower()
    hits = sum(1 for word in words if word in lowered)
    return hits * 2 >= len(words)


def compliance_verdict(passed: bool, issue_count: int, requirement_count: int) -> str:
    if passed:
        return Verdict.COMPLIANT.value
    if issue_count / (requirement_count + 1) <= PARTIAL_THRESHOLD:
        return Verdict.PARTIAL.value
    return Verdict.NON_COMPLIANT.value


def _payload(state: WorkflowState) -> Optional[ComplianceValidationData]:
    data = state.data
    return data if isinstance(data, ComplianceValidationData) else None


def _require(state: WorkflowState) -> ComplianceValidationData:
    data = _payload(state)
    if data is None:
        raise TypeError(
            f"expected ComplianceValidationData payload, got {type(state.data).__name__}"
        )
    return data


def route_on_framework(state: WorkflowState) -> Framework:
    data = _payload(state)
    return Framework(normalise_framework(data.framework if data is not None else None))


def route_on_verdict(state: WorkflowState) -> Verdict:
    data = _payload(state)
    try:
        return Verdict(data.verdict if data is not None else Verdict.NON_COMPLIANT.value)
    except ValueError:
        return Verdict.NON_COMPLIANT


def build_compliance_validation_graph(collaborators: Collaborators) -> WorkflowDefinition:
    knowledge = collaborators.knowledge
    validator = collaborators.validator

    def _audit(data: ComplianceValidationData, event: str, **details) -> None:
        data.audit_trail.append(
            {"event": event, "timestamp": utcnow().isoformat(), **details}
        )

    async def identify_framework(state: WorkflowState) -> None:
        data = _require(state)
        data.framework = normalise_framework(data.framework)
        logger.info(f"Compliance framework for {data.policy_id}: {data.framework}")

    async def retrieve_requirements(state: WorkflowState) -> None:
        data = _require(state)
        context = await knowledge.get_context("compliance", {"framework": data.framework})
        data.requirements = list(context.get("requirements", []))

    async def validate_policy(state: WorkflowState) -> None:
        data = _require(state)
        result = await validator.validate(data.policy, {"compliance": data.framework})
        uncovered = [r for r in data.requirements if not requirement_covered(r, data.policy)]
        issues = list(result.issues) + [f"requirement not covered: {r}" for r in uncovered]
        data.validation = result.model_copy(
            update={"issues": issues, "passed": result.passed and not uncovered}
        )
        data.verdict = compliance_verdict(
            data.validation.passed, len(issues), len(data.requirements)
        )
        _audit(data, "validated", verdict=data.verdict, issues=len(issues))
        logger.info(f"Policy {data.policy_id} is {data.verdict} with {data.framework}")

    async def identify_gaps(state: WorkflowState) -> None:
        data = _require(state)
        gaps: List[str] = list(data.validation.issues) if data.validation else []
        data.gaps = gaps or [f"policy does not satisfy {data.framework}"]

    async def suggest_improvements(state: WorkflowState) -> None:
        data = _require(state)
        suggestions = [f"Resolve: {gap}" for gap in data.gaps]
        if data.validation is not None:
            suggestions.extend(data.validation.recommendations)
        data.recommendations = suggestions

    async def generate_audit_trail(state: WorkflowState) -> None:
        data = _require(state)
        _audit(
            data,
            "completed",
            framework=data.framework,
            verdict=data.verdict,
            gaps=len(data.gaps),
        )
        data.status = "validated"

    graph = GraphBuilder(
        NAME,
        description="Validate a policy against a compliance framework",
        max_iterations=MAX_ITERATIONS,
    )
    graph.add_step("identify_framework", identify_framework)
    graph.add_step("retrieve_requirements", retrieve_requirements)
    graph.add_step("validate_policy", validate_policy)
    graph.add_step("identify_gaps", identify_gaps)
    graph.add_step("suggest_improvements", suggest_improvements)
    graph.add_step("generate_audit_trail", generate_audit_trail)

    graph.set_entry_point("identify_framework")
    graph.add_conditional_edges(
        "identify_framework",
        route_on_framework,
        {
            Framework.SOC2: ["retrieve_requirements", "validate_policy"],
            Framework.ISO27001: ["retrieve_requirements", "validate_policy"],
            Framework.NIST: ["retrieve_requirements", "validate_policy"],
            Framework.CIS: ["validate_policy"],
        },
    )
    graph.add_conditional_edges(
        "validate_policy",
        route_on_verdict,
        {
            Verdict.COMPLIANT: ["generate_audit_trail"],
            Verdict.PARTIAL: ["identify_gaps", "suggest_improvements", "generate_audit_trail"],
            Verdict.NON_COMPLIANT: [
                "identify_gaps",
                "suggest_improvements",
                "generate_audit_trail",
            ],
        },
    )
    graph.add_terminal("generate_audit_trail")
    return graph.compile()


def compliance_validation_state(policy_id: str, policy: str, framework: str = "") -> WorkflowState:
    return new_state(
        ComplianceValidationData(policy_id=policy_id, policy=policy, framework=framework)
    )


__all__ = [
    "NAME",
    "Framework",
    "Verdict",
    "build_compliance_validation_graph",
    "compliance_validation_state",
    "compliance_verdict",
    "normalise_framework",
    "requirement_covered",
    "route_on_framework",
    "route_on_verdict",
]
