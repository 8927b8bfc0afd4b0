"""Policy generation workflow.

Orchestrates drafting of a security policy with:

- complexity analysis deciding whether to pull context up front
- risk assessment routing high and medium risk services through extra
  threat, compliance and security checks
- a generate / validate / refine loop bounded by ``max_refinements``
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Optional

from ..collaborators import Collaborators
from ..constants import END
from ..contracts import WorkflowState
from ..graph import GraphBuilder, WorkflowDefinition
from .payloads import PolicyGenerationData, new_state

logger = logging.getLogger(__name__)

NAME = "policy_generation"
MAX_ITERATIONS = 25

COMPLEX_SERVICES = ("IAM", "KMS", "Lambda", "ECS", "EKS")
HIGH_RISK_SERVICES = ("IAM", "KMS", "Secrets Manager")
MEDIUM_RISK_SERVICES = ("Lambda", "Functions", "EC2", "S3")
COMPLIANCE_COMPLEXITY = {"CIS": 1, "NIST": 2, "ISO27001": 3, "SOC2": 3}
COMPLIANCE_RISK = {"CIS": 1, "NIST": 2, "ISO27001": 2, "SOC2": 3}
MAX_TOLERATED_ERRORS = 3


class ComplexityRoute(str, Enum):
    SIMPLE = "simple"
    COMPLEX = "complex"


class RiskRoute(str, Enum):
    HIGH = "high_risk"
    MEDIUM = "medium_risk"
    LOW = "low_risk"


class DraftRoute(str, Enum):
    NEEDS_VALIDATION = "needs_validation"
    NEEDS_REFINEMENT = "needs_refinement"
    COMPLETE = "complete"


class ValidationRoute(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    NEEDS_REVIEW = "needs_review"
    MAX_ITERATIONS = "max_iterations"


class RefinementRoute(str, Enum):
    RETRY = "retry"
    MAX_ITERATIONS = "max_iterations"
    ERROR = "error"


# ----------------------------------------------------------------------------
# Scoring helpers


def service_complexity(service: str) -> int:
    return 3 if any(name in service for name in COMPLEX_SERVICES) else 1


def requirement_complexity(requirements: Dict[str, Any]) -> int:
    complexity = 1
    if requirements.get("additional_requirements"):
        complexity += 2
    if requirements.get("compliance") == "SOC2":
        complexity += 2
    if requirements.get("environment") == "production":
        complexity += 1
    return complexity


def compliance_complexity(compliance: Optional[str]) -> int:
    return COMPLIANCE_COMPLEXITY.get(compliance or "", 1)


def service_risk(service: str) -> int:
    if any(name in service for name in HIGH_RISK_SERVICES):
        return 3
    if any(name in service for name in MEDIUM_RISK_SERVICES):
        return 2
    return 1


def risk_level(service: str, requirements: Dict[str, Any]) -> str:
    total = (
        (3 if requirements.get("environment") == "production" else 1)
        + (3 if requirements.get("business_unit") == "trading" else 1)
        + service_risk(service)
        + COMPLIANCE_RISK.get(requirements.get("compliance") or "", 1)
    )
    if total >= 8:
        return "high"
    if total >= 5:
        return "medium"
    return "low"


def _payload(state: WorkflowState) -> Optional[PolicyGenerationData]:
    data = state.data
    return data if isinstance(data, PolicyGenerationData) else None


def _require(state: WorkflowState) -> PolicyGenerationData:
    data = _payload(state)
    if data is None:
        raise TypeError(f"expected PolicyGenerationData payload, got {type(state.data).__name__}")
    return data


# ----------------------------------------------------------------------------
# Routing functions


def route_on_complexity(state: WorkflowState) -> ComplexityRoute:
    """``simple`` unless the analysis marked the requirements complex."""
    data = _payload(state)
    if data is not None and data.complexity == ComplexityRoute.COMPLEX.value:
        return ComplexityRoute.COMPLEX
    return ComplexityRoute.SIMPLE


def route_on_risk(state: WorkflowState) -> RiskRoute:
    """Defaults to ``low_risk`` when no assessment is available."""
    data = _payload(state)
    level = data.risk_level if data is not None else "low"
    return {"high": RiskRoute.HIGH, "medium": RiskRoute.MEDIUM}.get(level, RiskRoute.LOW)


def route_after_generation(state: WorkflowState) -> DraftRoute:
    data = _payload(state)
    if data is None or not data.policy_draft:
        return DraftRoute.NEEDS_REFINEMENT
    if (
        data.validation is not None
        and data.validation.passed
        and data.validated_draft == data.policy_draft
    ):
        return DraftRoute.COMPLETE
    return DraftRoute.NEEDS_VALIDATION


def route_after_validation(state: WorkflowState) -> ValidationRoute:
    data = _payload(state)
    if data is None or data.validation is None:
        return ValidationRoute.FAIL
    if data.validation.passed:
        return ValidationRoute.PASS
    if data.refinement_count >= data.max_refinements:
        return ValidationRoute.MAX_ITERATIONS
    if data.validation.needs_review:
        return ValidationRoute.NEEDS_REVIEW
    return ValidationRoute.FAIL


def route_after_refinement(state: WorkflowState) -> RefinementRoute:
    if len(state.errors) > MAX_TOLERATED_ERRORS:
        return RefinementRoute.ERROR
    data = _payload(state)
    if data is None or data.refinement_count > data.max_refinements:
        return RefinementRoute.MAX_ITERATIONS
    return RefinementRoute.RETRY


# ----------------------------------------------------------------------------
# Graph


def build_policy_generation_graph(collaborators: Collaborators) -> WorkflowDefinition:
    knowledge = collaborators.knowledge
    generator = collaborators.generator
    validator = collaborators.validator

    async def analyze_requirements(state: WorkflowState) -> None:
        data = _require(state)
        score = (
            service_complexity(data.service)
            + requirement_complexity(data.requirements)
            + compliance_complexity(data.requirements.get("compliance"))
        )
        data.complexity = "complex" if score > 7 else "simple"
        logger.info(f"Requirements for {data.service} analysed: {data.complexity} ({score})")

    async def assess_risk(state: WorkflowState) -> None:
        data = _require(state)
        data.risk_level = risk_level(data.service, data.requirements)
        data.update_confidence(0.8)
        logger.info(f"Risk for {data.service} assessed as {data.risk_level}")

    async def retrieve_context(state: WorkflowState) -> None:
        data = _require(state)
        context = await knowledge.get_context(
            "policy", {"service": data.service, **data.requirements}
        )
        data.threat_context = list(context.get("threat_context", []))
        data.compliance_context = list(context.get("compliance_requirements", []))
        data.similar_policies = list(context.get("similar_policies", []))
        data.best_practices = list(context.get("best_practices", []))
        data.update_confidence(0.9)
        logger.info(
            f"Retrieved {len(data.threat_context) + len(data.compliance_context)} "
            f"context items for {data.service}"
        )

    async def threat_analysis(state: WorkflowState) -> None:
        data = _require(state)
        context = await knowledge.get_context(
            "threat", {"service": data.service, "risk": data.risk_level}
        )
        threats = list(context.get("similar_threats", []))
        for item in threats + list(context.get("mitigation_strategies", [])):
            if item not in data.threat_context:
                data.threat_context.append(item)
        data.review_notes.append(
            f"Threat analysis: {', '.join(threats) if threats else 'no similar threats found'}"
        )

    async def compliance_check(state: WorkflowState) -> None:
        data = _require(state)
        framework = data.requirements.get("compliance", "CIS")
        context = await knowledge.get_context("compliance", {"framework": framework})
        requirements = list(context.get("requirements", []))
        for item in requirements:
            if item not in data.compliance_context:
                data.compliance_context.append(item)
        data.review_notes.append(
            f"Compliance check against {framework}: {len(requirements)} requirements"
        )

    async def security_validation(state: WorkflowState) -> None:
        data = _require(state)
        context = await knowledge.get_context("policy", {"service": data.service})
        for item in context.get("best_practices", []):
            if item not in data.best_practices:
                data.best_practices.append(item)
        data.review_notes.append(
            f"Security validation: {data.risk_level} risk service requires "
            "least privilege and audit logging"
        )

    async def generate_policy(state: WorkflowState) -> None:
        data = _require(state)
        data.policy_draft = await generator.generate(state)
        data.update_confidence(0.7)
        logger.info(f"Generated policy draft for {data.service}")

    async def validate_policy(state: WorkflowState) -> None:
        data = _require(state)
        result = await validator.validate(data.policy_draft, data.requirements)
        data.validation = result
        data.validated_draft = data.policy_draft
        data.update_confidence(0.9 if result.passed else 0.5)
        logger.info(f"Policy validation for {data.service} passed: {result.passed}")

    async def refine_policy(state: WorkflowState) -> None:
        data = _require(state)
        data.refinement_count += 1
        if data.validation is not None:
            for issue in data.validation.issues:
                note = f"Address: {issue}"
                if note not in data.refinement_notes:
                    data.refinement_notes.append(note)

    async def finalize_policy(state: WorkflowState) -> None:
        data = _require(state)
        passed = data.validation is not None and data.validation.passed
        data.status = "finalized" if passed else "needs_attention"
        if not passed:
            data.update_confidence(min(data.confidence_score, 0.5))
        logger.info(f"Policy for {data.service} {data.status}")

    graph = GraphBuilder(
        NAME,
        description="Generate a security policy with risk-based routing and refinement",
        max_iterations=MAX_ITERATIONS,
    )
    graph.add_step("analyze_requirements", analyze_requirements)
    graph.add_step("assess_risk", assess_risk)
    graph.add_step("retrieve_context", retrieve_context)
    graph.add_step("threat_analysis", threat_analysis)
    graph.add_step("compliance_check", compliance_check)
    graph.add_step("security_validation", security_validation)
    graph.add_step("generate_policy", generate_policy)
    graph.add_step("validate_policy", validate_policy)
    graph.add_step("refine_policy", refine_policy)
    graph.add_step("finalize_policy", finalize_policy)

    graph.set_entry_point("analyze_requirements")
    graph.add_conditional_edges(
        "analyze_requirements",
        route_on_complexity,
        {
            ComplexityRoute.SIMPLE: ["assess_risk"],
            ComplexityRoute.COMPLEX: ["retrieve_context", "assess_risk"],
        },
    )
    graph.add_conditional_edges(
        "assess_risk",
        route_on_risk,
        {
            RiskRoute.HIGH: ["threat_analysis", "security_validation", "generate_policy"],
            RiskRoute.MEDIUM: ["compliance_check", "generate_policy"],
            RiskRoute.LOW: ["generate_policy"],
        },
    )
    graph.add_conditional_edges(
        "generate_policy",
        route_after_generation,
        {
            DraftRoute.NEEDS_VALIDATION: ["validate_policy"],
            DraftRoute.NEEDS_REFINEMENT: ["refine_policy"],
            DraftRoute.COMPLETE: ["finalize_policy"],
        },
    )
    graph.add_conditional_edges(
        "validate_policy",
        route_after_validation,
        {
            ValidationRoute.PASS: ["finalize_policy"],
            ValidationRoute.FAIL: ["refine_policy"],
            ValidationRoute.NEEDS_REVIEW: ["threat_analysis", "compliance_check", "refine_policy"],
            ValidationRoute.MAX_ITERATIONS: ["finalize_policy"],
        },
    )
    graph.add_conditional_edges(
        "refine_policy",
        route_after_refinement,
        {
            RefinementRoute.RETRY: ["generate_policy"],
            RefinementRoute.MAX_ITERATIONS: ["finalize_policy"],
            RefinementRoute.ERROR: END,
        },
    )
    graph.add_terminal("finalize_policy")
    return graph.compile()


def policy_generation_state(
    service: str,
    requirements: Optional[Dict[str, Any]] = None,
    max_refinements: int = 2,
) -> WorkflowState:
    """Initial state for a policy generation run."""
    return new_state(
        PolicyGenerationData(
            service=service,
            requirements=requirements or {},
            max_refinements=max_refinements,
        )
    )


__all__ = [
    "NAME",
    "build_policy_generation_graph",
    "policy_generation_state",
    "route_on_complexity",
    "route_on_risk",
    "route_after_generation",
    "route_after_validation",
    "route_after_refinement",
    "risk_level",
]
