"""Threat response workflow: severity triage, impact analysis and response actions."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from ..collaborators import Collaborators
from ..contracts import WorkflowState
from ..graph import GraphBuilder, WorkflowDefinition
from .payloads import ThreatResponseData, new_state

logger = logging.getLogger(__name__)

NAME = "threat_response"
MAX_ITERATIONS = 10

SEVERITY_SCORES = {"critical": 4, "high": 3, "medium": 2, "low": 1}


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ImpactRoute(str, Enum):
    HIGH = "high_impact"
    MEDIUM = "medium_impact"
    LOW = "low_impact"


def _affected_services(threat_data: Dict[str, Any]) -> List[str]:
    services = threat_data.get("affected_services") or []
    if isinstance(services, str):
        services = [services]
    return [str(service) for service in services]


def threat_severity(threat_data: Dict[str, Any]) -> str:
    """Score the reported severity, active exploitation and service exposure."""
    score = SEVERITY_SCORES.get(str(threat_data.get("severity", "")).lower(), 1)
    if threat_data.get("exploited"):
        score += 1
    if _affected_services(threat_data):
        score += 1

    if score >= 6:
        return Severity.CRITICAL.value
    if score >= 4:
        return Severity.HIGH.value
    if score >= 2:
        return Severity.MEDIUM.value
    return Severity.LOW.value


def impact_level(affected_policies: List[str], affected_services: List[str]) -> str:
    exposure = len(affected_policies) + len(affected_services)
    if exposure >= 4:
        return "high"
    if exposure >= 2:
        return "medium"
    return "low"


def _payload(state: WorkflowState) -> Optional[ThreatResponseData]:
    data = state.data
    return data if isinstance(data, ThreatResponseData) else None


def _require(state: WorkflowState) -> ThreatResponseData:
    data = _payload(state)
    if data is None:
        raise TypeError(f"expected ThreatResponseData payload, got {type(state.data).__name__}")
    return data


def route_on_severity(state: WorkflowState) -> Severity:
    data = _payload(state)
    try:
        return Severity(data.severity if data is not None else "low")
    except ValueError:
        return Severity.LOW


def route_on_impact(state: WorkflowState) -> ImpactRoute:
    data = _payload(state)
    level = data.impact_analysis.get("level", "low") if data is not None else "low"
    return {"high": ImpactRoute.HIGH, "medium": ImpactRoute.MEDIUM}.get(level, ImpactRoute.LOW)


def build_threat_response_graph(collaborators: Collaborators) -> WorkflowDefinition:
    knowledge = collaborators.knowledge

    async def assess_threat(state: WorkflowState) -> None:
        data = _require(state)
        data.severity = threat_severity(data.threat_data)
        logger.info(f"Threat {data.threat_id} assessed as {data.severity}")

    async def retrieve_context(state: WorkflowState) -> None:
        data = _require(state)
        context = await knowledge.get_context(
            "threat", {"threat_id": data.threat_id, **data.threat_data}
        )
        data.similar_threats = list(context.get("similar_threats", []))
        data.mitigation_strategies = list(context.get("mitigation_strategies", []))
        data.affected_policies = list(context.get("policy_impact", []))

    async def analyze_impact(state: WorkflowState) -> None:
        data = _require(state)
        services = _affected_services(data.threat_data)
        data.impact_analysis = {
            "level": impact_level(data.affected_policies, services),
            "affected_policies": list(data.affected_policies),
            "affected_services": services,
        }
        logger.info(f"Threat {data.threat_id} impact: {data.impact_analysis['level']}")

    async def update_policies(state: WorkflowState) -> None:
        data = _require(state)
        for policy in data.affected_policies:
            data.actions.append(f"update policy {policy}")
        for strategy in data.mitigation_strategies:
            data.actions.append(f"apply mitigation: {strategy}")
        data.status = "mitigating"

    async def generate_recommendations(state: WorkflowState) -> None:
        data = _require(state)
        recommendations = list(data.mitigation_strategies)
        if data.affected_policies:
            recommendations.append("Review affected policies against the reported threat")
        if not recommendations:
            recommendations.append("Monitor for recurrence")
        data.recommendations = recommendations

    async def notify_stakeholders(state: WorkflowState) -> None:
        data = _require(state)
        data.notifications.append(
            f"{data.severity} threat {data.threat_id}: {len(data.actions)} actions taken"
        )
        data.status = "responded"

    async def log_incident(state: WorkflowState) -> None:
        data = _require(state)
        data.actions.append(f"logged incident for threat {data.threat_id}")
        data.status = "logged"

    graph = GraphBuilder(
        NAME,
        description="Triage a threat and respond by severity and impact",
        max_iterations=MAX_ITERATIONS,
    )
    graph.add_step("assess_threat", assess_threat)
    graph.add_step("retrieve_context", retrieve_context)
    graph.add_step("analyze_impact", analyze_impact)
    graph.add_step("update_policies", update_policies)
    graph.add_step("generate_recommendations", generate_recommendations)
    graph.add_step("notify_stakeholders", notify_stakeholders)
    graph.add_step("log_incident", log_incident)

    graph.set_entry_point("assess_threat")
    graph.add_conditional_edges(
        "assess_threat",
        route_on_severity,
        {
            Severity.CRITICAL: [
                "retrieve_context",
                "analyze_impact",
                "update_policies",
                "notify_stakeholders",
            ],
            Severity.HIGH: ["retrieve_context", "analyze_impact"],
            Severity.MEDIUM: ["generate_recommendations", "log_incident"],
            Severity.LOW: ["log_incident"],
        },
    )
    graph.add_conditional_edges(
        "analyze_impact",
        route_on_impact,
        {
            ImpactRoute.HIGH: ["update_policies", "notify_stakeholders"],
            ImpactRoute.MEDIUM: ["generate_recommendations"],
            ImpactRoute.LOW: ["log_incident"],
        },
    )
    graph.add_edge("generate_recommendations", "log_incident")
    graph.add_terminal("notify_stakeholders", "log_incident")
    return graph.compile()


def threat_response_state(threat_id: str, threat_data: Optional[Dict[str, Any]] = None) -> WorkflowState:
    return new_state(ThreatResponseData(threat_id=threat_id, threat_data=threat_data or {}))


__all__ = [
    "NAME",
    "Severity",
    "ImpactRoute",
    "build_threat_response_graph",
    "threat_response_state",
    "threat_severity",
    "impact_level",
    "route_on_severity",
    "route_on_impact",
]
