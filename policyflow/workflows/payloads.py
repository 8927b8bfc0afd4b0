"""Typed domain payloads for the built-in workflow kinds."""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from ..collaborators.base import ValidationResult
from ..contracts import WorkflowState


class PolicyGenerationData(BaseModel):
    """Payload of the ``policy_generation`` workflow."""

    kind: Literal["policy_generation"] = "policy_generation"
    service: str = ""
    requirements: Dict[str, Any] = Field(default_factory=dict)
    complexity: str = "simple"
    risk_level: str = "low"
    threat_context: List[str] = Field(default_factory=list)
    compliance_context: List[str] = Field(default_factory=list)
    similar_policies: List[str] = Field(default_factory=list)
    best_practices: List[str] = Field(default_factory=list)
    review_notes: List[str] = Field(default_factory=list)
    refinement_notes: List[str] = Field(default_factory=list)
    policy_draft: str = ""
    validation: Optional[ValidationResult] = None
    validated_draft: Optional[str] = None
    confidence_score: float = 0.0
    refinement_count: int = 0
    max_refinements: int = Field(default=2, ge=0)
    status: str = "draft"

    def update_confidence(self, score: float) -> None:
        self.confidence_score = max(0.0, min(1.0, score))


class ThreatResponseData(BaseModel):
    """Payload of the ``threat_response`` workflow."""

    kind: Literal["threat_response"] = "threat_response"
    threat_id: str = ""
    threat_data: Dict[str, Any] = Field(default_factory=dict)
    severity: str = "low"
    similar_threats: List[str] = Field(default_factory=list)
    mitigation_strategies: List[str] = Field(default_factory=list)
    affected_policies: List[str] = Field(default_factory=list)
    impact_analysis: Dict[str, Any] = Field(default_factory=dict)
    recommendations: List[str] = Field(default_factory=list)
    actions: List[str] = Field(default_factory=list)
    notifications: List[str] = Field(default_factory=list)
    status: str = "analyzing"


class ComplianceValidationData(BaseModel):
    """Payload of the ``compliance_validation`` workflow."""

    kind: Literal["compliance_validation"] = "compliance_validation"
    policy_id: str = ""
    policy: str = ""
    framework: str = ""
    requirements: List[str] = Field(default_factory=list)
    validation: Optional[ValidationResult] = None
    verdict: str = "pending"
    gaps: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    audit_trail: List[Dict[str, Any]] = Field(default_factory=list)
    status: str = "validating"


DomainPayload = Annotated[
    Union[PolicyGenerationData, ThreatResponseData, ComplianceValidationData],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter = TypeAdapter(DomainPayload)


def parse_payload(kind: str, data: Optional[Dict[str, Any]] = None) -> BaseModel:
    """Build the payload model for workflow ``kind`` from plain data."""
    return _payload_adapter.validate_python({**(data or {}), "kind": kind})


def new_state(payload: BaseModel) -> WorkflowState:
    return WorkflowState(data=payload)


__all__ = [
    "PolicyGenerationData",
    "ThreatResponseData",
    "ComplianceValidationData",
    "DomainPayload",
    "parse_payload",
    "new_state",
]
