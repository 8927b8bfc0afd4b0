"""In-process collaborator implementations.

Used by default and in tests. The knowledge base is a small keyword-tagged
fact list rather than a vector store; the generator renders a fixed markdown
template; the validator applies simple structural and keyword rules.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from ..contracts import WorkflowState
from .base import ContentGenerator, KnowledgeProvider, PolicyValidator, ValidationResult

logger = logging.getLogger(__name__)


class KnowledgeFact(BaseModel):
    """A single retrievable fact."""

    text: str
    category: str
    tags: List[str] = Field(default_factory=list)


def _fact(category: str, text: str, *tags: str) -> KnowledgeFact:
    return KnowledgeFact(category=category, text=text, tags=list(tags))


DEFAULT_KNOWLEDGE: Dict[str, List[KnowledgeFact]] = {
    "policy": [
        _fact("threat_context", "Credential theft through over-privileged IAM roles", "iam", "general"),
        _fact("threat_context", "Publicly readable object storage buckets", "s3", "storage"),
        _fact("threat_context", "Key material exfiltration through permissive key policies", "kms"),
        _fact("compliance_requirements", "SOC2 CC6.1 logical access controls", "soc2"),
        _fact("compliance_requirements", "CIS benchmark: enforce MFA for privileged users", "cis", "general"),
        _fact("compliance_requirements", "ISO27001 A.9 access control policy", "iso27001"),
        _fact("compliance_requirements", "NIST AC-6 least privilege", "nist"),
        _fact("similar_policies", "Least-privilege IAM role policy for production workloads", "iam", "production"),
        _fact("similar_policies", "Bucket policy denying unencrypted uploads", "s3"),
        _fact("best_practices", "Grant the minimum permissions required", "general"),
        _fact("best_practices", "Enable audit logging for all administrative actions", "general", "production"),
        _fact("best_practices", "Rotate encryption keys annually", "kms"),
    ],
    "threat": [
        _fact("similar_threats", "Privilege escalation through role chaining", "iam", "privilege"),
        _fact("similar_threats", "Ransomware staged from compromised storage", "s3", "ransomware"),
        _fact("mitigation_strategies", "Revoke active sessions and rotate credentials", "general"),
        _fact("mitigation_strategies", "Apply deny-by-default guardrail policies", "general", "iam"),
        _fact("policy_impact", "iam-baseline", "iam"),
        _fact("policy_impact", "storage-encryption", "s3", "storage"),
    ],
    "compliance": [
        _fact("requirements", "Access reviews performed quarterly", "soc2", "iso27001"),
        _fact("requirements", "Encryption at rest for sensitive data", "soc2", "nist", "cis"),
        _fact("requirements", "Multi-factor authentication for administrators", "cis", "nist", "general"),
        _fact("requirements", "Documented incident response plan", "iso27001", "nist"),
    ],
}


def _terms(params: Dict[str, Any]) -> set[str]:
    terms: set[str] = set()

    def collect(value: Any) -> None:
        if isinstance(value, str):
            terms.update(part.lower() for part in value.replace(",", " ").split())
        elif isinstance(value, dict):
            for item in value.values():
                collect(item)
        elif isinstance(value, (list, tuple, set)):
            for item in value:
                collect(item)

    collect(params)
    return terms


class InMemoryKnowledgeProvider(KnowledgeProvider):
    """Keyword-matched facts grouped by category."""

    def __init__(
        self,
        knowledge: Optional[Dict[str, Iterable[KnowledgeFact]]] = None,
        limit: int = 3,
    ) -> None:
        source = DEFAULT_KNOWLEDGE if knowledge is None else knowledge
        self._knowledge: Dict[str, List[KnowledgeFact]] = {
            domain: list(facts) for domain, facts in source.items()
        }
        self.limit = limit

    def add_fact(self, domain_key: str, fact: KnowledgeFact) -> None:
        self._knowledge.setdefault(domain_key, []).append(fact)

    async def get_context(self, domain_key: str, params: Dict[str, Any]) -> Dict[str, Any]:
        terms = _terms(params) | {"general"}
        scored: Dict[str, List[tuple[int, KnowledgeFact]]] = defaultdict(list)
        for fact in self._knowledge.get(domain_key, []):
            score = len(terms.intersection(tag.lower() for tag in fact.tags))
            if score:
                scored[fact.category].append((score, fact))

        context = {
            category: [
                fact.text
                for _, fact in sorted(matches, key=lambda item: item[0], reverse=True)[
                    : self.limit
                ]
            ]
            for category, matches in scored.items()
        }
        logger.debug(
            f"Knowledge lookup {domain_key} matched "
            f"{sum(len(v) for v in context.values())} facts"
        )
        return context


def _bullets(items: Sequence[Any]) -> List[str]:
    return [f"- {item}" for item in items] or ["- None identified"]


class TemplateContentGenerator(ContentGenerator):
    """Render a markdown policy document from the workflow payload."""

    async def generate(self, state: WorkflowState) -> str:
        data = state.data
        service = getattr(data, "service", "") or "service"
        requirements: Dict[str, Any] = getattr(data, "requirements", {}) or {}
        framework = requirements.get("compliance", "CIS")
        environment = requirements.get("environment", "production")

        controls = list(getattr(data, "best_practices", []))
        extra = requirements.get("additional_requirements") or []
        if isinstance(extra, str):
            extra = [extra]
        controls.extend(extra)

        lines = [
            f"# Security Policy for {service}",
            "",
            "## Scope",
            f"Applies to {service} resources in the {environment} environment.",
            "",
            "## Controls",
            *_bullets(controls),
            "",
            "## Compliance",
            f"Framework: {framework}",
            *_bullets(getattr(data, "compliance_context", [])),
            "",
            "## Threat Mitigations",
            *_bullets(getattr(data, "threat_context", [])),
        ]
        notes = list(getattr(data, "review_notes", [])) + list(
            getattr(data, "refinement_notes", [])
        )
        if notes:
            lines += ["", "## Review Notes", *_bullets(notes)]
        return "\n".join(lines) + "\n"


class RuleBasedValidator(PolicyValidator):
    """Structural and keyword checks on generated policy text.

    Content fails when a required section is missing, when the compliance
    framework is not named, or when an additional requirement keyword does
    not appear. ``require_review`` in the requirements asks for a
    ``## Review Notes`` section; its absence flags the result for review.
    """

    REQUIRED_SECTIONS = ("## Scope", "## Controls", "## Compliance")

    def __init__(self, required_sections: Optional[Sequence[str]] = None) -> None:
        self.required_sections = tuple(required_sections or self.REQUIRED_SECTIONS)

    async def validate(self, content: str, requirements: Dict[str, Any]) -> ValidationResult:
        issues: List[str] = []
        warnings: List[str] = []
        recommendations: List[str] = []

        if not content or not content.strip():
            return ValidationResult(passed=False, issues=["content is empty"])

        for section in self.required_sections:
            if section not in content:
                issues.append(f"missing section {section!r}")

        framework = requirements.get("compliance")
        if framework and framework not in content:
            issues.append(f"compliance framework {framework} is not referenced")

        extra = requirements.get("additional_requirements") or []
        if isinstance(extra, str):
            extra = [extra]
        lowered = content.lower()
        for item in extra:
            if str(item).lower() not in lowered:
                issues.append(f"requirement not addressed: {item}")

        if "None identified" in content:
            warnings.append("some sections have no supporting context")
            recommendations.append("retrieve additional knowledge before publishing")

        needs_review = bool(requirements.get("require_review")) and "## Review Notes" not in content
        passed = not issues and not needs_review
        return ValidationResult(
            passed=passed,
            issues=issues,
            warnings=warnings,
            recommendations=recommendations,
            needs_review=needs_review,
        )


__all__ = [
    "DEFAULT_KNOWLEDGE",
    "KnowledgeFact",
    "InMemoryKnowledgeProvider",
    "TemplateContentGenerator",
    "RuleBasedValidator",
]
