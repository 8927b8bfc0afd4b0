"""Interfaces for the external services that workflow steps call."""

from __future__ import annotations

import abc
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field

from ..contracts import WorkflowState


class ValidationResult(BaseModel):
    """Verdict returned by a :class:`PolicyValidator`."""

    passed: bool
    issues: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    needs_review: bool = False


class KnowledgeProvider(metaclass=abc.ABCMeta):
    """Retrieves categorised facts for a knowledge domain."""

    @abc.abstractmethod
    async def get_context(self, domain_key: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Return facts for ``domain_key`` keyed by category."""
        raise NotImplementedError


class ContentGenerator(metaclass=abc.ABCMeta):
    """Produces document text from the current workflow state."""

    @abc.abstractmethod
    async def generate(self, state: WorkflowState) -> str:
        raise NotImplementedError


class PolicyValidator(metaclass=abc.ABCMeta):
    """Checks generated content against requirements."""

    @abc.abstractmethod
    async def validate(self, content: str, requirements: Dict[str, Any]) -> ValidationResult:
        raise NotImplementedError


class Collaborators(BaseModel):
    """The set of services injected into the built-in workflows."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    knowledge: KnowledgeProvider
    generator: ContentGenerator
    validator: PolicyValidator
