"""Collaborator factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import PolicyflowConfig, load_config
from .base import (
    Collaborators,
    ContentGenerator,
    KnowledgeProvider,
    PolicyValidator,
    ValidationResult,
)
from .inmemory import (
    InMemoryKnowledgeProvider,
    KnowledgeFact,
    RuleBasedValidator,
    TemplateContentGenerator,
)


def get_generator(
    backend: Optional[str] = None, config: Optional[PolicyflowConfig] = None
) -> ContentGenerator:
    """Factory function to get the configured content generator."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("POLICYFLOW_GENERATION_BACKEND")
        or config.generation.backend
    ).lower()

    if backend == "template":
        return TemplateContentGenerator()
    elif backend == "agent":
        from .agent import AgentContentGenerator

        return AgentContentGenerator.from_model(
            config.generation.model, config.generation.system_prompt
        )
    else:
        raise ValueError(f"Unsupported generation backend: {backend}")


def get_collaborators(config: Optional[PolicyflowConfig] = None) -> Collaborators:
    """Build the default collaborator set from configuration."""

    config = config or load_config()
    return Collaborators(
        knowledge=InMemoryKnowledgeProvider(),
        generator=get_generator(config=config),
        validator=RuleBasedValidator(),
    )


__all__ = [
    "Collaborators",
    "ContentGenerator",
    "KnowledgeProvider",
    "PolicyValidator",
    "ValidationResult",
    "InMemoryKnowledgeProvider",
    "KnowledgeFact",
    "RuleBasedValidator",
    "TemplateContentGenerator",
    "get_collaborators",
    "get_generator",
]
