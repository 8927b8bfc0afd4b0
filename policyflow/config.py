from __future__ import annotations

import logging
import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import DEFAULT_HISTORY_LIMIT, DEFAULT_MAX_ITERATIONS


class EngineConfig(BaseModel):
    """Graph executor settings."""

    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1)


class OrchestratorConfig(BaseModel):
    """Instance tracking settings."""

    history_limit: int = Field(default=DEFAULT_HISTORY_LIMIT, ge=1)


class GenerationConfig(BaseModel):
    """Content generation collaborator settings."""

    backend: Literal["template", "agent"] = "template"
    model: Optional[str] = None
    system_prompt: Optional[str] = None


class PolicyflowConfig(BaseModel):
    """Top-level configuration model."""

    log_level: str = "INFO"
    engine: EngineConfig = EngineConfig()
    orchestrator: OrchestratorConfig = OrchestratorConfig()
    generation: GenerationConfig = GenerationConfig()


def load_config(path: Optional[str] = None) -> PolicyflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to POLICYFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("POLICYFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = PolicyflowConfig(**data)
    else:
        config = PolicyflowConfig()

    if env_level := os.getenv("POLICYFLOW_LOG_LEVEL"):
        config.log_level = env_level
    if env_iterations := os.getenv("POLICYFLOW_MAX_ITERATIONS"):
        config.engine = EngineConfig(max_iterations=int(env_iterations))
    if env_history := os.getenv("POLICYFLOW_HISTORY_LIMIT"):
        config.orchestrator = OrchestratorConfig(history_limit=int(env_history))
    if env_backend := os.getenv("POLICYFLOW_GENERATION_BACKEND"):
        config.generation = GenerationConfig(
            **{**config.generation.model_dump(), "backend": env_backend}
        )
    return config


def configure_logging(config: PolicyflowConfig) -> None:
    """Apply ``config.log_level`` to the root logger."""
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
