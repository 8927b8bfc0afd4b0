"""Content generation backed by a pydantic-ai agent."""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel
from pydantic_ai import Agent

from ..contracts import WorkflowState
from .base import ContentGenerator

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a cloud security engineer. Write a concise security policy in "
    "markdown with the sections '## Scope', '## Controls' and '## Compliance'. "
    "Name the compliance framework explicitly and address every listed requirement."
)


def build_generation_prompt(state: WorkflowState) -> str:
    """Describe the workflow payload to the model."""
    data = state.data
    if isinstance(data, BaseModel):
        details = data.model_dump_json(indent=2, exclude={"policy_draft"})
    else:
        details = repr(data)
    prompt = f"Draft a security policy from this context:\n{details}"
    if state.errors:
        recent = "; ".join(error.message for error in state.errors[-3:])
        prompt += f"\nEarlier steps reported problems: {recent}"
    return prompt


class AgentContentGenerator(ContentGenerator):
    """Generate text by running a pydantic-ai agent on the workflow payload."""

    def __init__(self, agent: Any) -> None:
        self.agent = agent

    @classmethod
    def from_model(
        cls, model: Optional[str], system_prompt: Optional[str] = None
    ) -> "AgentContentGenerator":
        if not model:
            raise ValueError("generation.model must be set for the agent backend")
        agent = Agent(model, system_prompt=system_prompt or DEFAULT_SYSTEM_PROMPT)
        return cls(agent)

    async def generate(self, state: WorkflowState) -> str:
        prompt = build_generation_prompt(state)
        result = await self.agent.run(prompt)
        output = result.output if hasattr(result, "output") else result
        logger.info(
            f"Agent generated {len(str(output))} characters for instance "
            f"{state.metadata.instance_id}"
        )
        return str(output)


__all__ = ["AgentContentGenerator", "build_generation_prompt", "DEFAULT_SYSTEM_PROMPT"]
