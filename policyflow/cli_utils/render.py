"""Helpers that turn engine objects into CLI output lines."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from policyflow.contracts import WorkflowResult, WorkflowStatistics
from policyflow.graph import WorkflowDefinition


def _parse_input(raw: Optional[str]) -> Dict[str, Any]:
    """Parse a ``--input`` JSON object; empty input yields an empty dict."""
    if not raw:
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("input must be a JSON object")
    return data


def _graph_lines(definition: WorkflowDefinition) -> List[str]:
    described = definition.describe()
    lines = [f"Graph {described['name']}"]
    if described["description"]:
        lines.append(f"  {described['description']}")
    lines.append(f"Entry point: {described['entry_point']}")
    lines.append(f"Terminals: {', '.join(described['terminals'])}")
    if described["max_iterations"]:
        lines.append(f"Max iterations: {described['max_iterations']}")
    lines.append("Steps:")
    for step in described["steps"]:
        marker = " (fatal)" if step["fatal"] else ""
        lines.append(f"- {step['name']}{marker}")
        for outcome, targets in step["edges"].items():
            lines.append(f"    {outcome} -> {', '.join(targets) or 'END'}")
    return lines


def _payload_json(payload: Any) -> str:
    if isinstance(payload, BaseModel):
        return payload.model_dump_json(indent=2)
    return json.dumps(payload, indent=2, default=str)


def _result_lines(result: WorkflowResult) -> List[str]:
    state = result.state
    lines = [
        f"Instance {result.instance_id}: {result.status.value}",
        f"Terminal step: {result.terminal_step or '-'}",
        f"Steps: {state.metadata.total_steps}",
        f"Duration: {result.duration_ms:.1f} ms",
    ]
    if result.error:
        lines.append(f"Error: {result.error}")
    if state.errors:
        lines.append("Step errors:")
        lines.extend(f"- {error.step}: {error.message}" for error in state.errors)
    lines.append(f"Payload: {_payload_json(state.data)}")
    return lines


def _statistics_json(statistics: WorkflowStatistics) -> str:
    return json.dumps(statistics.to_dict(), indent=2)
