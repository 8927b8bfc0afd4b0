"""Command line interface for inspecting and running policyflow workflows."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer

from policyflow import create_orchestrator, load_config
from policyflow.cli_utils.render import (
    _graph_lines,
    _parse_input,
    _result_lines,
    _statistics_json,
)
from policyflow.config import configure_logging
from policyflow.contracts import WorkflowState
from policyflow.errors import UnknownGraphError, WorkflowError
from policyflow.orchestrator import WorkflowOrchestrator
from policyflow.workflows import initial_state

app = typer.Typer(help="CLI for policyflow workflows")

# Command groups
graph_app = typer.Typer(help="Commands for inspecting workflow graphs")
workflow_app = typer.Typer(help="Commands for running workflows")

app.add_typer(graph_app, name="graph")
app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", help="Path to a YAML configuration file"
    ),
) -> None:
    """Policyflow CLI entry point."""
    settings = load_config(str(config) if config else None)
    configure_logging(settings)
    ctx.obj = settings


def _orchestrator(ctx: typer.Context) -> WorkflowOrchestrator:
    return create_orchestrator(ctx.obj)


@graph_app.command("list")
def graph_list(ctx: typer.Context) -> None:
    """
    List registered workflow graphs.

    Example:
        policyflow graph list
        # Output: policy_generation    10 steps
        #         threat_response      7 steps
    """
    orchestrator = _orchestrator(ctx)
    for definition in orchestrator.registry:
        typer.echo(f"{definition.name}\t{len(definition.steps)} steps")


@graph_app.command("show")
def graph_show(ctx: typer.Context, name: str) -> None:
    """
    Show the entry point, terminals, steps and edges of a graph.

    Example:
        policyflow graph show compliance_validation
    """
    orchestrator = _orchestrator(ctx)
    try:
        definition = orchestrator.get_graph(name)
    except UnknownGraphError:
        typer.secho(f"Graph not found: {name}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    for line in _graph_lines(definition):
        typer.echo(line)


def _load_input(name: str, raw: Optional[str]) -> WorkflowState:
    try:
        return initial_state(name, _parse_input(raw))
    except (ValueError, json.JSONDecodeError) as exc:
        typer.secho(f"Invalid input for {name}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@workflow_app.command("run")
def workflow_run(
    ctx: typer.Context,
    name: str,
    input: Optional[str] = typer.Option(
        None, "--input", help="JSON object with the workflow payload"
    ),
) -> None:
    """
    Run one workflow instance in-process and print its outcome.

    Example:
        policyflow workflow run policy_generation \\
            --input '{"service": "AWS IAM", "requirements": {"compliance": "SOC2"}}'
        # Output: Instance 0b7c...: completed
        #         Terminal step: finalize_policy
    """
    orchestrator = _orchestrator(ctx)
    if name not in orchestrator.registry:
        typer.secho(f"Graph not found: {name}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    state = _load_input(name, input)

    try:
        result = asyncio.run(orchestrator.start(name, state))
    except WorkflowError as exc:
        typer.secho(f"Workflow failed: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    for line in _result_lines(result):
        typer.echo(line)


async def _run_many(
    orchestrator: WorkflowOrchestrator, name: str, states: List[WorkflowState]
) -> List[object]:
    return await asyncio.gather(
        *(orchestrator.start(name, state) for state in states),
        return_exceptions=True,
    )


@workflow_app.command("stats")
def workflow_stats(
    ctx: typer.Context,
    name: str,
    count: int = typer.Option(10, "--count", min=1, help="Number of instances to run"),
    input: Optional[str] = typer.Option(
        None, "--input", help="JSON object with the workflow payload"
    ),
) -> None:
    """
    Run several instances concurrently and print the orchestrator statistics.

    Example:
        policyflow workflow stats threat_response --count 20 \\
            --input '{"threat_id": "T-1", "threat_data": {"severity": "high"}}'
    """
    orchestrator = _orchestrator(ctx)
    if name not in orchestrator.registry:
        typer.secho(f"Graph not found: {name}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    states = [_load_input(name, input) for _ in range(count)]
    outcomes = asyncio.run(_run_many(orchestrator, name, states))
    failures = [outcome for outcome in outcomes if isinstance(outcome, Exception)]
    if failures:
        typer.echo(f"{len(failures)} of {count} instances failed: {failures[0]}")
    typer.echo(_statistics_json(orchestrator.get_statistics()))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
