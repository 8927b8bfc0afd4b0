"""Example showing how to build, register and run a custom workflow graph."""

import asyncio
from enum import Enum

from policyflow import END, GraphBuilder, WorkflowOrchestrator


class Review(str, Enum):
    APPROVED = "approved"
    REWORK = "rework"
    ABANDON = "abandon"


def draft(state):
    state.data["revision"] = state.data.get("revision", 0) + 1


def review(state):
    state.data["approved"] = state.data["revision"] >= 2


def route_review(state):
    if state.data.get("approved"):
        return Review.APPROVED
    if state.data["revision"] > 3:
        return Review.ABANDON
    return Review.REWORK


async def publish(state):
    await asyncio.sleep(0)
    state.data["published"] = True


async def main():
    graph = GraphBuilder("document_review", max_iterations=10)
    graph.add_step("draft", draft)
    graph.add_step("review", review)
    graph.add_step("publish", publish)
    graph.set_entry_point("draft")
    graph.add_edge("draft", "review")
    graph.add_conditional_edges(
        "review",
        route_review,
        {Review.APPROVED: ["publish"], Review.REWORK: ["draft"], Review.ABANDON: END},
    )
    graph.add_terminal("publish")

    orchestrator = WorkflowOrchestrator()
    orchestrator.register_graph(graph.compile())

    result = await orchestrator.start("document_review", {})
    print(f"{result.instance_id}: {result.status.value} at {result.terminal_step}")
    print(f"Payload: {result.state.data}")
    print(orchestrator.get_statistics().to_dict())


if __name__ == "__main__":
    asyncio.run(main())
