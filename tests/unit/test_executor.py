"""Graph executor behaviour."""

import asyncio

import pytest

from policyflow.constants import END
from policyflow.contracts import WorkflowState
from policyflow.errors import (
    MaxIterationsExceededError,
    StepExecutionError,
    UnknownGraphError,
    UnroutableStateError,
    WorkflowCancelledError,
)
from policyflow.execute import CancellationToken, GraphExecutor
from policyflow.graph import GraphBuilder
from policyflow.registry import GraphRegistry


def recorder(name):
    def step(state):
        state.data.setdefault("visited", []).append(name)

    return step


def _register(graph: GraphBuilder):
    registry = GraphRegistry()
    definition = registry.register(graph.build())
    return registry, definition


def _state():
    return WorkflowState(data={})


@pytest.mark.asyncio
async def test_linear_graph_runs_every_step_once():
    graph = GraphBuilder("linear")
    for name in ("a", "b", "c"):
        graph.add_step(name, recorder(name))
    graph.set_entry_point("a")
    graph.add_edge("a", "b")
    graph.add_edge("b", "c")
    graph.add_terminal("c")
    registry, definition = _register(graph)

    result = await GraphExecutor(registry).run(definition, _state())

    assert result.terminal_step == "c"
    assert result.state.data["visited"] == ["a", "b", "c"]
    assert result.state.metadata.total_steps == 3
    assert result.state.iteration_count == 3
    assert result.state.errors == []


@pytest.mark.asyncio
async def test_async_steps_are_awaited():
    async def slow(state):
        await asyncio.sleep(0)
        state.data["slow"] = True

    graph = GraphBuilder("async")
    graph.add_step("slow", slow)
    graph.set_entry_point("slow")
    graph.add_terminal("slow")
    registry, definition = _register(graph)

    result = await GraphExecutor(registry).run("async", _state())
    assert result.state.data == {"slow": True}


@pytest.mark.asyncio
async def test_retry_loop_fails_at_iteration_ceiling():
    graph = GraphBuilder("retry")
    graph.add_step("attempt", recorder("attempt"))
    graph.add_step("done", recorder("done"))
    graph.set_entry_point("attempt")
    graph.add_conditional_edges(
        "attempt", lambda state: "retry", {"retry": ["attempt"], "done": ["done"]}
    )
    graph.add_terminal("done")
    registry, definition = _register(graph)
    state = _state()

    with pytest.raises(MaxIterationsExceededError) as exc_info:
        await GraphExecutor(registry, max_iterations=3).run(definition, state)

    assert exc_info.value.max_iterations == 3
    assert state.iteration_count == 3
    assert state.data["visited"] == ["attempt"] * 3


@pytest.mark.asyncio
async def test_graph_ceiling_overrides_executor_default():
    graph = GraphBuilder("long", max_iterations=10)
    names = [f"s{i}" for i in range(8)]
    for name in names:
        graph.add_step(name, recorder(name))
    graph.set_entry_point(names[0])
    for source, target in zip(names, names[1:]):
        graph.add_edge(source, target)
    graph.add_terminal(names[-1])
    registry, definition = _register(graph)

    result = await GraphExecutor(registry, max_iterations=5).run(definition, _state())
    assert result.state.metadata.total_steps == 8


@pytest.mark.asyncio
async def test_empty_successor_list_ends_after_one_step():
    graph = GraphBuilder("short")
    graph.add_step("start", recorder("start"))
    graph.add_step("done", recorder("done"))
    graph.set_entry_point("start")
    graph.add_conditional_edges("start", lambda state: "stop", {"stop": END, "go": "done"})
    graph.add_terminal("done")
    registry, definition = _register(graph)

    result = await GraphExecutor(registry).run(definition, _state())

    assert result.terminal_step == "start"
    assert result.state.metadata.total_steps == 1


@pytest.mark.asyncio
async def test_fan_out_runs_successors_in_declared_order():
    graph = GraphBuilder("fan_out")
    for name in ("assess", "threat", "compliance", "generate"):
        graph.add_step(name, recorder(name))
    graph.set_entry_point("assess")
    graph.add_conditional_edges(
        "assess",
        lambda state: "high",
        {"high": ["threat", "compliance", "generate"], "low": ["generate"]},
    )
    # Pipeline stages do not consult their own routes.
    graph.add_edge("threat", "generate")
    graph.add_terminal("generate")
    registry, definition = _register(graph)

    result = await GraphExecutor(registry).run(definition, _state())

    assert result.state.data["visited"] == ["assess", "threat", "compliance", "generate"]
    assert result.terminal_step == "generate"


@pytest.mark.asyncio
async def test_non_fatal_error_is_recorded_and_routing_proceeds():
    def flaky(state):
        raise RuntimeError("knowledge service unavailable")

    graph = GraphBuilder("recoverable")
    graph.add_step("fetch", flaky)
    graph.add_step("fallback", recorder("fallback"))
    graph.add_step("done", recorder("done"))
    graph.set_entry_point("fetch")
    graph.add_conditional_edges(
        "fetch",
        lambda state: "failed" if state.has_errors else "ok",
        {"failed": ["fallback"], "ok": ["done"]},
    )
    graph.add_edge("fallback", "done")
    graph.add_terminal("done")
    registry, definition = _register(graph)

    result = await GraphExecutor(registry).run(definition, _state())

    assert result.state.data["visited"] == ["fallback", "done"]
    assert len(result.state.errors) == 1
    assert result.state.errors[0].step == "fetch"
    assert "unavailable" in result.state.errors[0].message


@pytest.mark.asyncio
async def test_fatal_step_spec_halts_execution():
    def broken(state):
        raise RuntimeError("boom")

    graph = GraphBuilder("fatal")
    graph.add_step("broken", broken, fatal=True)
    graph.add_step("done", recorder("done"))
    graph.set_entry_point("broken")
    graph.add_edge("broken", "done")
    graph.add_terminal("done")
    registry, definition = _register(graph)
    state = _state()

    with pytest.raises(StepExecutionError) as exc_info:
        await GraphExecutor(registry).run(definition, state)

    assert exc_info.value.fatal
    assert exc_info.value.step_name == "broken"
    assert "visited" not in state.data
    assert state.errors_for("broken")


@pytest.mark.asyncio
async def test_step_can_raise_fatal_error_itself():
    def refuse(state):
        raise StepExecutionError("refuse", "credentials revoked", fatal=True)

    graph = GraphBuilder("self_fatal")
    graph.add_step("refuse", refuse)
    graph.add_step("done", recorder("done"))
    graph.set_entry_point("refuse")
    graph.add_edge("refuse", "done")
    graph.add_terminal("done")
    registry, definition = _register(graph)

    with pytest.raises(StepExecutionError, match="credentials revoked"):
        await GraphExecutor(registry).run(definition, _state())


@pytest.mark.asyncio
async def test_unmapped_outcome_is_unroutable():
    graph = GraphBuilder("unroutable")
    graph.add_step("a", recorder("a"))
    graph.add_step("done", recorder("done"))
    graph.set_entry_point("a")
    graph.add_conditional_edges("a", lambda state: "sideways", {"forward": ["done"]})
    graph.add_terminal("done")
    registry, definition = _register(graph)

    with pytest.raises(UnroutableStateError) as exc_info:
        await GraphExecutor(registry).run(definition, _state())
    assert exc_info.value.outcome == "sideways"
    assert exc_info.value.step_name == "a"


@pytest.mark.asyncio
async def test_router_exception_is_unroutable():
    def bad_router(state):
        raise KeyError("risk_level")

    graph = GraphBuilder("bad_router")
    graph.add_step("a", recorder("a"))
    graph.add_step("done", recorder("done"))
    graph.set_entry_point("a")
    graph.add_conditional_edges("a", bad_router, {"forward": ["done"]})
    graph.add_terminal("done")
    registry, definition = _register(graph)

    with pytest.raises(UnroutableStateError):
        await GraphExecutor(registry).run(definition, _state())


@pytest.mark.asyncio
async def test_unregistered_definition_is_rejected():
    graph = GraphBuilder("loose")
    graph.add_step("a", recorder("a"))
    graph.set_entry_point("a")
    graph.add_terminal("a")

    with pytest.raises(UnknownGraphError):
        await GraphExecutor(GraphRegistry()).run(graph.compile(), _state())
    with pytest.raises(UnknownGraphError):
        await GraphExecutor(GraphRegistry()).run("loose", _state())


@pytest.mark.asyncio
async def test_cancellation_stops_before_next_step():
    token = CancellationToken()

    def first(state):
        state.data["first"] = True
        token.cancel()

    graph = GraphBuilder("cancel")
    graph.add_step("first", first)
    graph.add_step("second", recorder("second"))
    graph.set_entry_point("first")
    graph.add_edge("first", "second")
    graph.add_terminal("second")
    registry, definition = _register(graph)
    state = _state()

    with pytest.raises(WorkflowCancelledError):
        await GraphExecutor(registry).run(definition, state, cancellation=token)
    assert "visited" not in state.data


@pytest.mark.asyncio
async def test_returned_state_replaces_current_state():
    def replace(state):
        return WorkflowState(data={"replaced": True})

    graph = GraphBuilder("replace")
    graph.add_step("replace", replace)
    graph.add_step("done", lambda state: None)
    graph.set_entry_point("replace")
    graph.add_edge("replace", "done")
    graph.add_terminal("done")
    registry, definition = _register(graph)

    result = await GraphExecutor(registry).run(definition, _state())

    assert result.state.data == {"replaced": True}
    assert result.state.metadata.total_steps == 2


@pytest.mark.asyncio
async def test_replacement_state_is_reported_to_listener():
    seen = []
    graph = GraphBuilder("replace_listened")
    graph.add_step("replace", lambda state: WorkflowState(data={"replaced": True}))
    graph.add_step("done", lambda state: None)
    graph.set_entry_point("replace")
    graph.add_edge("replace", "done")
    graph.add_terminal("done")
    registry, definition = _register(graph)

    result = await GraphExecutor(registry).run(definition, _state(), on_state=seen.append)

    assert seen == [result.state]
    assert seen[0].iteration_count == 2


@pytest.mark.asyncio
async def test_unhashable_outcome_is_unroutable():
    graph = GraphBuilder("unhashable")
    graph.add_step("a", recorder("a"))
    graph.add_step("done", recorder("done"))
    graph.set_entry_point("a")
    graph.add_conditional_edges("a", lambda state: ["forward"], {"forward": ["done"]})
    graph.add_terminal("done")
    registry, definition = _register(graph)

    with pytest.raises(UnroutableStateError) as exc_info:
        await GraphExecutor(registry).run(definition, _state())
    assert exc_info.value.outcome == ["forward"]
    assert exc_info.value.step_name == "a"
