"""Orchestrator lifecycle, history and statistics."""

import asyncio

import pytest

from policyflow.contracts import InstanceStatus, WorkflowState
from policyflow.errors import (
    InvalidGraphError,
    MaxIterationsExceededError,
    StepExecutionError,
    UnknownGraphError,
    WorkflowError,
)
from policyflow.graph import GraphBuilder
from policyflow.orchestrator import WorkflowOrchestrator


def _count(state):
    state.data["count"] = state.data.get("count", 0) + 1


def _linear_graph(name: str = "linear"):
    graph = GraphBuilder(name)
    for step in ("a", "b", "c"):
        graph.add_step(step, _count)
    graph.set_entry_point("a")
    graph.add_edge("a", "b")
    graph.add_edge("b", "c")
    graph.add_terminal("c")
    return graph.compile()


def _looping_graph():
    graph = GraphBuilder("looping")
    graph.add_step("attempt", _count)
    graph.add_step("done", _count)
    graph.set_entry_point("attempt")
    graph.add_conditional_edges(
        "attempt", lambda state: "retry", {"retry": ["attempt"], "done": ["done"]}
    )
    graph.add_terminal("done")
    return graph.compile()


def _gated_graph(gate: asyncio.Event, entered: asyncio.Event):
    async def wait_for_gate(state):
        entered.set()
        await gate.wait()
        state.data["passed_gate"] = True

    graph = GraphBuilder("gated")
    graph.add_step("wait", wait_for_gate)
    graph.add_step("after", _count)
    graph.set_entry_point("wait")
    graph.add_edge("wait", "after")
    graph.add_terminal("after")
    return graph.compile()


def _swap(state):
    return WorkflowState(data={"replaced": True})


def _swapping_graph(name: str, then):
    graph = GraphBuilder(name)
    graph.add_step("swap", _swap)
    graph.add_step("then", then)
    graph.add_step("done", _count)
    graph.set_entry_point("swap")
    graph.add_edge("swap", "then")
    graph.add_edge("then", "done")
    graph.add_terminal("done")
    return graph.compile()


def _assert_counts_balance(orchestrator):
    stats = orchestrator.get_statistics()
    assert stats.total == stats.completed + stats.failed + stats.cancelled + stats.running


@pytest.fixture
def orchestrator():
    orchestrator = WorkflowOrchestrator(max_iterations=3)
    orchestrator.register_graph(_linear_graph())
    orchestrator.register_graph(_looping_graph())
    return orchestrator


@pytest.mark.asyncio
async def test_start_completes_and_records_history(orchestrator):
    result = await orchestrator.start("linear", {})

    assert result.status is InstanceStatus.COMPLETED
    assert result.succeeded
    assert result.terminal_step == "c"
    assert result.state.data == {"count": 3}
    assert result.state.metadata.instance_id == result.instance_id
    assert result.state.metadata.end_time is not None

    assert orchestrator.get_active() == []
    history = orchestrator.get_history()
    assert [record.instance_id for record in history] == [result.instance_id]
    assert history[0].total_steps == 3

    stats = orchestrator.get_statistics()
    assert stats.total == 1
    assert stats.completed == 1
    assert stats.success_rate == 1.0
    assert stats.per_graph["linear"].completed == 1


@pytest.mark.asyncio
async def test_unknown_graph_creates_no_instance(orchestrator):
    with pytest.raises(UnknownGraphError):
        await orchestrator.start("missing")

    assert orchestrator.get_statistics().total == 0
    assert orchestrator.get_history() == []


def test_register_duplicate_graph_is_rejected(orchestrator):
    with pytest.raises(InvalidGraphError):
        orchestrator.register_graph(_linear_graph())
    assert sorted(orchestrator.graphs) == ["linear", "looping"]


@pytest.mark.asyncio
async def test_failure_is_recorded_before_reraise(orchestrator):
    with pytest.raises(MaxIterationsExceededError):
        await orchestrator.start("looping", {})

    history = orchestrator.get_history()
    assert len(history) == 1
    record = history[0]
    assert record.status is InstanceStatus.FAILED
    assert "exceeded 3 iterations" in record.error
    assert record.state.iteration_count == 3

    stats = orchestrator.get_statistics()
    assert stats.failed == 1
    assert stats.success_rate == 0.0
    _assert_counts_balance(orchestrator)


@pytest.mark.asyncio
async def test_failure_after_state_replacement_records_current_state(orchestrator):
    def refuse(state):
        raise StepExecutionError("then", "credentials revoked", fatal=True)

    orchestrator.register_graph(_swapping_graph("swap_then_fail", refuse))

    with pytest.raises(StepExecutionError):
        await orchestrator.start("swap_then_fail", {"orig": True})

    record = orchestrator.get_history()[0]
    assert record.status is InstanceStatus.FAILED
    assert record.state.data == {"replaced": True}
    assert [error.step for error in record.state.errors] == ["then"]
    assert "credentials revoked" in record.state.errors[0].message
    assert record.state.iteration_count == 2
    _assert_counts_balance(orchestrator)


@pytest.mark.asyncio
async def test_cancel_after_state_replacement_records_current_state(orchestrator):
    gate, entered = asyncio.Event(), asyncio.Event()

    async def wait_for_gate(state):
        entered.set()
        await gate.wait()

    orchestrator.register_graph(_swapping_graph("swap_then_wait", wait_for_gate))
    instance_id = orchestrator.submit("swap_then_wait", {"orig": True})
    await entered.wait()

    assert orchestrator.cancel(instance_id) is True
    gate.set()
    result = await orchestrator.wait(instance_id)

    assert result.status is InstanceStatus.CANCELLED
    assert result.state.data == {"replaced": True}
    assert orchestrator.get_instance(instance_id).state.data == {"replaced": True}


@pytest.mark.asyncio
async def test_caller_timeout_cancels_instance(orchestrator):
    gate, entered = asyncio.Event(), asyncio.Event()
    orchestrator.register_graph(_gated_graph(gate, entered))

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(orchestrator.start("gated", {}), 0.05)

    assert entered.is_set()
    assert orchestrator.get_active() == []
    record = orchestrator.get_history()[0]
    assert record.status is InstanceStatus.CANCELLED
    assert "passed_gate" not in record.state.data

    stats = orchestrator.get_statistics()
    assert stats.running == 0
    assert stats.cancelled == 1
    _assert_counts_balance(orchestrator)


@pytest.mark.asyncio
async def test_finished_submissions_are_released(orchestrator):
    ids = [orchestrator.submit("linear", {}) for _ in range(20)]
    failing = orchestrator.submit("looping", {})

    await asyncio.gather(*list(orchestrator._tasks.values()), return_exceptions=True)
    await asyncio.sleep(0)

    assert orchestrator._tasks == {}
    result = await orchestrator.wait(ids[0])
    assert result.status is InstanceStatus.COMPLETED
    assert result.state.data == {"count": 3}
    with pytest.raises(WorkflowError, match="exceeded 3 iterations"):
        await orchestrator.wait(failing)


@pytest.mark.asyncio
async def test_history_record_is_a_snapshot(orchestrator):
    state = WorkflowState(data={})
    result = await orchestrator.start("linear", state)

    result.state.data["count"] = 99
    record = orchestrator.get_instance(result.instance_id)
    assert record.state.data["count"] == 3


@pytest.mark.asyncio
async def test_reused_state_runs_on_a_copy(orchestrator):
    first = await orchestrator.start("linear", {})
    second = await orchestrator.start("linear", first.state)

    assert second.instance_id != first.instance_id
    assert second.state.data["count"] == 6
    assert second.state.metadata.total_steps == 3
    assert first.state.data["count"] == 3


@pytest.mark.asyncio
async def test_cancel_running_instance(orchestrator):
    gate, entered = asyncio.Event(), asyncio.Event()
    orchestrator.register_graph(_gated_graph(gate, entered))

    instance_id = orchestrator.submit("gated", {})
    await entered.wait()

    active = orchestrator.get_active()
    assert [summary.instance_id for summary in active] == [instance_id]
    assert orchestrator.get_statistics().running == 1

    assert orchestrator.cancel(instance_id) is True
    assert orchestrator.get_active() == []
    assert orchestrator.get_instance(instance_id).status is InstanceStatus.CANCELLED

    gate.set()
    result = await orchestrator.wait(instance_id)
    assert result.status is InstanceStatus.CANCELLED
    assert "count" not in result.state.data

    stats = orchestrator.get_statistics()
    assert stats.cancelled == 1
    assert stats.running == 0
    assert len(orchestrator.get_history()) == 1
    _assert_counts_balance(orchestrator)


@pytest.mark.asyncio
async def test_cancel_terminal_or_unknown_instance_returns_false(orchestrator):
    result = await orchestrator.start("linear", {})

    assert orchestrator.cancel(result.instance_id) is False
    assert orchestrator.cancel("does-not-exist") is False
    history = orchestrator.get_history()
    assert len(history) == 1
    assert history[0].status is InstanceStatus.COMPLETED


@pytest.mark.asyncio
async def test_history_is_bounded_and_most_recent_first():
    orchestrator = WorkflowOrchestrator(history_limit=3)
    orchestrator.register_graph(_linear_graph())

    ids = [(await orchestrator.start("linear", {})).instance_id for _ in range(5)]

    history = orchestrator.get_history()
    assert [record.instance_id for record in history] == list(reversed(ids[-3:]))
    assert orchestrator.get_history(limit=2)[0].instance_id == ids[-1]
    assert orchestrator.get_instance(ids[0]) is None

    stats = orchestrator.get_statistics()
    assert stats.total == 5
    assert stats.completed == 5


@pytest.mark.asyncio
async def test_statistics_mix_of_outcomes(orchestrator):
    await orchestrator.start("linear", {})
    await orchestrator.start("linear", {})
    with pytest.raises(MaxIterationsExceededError):
        await orchestrator.start("looping", {})

    stats = orchestrator.get_statistics()
    assert stats.total == 3
    assert stats.completed == 2
    assert stats.failed == 1
    assert stats.success_rate == pytest.approx(2 / 3)
    assert stats.per_graph["looping"].failed == 1
    assert stats.per_graph["linear"].average_duration_ms >= 0.0
    assert stats.to_dict()["per_graph"]["linear"]["completed"] == 2


@pytest.mark.asyncio
async def test_concurrent_instances_are_isolated(orchestrator):
    results = await asyncio.gather(
        *(orchestrator.start("linear", {"seed": i}) for i in range(100))
    )

    assert len({result.instance_id for result in results}) == 100
    assert all(result.state.data["count"] == 3 for result in results)
    assert sorted(result.state.data["seed"] for result in results) == list(range(100))
    assert len(orchestrator.get_history(limit=200)) == 100

    stats = orchestrator.get_statistics()
    assert stats.total == 100
    assert stats.completed == 100
    _assert_counts_balance(orchestrator)


@pytest.mark.asyncio
async def test_submit_and_wait(orchestrator):
    instance_id = orchestrator.submit("linear", {})
    result = await orchestrator.wait(instance_id)

    assert result.instance_id == instance_id
    assert result.status is InstanceStatus.COMPLETED

    again = await orchestrator.wait(instance_id)
    assert again.status is InstanceStatus.COMPLETED
    assert again.state.data == result.state.data
    with pytest.raises(KeyError):
        await orchestrator.wait("does-not-exist")


@pytest.mark.asyncio
async def test_wait_reraises_failure(orchestrator):
    instance_id = orchestrator.submit("looping", {})

    with pytest.raises(MaxIterationsExceededError):
        await orchestrator.wait(instance_id)
    assert orchestrator.get_instance(instance_id).status is InstanceStatus.FAILED


@pytest.mark.asyncio
async def test_shutdown_cancels_active_instances(orchestrator):
    gate, entered = asyncio.Event(), asyncio.Event()
    orchestrator.register_graph(_gated_graph(gate, entered))
    instance_id = orchestrator.submit("gated", {})
    await entered.wait()

    shutdown = asyncio.create_task(orchestrator.shutdown())
    await asyncio.sleep(0)
    gate.set()
    await shutdown

    assert orchestrator.get_active() == []
    assert orchestrator.get_instance(instance_id).status is InstanceStatus.CANCELLED
