"""Tests for recursive invocation: ``run()`` from inside stage scripts."""

from __future__ import annotations

import asyncio
import dataclasses
import textwrap
from pathlib import Path

import pytest

from pipewright.agent_runtime.context import RunContext
from pipewright.agent_runtime.errors import AsyncBridgeError, RecursionLimitError
from pipewright.agent_runtime.execution.executor import run_agent
from pipewright.agent_runtime.execution.invoke import run_nested
from pipewright.agent_runtime.execution.script import ScriptRunner
from pipewright.agent_runtime.models.agent import Agent, AgentOptions
from pipewright.agent_runtime.models.enums import StageName
from pipewright.agent_runtime.models.outcome import StageFailure
from pipewright.agent_runtime.registry import AgentRegistry

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _agent(name: str, options: AgentOptions | None = None, **stages: str) -> Agent:
    bodies = {k: textwrap.dedent(v).strip("\n") for k, v in stages.items()}
    return Agent(name=name, stages=bodies, options=options or AgentOptions())


HELLO = _agent("agent-hello", data="return f\"hello '{input}' from {agent_name}\"")


@pytest.fixture
def hello(registry: AgentRegistry) -> Agent:
    registry.register(HELLO)
    return HELLO


# ---------------------------------------------------------------------------
# Round trips
# ---------------------------------------------------------------------------


async def test_nested_run_returns_outputs(ctx: RunContext, hello: Agent) -> None:
    caller = _agent("caller", data="return run('agent-hello', input).outputs")
    outcome = await run_agent(ctx, caller, [["one", "two"]])
    assert outcome.outputs == [["hello 'one' from agent-hello", "hello 'two' from agent-hello"]]


async def test_nested_run_result_shape(ctx: RunContext, registry: AgentRegistry) -> None:
    registry.register(_agent("summer", data="return input * 2", after_all="return {'total': sum(outputs)}"))
    caller = _agent(
        "caller",
        data="""
        result = run("summer", [1, 2, 3])
        return {"keys": sorted(result), "outputs": result.outputs, "total": result.after_all.total}
        """,
    )
    outcome = await run_agent(ctx, caller, [None])
    assert outcome.outputs == [{"keys": ["after_all", "outputs"], "outputs": [2, 4, 6], "total": 12}]


async def test_nested_run_without_inputs(ctx: RunContext, registry: AgentRegistry) -> None:
    registry.register(_agent("constant", data="return input is None"))
    caller = _agent("caller", data="return run('constant').outputs")
    outcome = await run_agent(ctx, caller, [1])
    assert outcome.outputs == [[True]]


async def test_nested_maps_round_trip(ctx: RunContext, registry: AgentRegistry) -> None:
    registry.register(_agent("identity", data="return input"))
    caller = _agent(
        "caller",
        data="""
        value = {"a": {"b": [1, 2.5, None, True]}, "s": "x"}
        return run("identity", [value]).outputs[0] == value
        """,
    )
    outcome = await run_agent(ctx, caller, [None])
    assert outcome.outputs == [True]


async def test_nested_skips_appear_as_none(ctx: RunContext, registry: AgentRegistry) -> None:
    registry.register(_agent("odd-only", data="return input if input % 2 else skip('even')"))
    caller = _agent("caller", data="return run('odd-only', [1, 2, 3]).outputs")
    outcome = await run_agent(ctx, caller, [None])
    assert outcome.outputs == [[1, None, 3]]


async def test_nested_run_from_before_all_and_after_all(ctx: RunContext, hello: Agent) -> None:
    caller = _agent(
        "caller",
        before_all="return before_all_response({'inputs': run('agent-hello', ['a', 'b']).outputs})",
        after_all="return run('agent-hello', [len(outputs)]).outputs[0]",
    )
    outcome = await run_agent(ctx, caller)
    assert outcome.outputs == ["hello 'a' from agent-hello", "hello 'b' from agent-hello"]
    assert outcome.after_all == "hello '2' from agent-hello"


async def test_nested_agent_loaded_from_file(ctx: RunContext, agents_dir: Path) -> None:
    (agents_dir / "shout.yaml").write_text("stages:\n  data: return input.upper()\n")
    caller = _agent("caller", data="return run('shout', [input]).outputs[0]")
    outcome = await run_agent(ctx, caller, ["hi"])
    assert outcome.outputs == ["HI"]


async def test_concurrent_nested_runs_do_not_starve(ctx: RunContext, hello: Agent) -> None:
    ctx = dataclasses.replace(ctx, settings=ctx.settings.model_copy(update={"max_concurrency": 1}))
    caller = _agent("caller", options=AgentOptions(concurrency=2), data="return run('agent-hello', [input]).outputs[0]")
    outcome = await run_agent(ctx, caller, list(range(5)))
    assert outcome.outputs == [f"hello '{i}' from agent-hello" for i in range(5)]


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


async def test_unknown_agent_fails_input(ctx: RunContext) -> None:
    caller = _agent("caller", data="return run('no-such-agent', [1])")
    outcome = await run_agent(ctx, caller, [None])
    failure = outcome.outputs[0]
    assert isinstance(failure, StageFailure)
    assert failure.error_type == "AgentNotFoundError"
    assert failure.stage == StageName.DATA
    assert "no-such-agent" in failure.message


async def test_nested_input_failure_raises_in_caller(ctx: RunContext, registry: AgentRegistry) -> None:
    registry.register(_agent("fragile", data="return 10 // input"))
    caller = _agent("caller", data="return run('fragile', [5, 0]).outputs")
    outcome = await run_agent(ctx, caller, [None])
    failure = outcome.outputs[0]
    assert failure.error_type == "ScriptExecutionError"
    assert "nested run of 'fragile' failed for input 1" in failure.message
    assert "ZeroDivisionError" in failure.message


async def test_nested_failure_can_be_handled_by_script(ctx: RunContext, registry: AgentRegistry) -> None:
    registry.register(_agent("fragile", data="return 10 // input"))
    caller = _agent(
        "caller",
        data="""
        try:
            return run("fragile", [input]).outputs[0]
        except Exception as exc:
            return type(exc).__name__
        """,
    )
    outcome = await run_agent(ctx, caller, [2, 0])
    assert outcome.outputs == [5, "ScriptExecutionError"]


async def test_inputs_must_be_a_list(ctx: RunContext, hello: Agent) -> None:
    caller = _agent("caller", data="return run('agent-hello', 'one')")
    outcome = await run_agent(ctx, caller, [None])
    assert outcome.outputs[0].error_type == "ScriptExecutionError"
    assert "must be a list" in outcome.outputs[0].message


async def test_recursion_within_limit(ctx: RunContext, registry: AgentRegistry) -> None:
    ctx = dataclasses.replace(ctx, settings=ctx.settings.model_copy(update={"max_recursion_depth": 2}))
    registry.register(
        _agent(
            "countdown",
            data="""
            if input == 0:
                return 0
            return run("countdown", [input - 1]).outputs[0] + 1
            """,
        )
    )
    outcome = await run_agent(ctx, registry.get("countdown"), [2])
    assert outcome.outputs == [2]


async def test_recursion_beyond_limit(ctx: RunContext, registry: AgentRegistry) -> None:
    ctx = dataclasses.replace(ctx, settings=ctx.settings.model_copy(update={"max_recursion_depth": 2}))
    registry.register(_agent("forever", data="return run('forever', [input]).outputs[0]"))
    outcome = await run_agent(ctx, registry.get("forever"), [1])
    failure = outcome.outputs[0]
    assert isinstance(failure, StageFailure)
    assert "RecursionLimitError" in failure.message


async def test_recursion_disabled(ctx: RunContext, hello: Agent) -> None:
    ctx = dataclasses.replace(ctx, settings=ctx.settings.model_copy(update={"max_recursion_depth": 0}))
    caller = _agent("caller", data="return run('agent-hello', [1])")
    outcome = await run_agent(ctx, caller, [None])
    assert outcome.outputs[0].error_type == "RecursionLimitError"


# ---------------------------------------------------------------------------
# Hosting misconfiguration
# ---------------------------------------------------------------------------


def test_run_without_loop(ctx: RunContext, hello: Agent) -> None:
    with pytest.raises(AsyncBridgeError, match="none is bound"):
        run_nested(ctx, "agent-hello", ["one"])


def test_run_with_stopped_loop(ctx: RunContext, hello: Agent) -> None:
    loop = asyncio.new_event_loop()
    try:
        with pytest.raises(AsyncBridgeError, match="stopped"):
            run_nested(ctx.bind_loop(loop), "agent-hello", ["one"])
    finally:
        loop.close()


async def test_run_on_loop_thread(ctx: RunContext, hello: Agent) -> None:
    ctx = ctx.bind_loop(asyncio.get_running_loop())
    caller = _agent("caller", data="return run('agent-hello', ['one'])")
    with pytest.raises(AsyncBridgeError, match="event-loop thread") as exc_info:
        ScriptRunner(ctx, caller).run_sync(StageName.DATA, {"input": None, "before_all": None})
    assert exc_info.value.stage == StageName.DATA


def test_child_context_depth(ctx: RunContext) -> None:
    assert ctx.depth == 0
    assert ctx.child().child().depth == 2
    assert ctx.depth == 0


async def test_recursion_limit_error_type(ctx: RunContext) -> None:
    ctx = dataclasses.replace(ctx, depth=ctx.settings.max_recursion_depth)
    ctx = ctx.bind_loop(asyncio.get_running_loop())

    def _call() -> None:
        run_nested(ctx, "anything")

    with pytest.raises(RecursionLimitError):
        await asyncio.to_thread(_call)


async def test_nested_run_scoped_failure_names_nested_agent(ctx: RunContext, registry: AgentRegistry) -> None:
    registry.register(_agent("broken", after_all="return skip()"))
    caller = _agent("caller", data="return run('broken', [1])")
    outcome = await run_agent(ctx, caller, [None])
    failure = outcome.outputs[0]
    assert failure.error_type == "ScriptExecutionError"
    assert failure.stage == StageName.DATA
    assert failure.input_index == 0
    assert "nested run of 'broken' failed at after_all: ControlSignalMalformedError" in failure.message
    assert failure.error.__cause__.stage == StageName.AFTER_ALL
