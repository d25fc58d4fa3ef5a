"""Recursive invocation bridge -- ``run()`` for stage scripts.

A stage script is synchronous code running on a worker thread, while agent
runs are coroutines on the event loop.  ``run(agent_ref, inputs)`` bridges
the two: it submits the nested run to the loop with
``asyncio.run_coroutine_threadsafe`` and blocks the calling worker until the
nested run completes::

    result = run("agent-hello", ["one", "two"])
    result.outputs   # ["hello 'one' from agent-hello", ...]

Hosting contract
----------------

- The calling thread must not be the event-loop thread: blocking it would
  stop the loop that has to execute the nested run.  The executor guarantees
  this by running every script through ``anyio.to_thread``; anything else is
  a misconfiguration and fails fast with ``AsyncBridgeError``.
- Each run owns its own worker-thread limiter, so workers blocked in ``run()``
  never consume the slots their nested runs need.
- Nesting is bounded by ``settings.max_recursion_depth``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from pipewright.agent_runtime.errors import (
    AsyncBridgeError,
    PipelineError,
    RecursionLimitError,
    ScriptExecutionError,
)
from pipewright.agent_runtime.execution.bridge import from_script, to_script

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from pipewright.agent_runtime.context import RunContext
    from pipewright.agent_runtime.models.agent import Agent

logger = logging.getLogger(__name__)


def make_run_helper(ctx: RunContext, caller: Agent) -> Callable[..., Any]:
    """Build the ``run`` function exposed to *caller*'s scripts."""

    def run(agent_ref: str, inputs: list[Any] | None = None) -> Any:
        return run_nested(ctx, agent_ref, inputs, base_dir=caller.base_dir)

    return run


def run_nested(
    ctx: RunContext,
    agent_ref: str,
    inputs: Any = None,
    *,
    base_dir: Path | None = None,
) -> Any:
    """Run *agent_ref* to completion from a worker thread.

    Returns ``{"outputs": [...] | None, "after_all": ...}`` in script form.
    Skipped inputs of the nested run appear as ``None``.  If any nested input
    failed, or the nested before-all or after-all failed, raises
    ``ScriptExecutionError`` naming the nested agent instead of returning a
    partial outcome.
    """
    loop = _usable_loop(ctx)

    if not isinstance(agent_ref, str):
        msg = f"run() agent reference must be a string, got {type(agent_ref).__name__}"
        raise TypeError(msg)

    limit = ctx.settings.max_recursion_depth
    if ctx.depth >= limit:
        msg = f"run('{agent_ref}') exceeds the maximum recursion depth of {limit}"
        raise RecursionLimitError(msg)

    nested_inputs = None
    if inputs is not None:
        if not isinstance(inputs, (list, tuple)):
            msg = f"run() inputs must be a list, got {type(inputs).__name__}"
            raise TypeError(msg)
        nested_inputs = from_script(inputs)

    agent = ctx.registry.get(agent_ref, base_dir=base_dir)

    # Imported here: the executor imports the script runner, which imports us.
    from pipewright.agent_runtime.execution.executor import run_agent

    logger.debug("Nested run of %s at depth %d", agent.name, ctx.depth + 1)
    future = asyncio.run_coroutine_threadsafe(run_agent(ctx.child(), agent, nested_inputs), loop)
    try:
        outcome = future.result()
    except PipelineError as err:
        msg = f"nested run of '{agent.name}' failed at {err.stage}: {type(err).__name__}: {err.message}"
        raise ScriptExecutionError(msg) from err

    failures = outcome.failures
    if failures:
        first = failures[0]
        msg = (
            f"nested run of '{agent.name}' failed for input {first.input_index}"
            f" at {first.stage}: {first.error_type}: {first.message}"
        )
        raise ScriptExecutionError(msg)

    return to_script(outcome.to_value())


def _usable_loop(ctx: RunContext) -> asyncio.AbstractEventLoop:
    """Return the run's loop, or raise ``AsyncBridgeError`` if blocking on it would fail."""
    loop = ctx.loop
    if loop is None:
        msg = "run() needs an event loop, but none is bound to this run"
        raise AsyncBridgeError(msg)
    if loop.is_closed() or not loop.is_running():
        msg = "run() needs a running event loop, but the loop hosting this run has stopped"
        raise AsyncBridgeError(msg)
    if _on_loop_thread(loop):
        msg = "run() was called on the event-loop thread; stage scripts must run on worker threads"
        raise AsyncBridgeError(msg)
    return loop


def _on_loop_thread(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False
