"""Pipeline executor -- drives an agent through its stages.

State machine for one run::

    BeforeAll -> PerInput(Data -> Instruction -> Call -> Output) -> AfterAll -> Done
                 (one per input, concurrently, bounded)

1. **BeforeAll** runs once, before any input starts.  A
   ``before_all_response`` signal replaces the input set and/or sets the
   shared ``before_all`` data; a plain non-null result becomes the shared data.
2. **PerInput** runs independently for every input of the effective set:
   - ``skip()`` from data or instruction ends the input before the call;
   - the call stage runs only when an instruction produced a payload;
   - ``skip()`` from output marks the input skipped after the call happened.
   A failure ends only that input; its slot records the failure.
3. **AfterAll** runs once every input is terminal, with all outputs visible.

Outputs are stored by input index, so ``outputs[i]`` belongs to
``inputs[i]`` whatever order the inputs finish in.  Before-all and after-all
failures abort the run and are raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import anyio

from pipewright.agent_runtime.errors import CallError, ControlSignalMalformedError, PipelineError
from pipewright.agent_runtime.execution.bridge import from_script
from pipewright.agent_runtime.execution.script import ScriptRunner
from pipewright.agent_runtime.execution.signals import BeforeAllResponse, Plain, Skip, StageResult, decode_signal
from pipewright.agent_runtime.models.enums import EventType, StageName
from pipewright.agent_runtime.models.outcome import RunOutcome, Skipped, StageFailure, slot_value

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pipewright.agent_runtime.context import RunContext
    from pipewright.agent_runtime.models.agent import Agent

logger = logging.getLogger(__name__)


async def run_agent(
    ctx: RunContext,
    agent: Agent,
    inputs: Sequence[Any] | None = None,
    *,
    return_outputs: bool = True,
) -> RunOutcome:
    """Run *agent* over *inputs* and return the outcome.

    ``inputs=None`` means a single implicit ``None`` input (unless before-all
    supplies inputs).  With ``return_outputs=False`` the outcome's ``outputs``
    is ``None``; after-all still sees every output.
    """
    ctx = ctx.bind_loop(asyncio.get_running_loop())
    executor = PipelineExecutor(ctx, agent)
    return await executor.execute(inputs, return_outputs=return_outputs)


class PipelineExecutor:
    """Executes one agent for one run.  Not reusable across runs."""

    def __init__(self, ctx: RunContext, agent: Agent) -> None:
        self.ctx = ctx
        self.agent = agent
        self.concurrency = agent.options.concurrency or ctx.settings.max_concurrency
        self._input_limiter = anyio.CapacityLimiter(self.concurrency)
        self.scripts = ScriptRunner(ctx, agent, anyio.CapacityLimiter(self.concurrency))

    async def execute(self, inputs: Sequence[Any] | None, *, return_outputs: bool = True) -> RunOutcome:
        agent = self.agent
        initial = list(inputs) if inputs is not None else [None]
        logger.info(
            "Run %s started: %d input(s), depth=%d, concurrency=%d",
            agent.name,
            len(initial),
            self.ctx.depth,
            self.concurrency,
        )
        self._emit(EventType.RUN_STARTED, message=f"{len(initial)} input(s)")

        try:
            effective, shared = await self._before_all(initial)
            outputs = await self._run_inputs(effective, shared)
            after_all = await self._after_all(effective, outputs, shared)
        except PipelineError as err:
            logger.error("Run %s failed: %s", agent.name, err)
            self._emit(EventType.RUN_FAILED, stage=err.stage, message=str(err))
            raise

        outcome = RunOutcome(
            agent_name=agent.name,
            inputs=effective,
            outputs=outputs if return_outputs else None,
            after_all=after_all,
        )
        skipped = sum(isinstance(s, Skipped) for s in outputs)
        failed = sum(isinstance(s, StageFailure) for s in outputs)
        logger.info(
            "Run %s completed: %d input(s), %d skipped, %d failed",
            agent.name,
            len(outputs),
            skipped,
            failed,
        )
        self._emit(EventType.RUN_COMPLETED, message=f"{len(outputs)} input(s), {skipped} skipped, {failed} failed")
        return outcome

    # -- Run-scoped stages -----------------------------------------------------

    async def _before_all(self, inputs: list[Any]) -> tuple[list[Any], Any]:
        """Run before-all; return the effective inputs and the shared data."""
        if not self.agent.has_stage(StageName.BEFORE_ALL):
            return inputs, None

        raw = await self.scripts.run(StageName.BEFORE_ALL, {"inputs": inputs})
        shared = None
        match self._decode(raw, StageName.BEFORE_ALL):
            case BeforeAllResponse(inputs=override, before_all=data, has_before_all=has_data):
                if override is not None:
                    logger.debug(
                        "Before-all of %s replaced inputs (%d -> %d)",
                        self.agent.name,
                        len(inputs),
                        len(override),
                    )
                    inputs = override
                if has_data:
                    shared = data
            case Plain(value=value):
                shared = value

        self._emit(EventType.BEFORE_ALL_COMPLETED, stage=StageName.BEFORE_ALL)
        return inputs, shared

    async def _after_all(self, inputs: list[Any], outputs: list[Any], shared: Any) -> Any:
        if not self.agent.has_stage(StageName.AFTER_ALL):
            return None

        scope = {
            "inputs": inputs,
            "outputs": [slot_value(s) for s in outputs],
            "before_all": shared,
        }
        raw = await self.scripts.run(StageName.AFTER_ALL, scope)
        result = self._decode(raw, StageName.AFTER_ALL)
        self._emit(EventType.AFTER_ALL_COMPLETED, stage=StageName.AFTER_ALL)
        return result.value

    # -- Per-input pipelines ---------------------------------------------------

    async def _run_inputs(self, inputs: list[Any], shared: Any) -> list[Any]:
        outputs: list[Any] = [None] * len(inputs)

        async def _worker(index: int, value: Any) -> None:
            async with self._input_limiter:
                outputs[index] = await self._run_input(index, value, shared)

        async with anyio.create_task_group() as tg:
            for index, value in enumerate(inputs):
                tg.start_soon(_worker, index, value)
        return outputs

    async def _run_input(self, index: int, value: Any, shared: Any) -> Any:
        """Run one input's pipeline; always returns a slot, never raises pipeline errors."""
        self._emit(EventType.INPUT_STARTED, input_index=index)
        try:
            slot = await self._pipeline(index, value, shared)
        except PipelineError as err:
            err.at(input_index=index)
            logger.warning("Input %d of %s failed: %s", index, self.agent.name, err)
            self._emit(EventType.INPUT_FAILED, input_index=index, stage=err.stage, message=err.message)
            return StageFailure.from_error(err)

        if isinstance(slot, Skipped):
            logger.info("Input %d of %s skipped at %s: %s", index, self.agent.name, slot.stage, slot.reason)
            self._emit(EventType.INPUT_SKIPPED, input_index=index, stage=slot.stage, message=slot.reason)
        else:
            self._emit(EventType.INPUT_COMPLETED, input_index=index)
        return slot

    async def _pipeline(self, index: int, value: Any, shared: Any) -> Any:
        agent = self.agent
        scope: dict[str, Any] = {"input": value, "before_all": shared}

        # -- Data ------------------------------------------------------------------
        data = value
        if agent.has_stage(StageName.DATA):
            result = self._decode(await self.scripts.run(StageName.DATA, scope), StageName.DATA)
            if isinstance(result, Skip):
                return Skipped(reason=result.reason, stage=StageName.DATA)
            data = result.value
        scope["data"] = data

        # -- Instruction + Call ----------------------------------------------------
        ai_response = None
        called = False
        if agent.has_stage(StageName.INSTRUCTION):
            result = self._decode(await self.scripts.run(StageName.INSTRUCTION, scope), StageName.INSTRUCTION)
            if isinstance(result, Skip):
                return Skipped(reason=result.reason, stage=StageName.INSTRUCTION)
            if _has_payload(result.value):
                ai_response = await self._call(index, result.value)
                called = True
        scope["ai_response"] = ai_response

        # -- Output ----------------------------------------------------------------
        if agent.has_stage(StageName.OUTPUT):
            result = self._decode(await self.scripts.run(StageName.OUTPUT, scope), StageName.OUTPUT)
            if isinstance(result, Skip):
                return Skipped(reason=result.reason, stage=StageName.OUTPUT)
            return result.value

        return ai_response if called else data

    async def _call(self, index: int, payload: Any) -> Any:
        """Invoke the call transport.  Every failure becomes a ``CallError``."""
        self._emit(EventType.CALL_STARTED, input_index=index, stage=StageName.CALL)
        timeout = self.ctx.settings.call_timeout
        try:
            with anyio.fail_after(timeout):
                response = await self.ctx.transport.invoke(payload, self.agent.options)
        except TimeoutError as exc:
            msg = f"no response within {timeout}s"
            raise CallError(msg, stage=StageName.CALL) from exc
        except PipelineError as err:
            err.at(StageName.CALL)
            raise
        except Exception as exc:
            msg = f"{type(exc).__name__}: {exc}"
            raise CallError(msg, stage=StageName.CALL) from exc
        return from_script(response, StageName.CALL)

    # -- Helpers ---------------------------------------------------------------

    def _decode(self, raw: Any, stage: StageName) -> StageResult:
        """Decode *raw* and reject signals that *stage* does not permit."""
        result = decode_signal(raw, stage)
        if isinstance(result, BeforeAllResponse) and stage != StageName.BEFORE_ALL:
            msg = "before_all_response() is only allowed in the before_all stage"
            raise ControlSignalMalformedError(msg, stage=stage)
        if isinstance(result, Skip) and stage.is_run_scoped:
            msg = f"skip() is not allowed in the {stage} stage"
            raise ControlSignalMalformedError(msg, stage=stage)
        return result

    def _emit(self, event_type: EventType, **kwargs: Any) -> None:
        self.ctx.emit(event_type, self.agent.name, **kwargs)


def _has_payload(payload: Any) -> bool:
    """An instruction of ``None`` or blank text means "no call"."""
    if payload is None:
        return False
    return not (isinstance(payload, str) and not payload.strip())
