"""Script stage runner -- evaluates one stage body against a scope.

Stage bodies are Python statements executed as the body of a function, so a
script can ``return`` at top level::

    if input.name == "mod.rs":
        return skip("mod.rs does not need to be processed")
    return {"path": input.path, "size": len(input.content)}

Globals visible to every script:

- the stage scope (see table below), converted with ``to_script``
- ``skip``, ``before_all_response``, ``run``: control-flow helpers
- ``agent_name``: name of the running agent
- ``log``: a loguru logger bound to the agent and stage

===========  ==============================================
stage        scope variables
===========  ==============================================
before_all   ``inputs``
data         ``input``, ``before_all``
instruction  ``input``, ``data``, ``before_all``
output       ``input``, ``data``, ``before_all``, ``ai_response``
after_all    ``inputs``, ``outputs``, ``before_all``
===========  ==============================================

The instruction stage may instead be a Jinja2 template rendered with the same
variables; it produces a string payload.

Scripts are trusted code (they come from the user's own agent files); this is
an embedding, not a sandbox.  They run synchronously on anyio worker
threads, never on the event-loop thread -- ``run()`` depends on that.
"""

from __future__ import annotations

import ast
import asyncio
import logging
from functools import lru_cache, partial
from typing import TYPE_CHECKING, Any

import jinja2
from anyio import to_thread
from loguru import logger

from pipewright.agent_runtime.errors import PipelineError, ScriptExecutionError
from pipewright.agent_runtime.execution.bridge import from_script, to_script
from pipewright.agent_runtime.execution.invoke import make_run_helper
from pipewright.agent_runtime.execution.signals import before_all_response, skip
from pipewright.agent_runtime.models.enums import ScriptKind

if TYPE_CHECKING:
    from types import CodeType

    from anyio import CapacityLimiter

    from pipewright.agent_runtime.context import RunContext
    from pipewright.agent_runtime.models.agent import Agent, StageScript
    from pipewright.agent_runtime.models.enums import StageName

_log = logging.getLogger(__name__)

_ENTRY = "__stage__"

_jinja_env = jinja2.Environment(autoescape=False)  # noqa: S701


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


@lru_cache(maxsize=256)
def compile_stage(source: str, filename: str) -> CodeType:
    """Compile a stage body into a module defining ``__stage__()``.

    Line numbers in tracebacks match the stage source.
    Raises ``ScriptExecutionError`` on syntax errors.
    """
    try:
        body = ast.parse(source, filename=filename, mode="exec").body
        module = ast.parse(f"def {_ENTRY}():\n    pass\n", filename=filename)
        if body:
            module.body[0].body = body
        return compile(module, filename, "exec")
    except (SyntaxError, ValueError) as exc:
        line = getattr(exc, "lineno", None)
        where = f" at line {line}" if line else ""
        msg = f"cannot compile {filename}{where}: {getattr(exc, 'msg', exc)}"
        raise ScriptExecutionError(msg) from exc


@lru_cache(maxsize=256)
def compile_template(source: str) -> jinja2.Template:
    """Compile an instruction template.  Raises ``ScriptExecutionError``."""
    try:
        return _jinja_env.from_string(source)
    except jinja2.TemplateSyntaxError as exc:
        msg = f"cannot compile template at line {exc.lineno}: {exc.message}"
        raise ScriptExecutionError(msg) from exc


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class ScriptRunner:
    """Executes the stage bodies of one agent within one run.

    ``run`` is the async entry point used by the executor: it moves the
    evaluation to a worker thread, bounded by *limiter*.  ``run_sync``
    evaluates in the calling thread.
    """

    def __init__(self, ctx: RunContext, agent: Agent, limiter: CapacityLimiter | None = None) -> None:
        self.ctx = ctx
        self.agent = agent
        self._limiter = limiter

    async def run(self, stage: StageName, scope: dict[str, Any]) -> Any:
        """Evaluate *stage* on a worker thread and return its host value."""
        return await to_thread.run_sync(partial(self.run_sync, stage, scope), limiter=self._limiter)

    def run_sync(self, stage: StageName, scope: dict[str, Any]) -> Any:
        """Evaluate *stage* in the current thread and return its host value.

        Script failures, including ``SystemExit``, are raised as
        ``ScriptExecutionError``; pipeline errors raised by helpers keep their
        own type.  Both are tagged with *stage*.
        """
        script = self.agent.stage(stage)
        if script is None:
            msg = f"agent '{self.agent.name}' has no {stage} stage"
            raise ScriptExecutionError(msg, stage=stage)

        try:
            if script.kind == ScriptKind.TEMPLATE:
                return self._render(script, scope)
            raw = self._execute(stage, script, scope)
            return from_script(raw, stage)
        except PipelineError as err:
            err.at(stage)
            raise
        except (KeyboardInterrupt, asyncio.CancelledError):
            raise
        except BaseException as exc:
            # SystemExit and GeneratorExit from script code end only this input.
            msg = f"{type(exc).__name__}: {exc}"
            raise ScriptExecutionError(msg, stage=stage) from exc

    # -- Evaluation ------------------------------------------------------------

    def _execute(self, stage: StageName, script: StageScript, scope: dict[str, Any]) -> Any:
        code = compile_stage(script.source, self.filename(stage))
        namespace = self._namespace(stage, scope)
        exec(code, namespace)  # noqa: S102
        _log.debug("Running %s stage of %s", stage, self.agent.name)
        return namespace[_ENTRY]()

    def _render(self, script: StageScript, scope: dict[str, Any]) -> str:
        template = compile_template(script.source)
        return template.render(**scope)

    def _namespace(self, stage: StageName, scope: dict[str, Any]) -> dict[str, Any]:
        namespace: dict[str, Any] = {
            "__name__": f"pipewright.stage.{stage}",
            "skip": skip,
            "before_all_response": before_all_response,
            "run": make_run_helper(self.ctx, self.agent),
            "agent_name": self.agent.name,
            "log": logger.bind(agent=self.agent.name, stage=str(stage)),
        }
        for name, value in scope.items():
            namespace[name] = to_script(value, stage)
        return namespace

    def filename(self, stage: StageName) -> str:
        """Pseudo filename used in tracebacks, e.g. ``<agent-hello:data>``."""
        return f"<{self.agent.name}:{stage}>"
