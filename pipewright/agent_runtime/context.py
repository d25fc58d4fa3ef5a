"""Run context.

``RunContext`` is the read-mostly state shared by every component of one
top-level run and all the nested runs it spawns: settings, the agent
registry, the call transport, the event sink, and a handle to the event loop
that hosts the run.

The context is never mutated.  Nested invocations get a *child* context
(``depth + 1``) so concurrent sibling invocations cannot disturb each other's
depth accounting, and the loop handle is bound once when the top-level run
starts.  Stage-script helpers close over the context they were created with.
"""

from __future__ import annotations

import asyncio
import dataclasses
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from pipewright.agent_runtime.models.enums import EventType
from pipewright.agent_runtime.models.events import RunEvent

if TYPE_CHECKING:
    from collections.abc import Callable

    from pipewright.agent_runtime.execution.call import CallTransport
    from pipewright.agent_runtime.models.enums import StageName
    from pipewright.agent_runtime.registry import AgentRegistry
    from pipewright.agent_runtime.settings import PipewrightSettings


@dataclass(frozen=True)
class RunContext:
    """Shared state for one run tree."""

    # -- Collaborators ---------------------------------------------------------
    settings: PipewrightSettings
    registry: AgentRegistry
    transport: CallTransport

    # -- Observation -----------------------------------------------------------
    event_sink: Callable[[RunEvent], None] | None = None

    # -- Scheduler -------------------------------------------------------------
    loop: asyncio.AbstractEventLoop | None = None
    """Event loop hosting the run.  Bound by the executor at run start."""

    # -- Recursion -------------------------------------------------------------
    depth: int = 0
    """Nesting level: 0 for a top-level run, +1 per ``run()`` from a script."""

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> RunContext:
        """Return a copy bound to *loop* (no-op if already bound to it)."""
        if self.loop is loop:
            return self
        return dataclasses.replace(self, loop=loop)

    def child(self) -> RunContext:
        """Context for a nested run, one level deeper."""
        return dataclasses.replace(self, depth=self.depth + 1)

    def emit(
        self,
        event_type: EventType,
        agent_name: str,
        *,
        input_index: int | None = None,
        stage: StageName | None = None,
        message: str | None = None,
    ) -> None:
        """Deliver a progress event to the sink, if one is installed.

        A failing sink is logged and otherwise ignored: progress reporting must
        not change the outcome of a run.
        """
        if self.event_sink is None:
            return
        event = RunEvent(
            event_type=event_type,
            agent_name=agent_name,
            depth=self.depth,
            input_index=input_index,
            stage=stage,
            message=message,
        )
        try:
            self.event_sink(event)
        except Exception:
            logger.opt(exception=True).warning("Event sink failed on {}", event_type)


def create_run_context(
    settings: PipewrightSettings | None = None,
    *,
    registry: AgentRegistry | None = None,
    transport: CallTransport | None = None,
    event_sink: Callable[[RunEvent], None] | None = None,
) -> RunContext:
    """Build a top-level context with defaults taken from *settings*.

    - registry: file-backed, rooted at ``settings.workspace_root``
    - transport: pydantic-ai ``ModelTransport`` using ``settings.default_model``

    The loop handle is left unbound; ``run_agent`` binds it.
    """
    from pipewright.agent_runtime.execution.call import ModelTransport
    from pipewright.agent_runtime.execution.resolver import AgentLocator
    from pipewright.agent_runtime.registry import AgentRegistry
    from pipewright.agent_runtime.settings import get_settings

    settings = settings or get_settings()
    if registry is None:
        registry = AgentRegistry(
            AgentLocator.from_settings(settings),
            require_instruction=settings.require_instruction,
        )
    if transport is None:
        transport = ModelTransport(default_model=settings.default_model)
    return RunContext(settings=settings, registry=registry, transport=transport, event_sink=event_sink)
