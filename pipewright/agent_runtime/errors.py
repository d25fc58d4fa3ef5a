"""Exception taxonomy for agent runs.

Every failure raised by the pipeline derives from ``PipelineError`` and
carries the stage (and, for per-input stages, the input index) that produced
it.  The executor fills both in as the error travels outward, so the code that
detects a problem only needs to describe it.
"""

from __future__ import annotations

from typing import Self

from pipewright.agent_runtime.models.enums import StageName


class PipelineError(Exception):
    """Base class for all run failures."""

    def __init__(
        self,
        message: str,
        *,
        stage: StageName | None = None,
        input_index: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.input_index = input_index

    def at(self, stage: StageName | None = None, input_index: int | None = None) -> Self:
        """Tag the error with its origin.  Already-set fields are kept."""
        if self.stage is None:
            self.stage = stage
        if self.input_index is None:
            self.input_index = input_index
        return self

    def __str__(self) -> str:
        where = []
        if self.stage is not None:
            where.append(f"stage={self.stage}")
        if self.input_index is not None:
            where.append(f"input={self.input_index}")
        if not where:
            return self.message
        return f"{self.message} ({', '.join(where)})"


class AgentNotFoundError(PipelineError, LookupError):
    """An agent reference did not resolve to a registered agent or a file."""

    def __init__(self, agent_ref: str) -> None:
        super().__init__(f"Agent '{agent_ref}' not found")
        self.agent_ref = agent_ref


class AgentDefinitionError(PipelineError, ValueError):
    """An agent file was found but could not be turned into an ``Agent``."""


class ScriptExecutionError(PipelineError):
    """A stage script failed to compile or raised while running."""


class SerializationError(PipelineError):
    """A value could not cross the host/script boundary without loss."""


class ControlSignalMalformedError(PipelineError):
    """The reserved signal shape is invalid, or used in a stage that forbids it."""


class AsyncBridgeError(PipelineError):
    """A nested ``run()`` was attempted without a usable event loop.

    This indicates a hosting misconfiguration (for example, a stage script
    executing on the event-loop thread itself).
    """


class RecursionLimitError(PipelineError):
    """Nested ``run()`` calls exceeded ``max_recursion_depth``."""


class CallError(PipelineError):
    """The call transport failed or timed out."""
