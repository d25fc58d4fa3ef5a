"""Shared enumerations used across the agent runtime."""

from __future__ import annotations

from enum import StrEnum

# -- Stages ------------------------------------------------------------------


class StageName(StrEnum):
    """Pipeline stages, in execution order."""

    BEFORE_ALL = "before_all"
    DATA = "data"
    INSTRUCTION = "instruction"
    CALL = "call"
    OUTPUT = "output"
    AFTER_ALL = "after_all"

    @property
    def is_run_scoped(self) -> bool:
        return self in (StageName.BEFORE_ALL, StageName.AFTER_ALL)


SCRIPTED_STAGES = (
    StageName.BEFORE_ALL,
    StageName.DATA,
    StageName.INSTRUCTION,
    StageName.OUTPUT,
    StageName.AFTER_ALL,
)
"""Stages an agent can define a body for.  The call stage is the transport."""


class ScriptKind(StrEnum):
    """How a stage body is evaluated."""

    SCRIPT = "script"
    TEMPLATE = "template"


# -- Signals -----------------------------------------------------------------


class SignalKind(StrEnum):
    """``kind`` values accepted inside the reserved control-signal shape."""

    SKIP = "Skip"
    BEFORE_ALL_RESPONSE = "BeforeAllResponse"


# -- Events ------------------------------------------------------------------


class EventType(StrEnum):
    """Progress events emitted during a run."""

    # Lifecycle
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"

    # Run-scoped stages
    BEFORE_ALL_COMPLETED = "before_all_completed"
    AFTER_ALL_COMPLETED = "after_all_completed"

    # Per input
    INPUT_STARTED = "input_started"
    INPUT_SKIPPED = "input_skipped"
    INPUT_FAILED = "input_failed"
    INPUT_COMPLETED = "input_completed"
    CALL_STARTED = "call_started"
