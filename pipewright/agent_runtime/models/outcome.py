"""Run results.

Plain dataclasses: these live only for the duration of a run and are never
persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pipewright.agent_runtime.models.enums import StageName

if TYPE_CHECKING:
    from pipewright.agent_runtime.errors import PipelineError


@dataclass(frozen=True)
class Skipped:
    """Output slot of an input excluded by a ``skip()`` signal."""

    reason: str | None = None
    stage: StageName = StageName.DATA


@dataclass(frozen=True)
class StageFailure:
    """Output slot of an input whose pipeline aborted with an error."""

    stage: StageName | None
    input_index: int | None
    error_type: str
    message: str
    error: PipelineError | None = field(default=None, compare=False, repr=False)

    @classmethod
    def from_error(cls, err: PipelineError) -> StageFailure:
        return cls(
            stage=err.stage,
            input_index=err.input_index,
            error_type=type(err).__name__,
            message=err.message,
            error=err,
        )


def slot_value(slot: Any) -> Any:
    """Collapse an output slot to a plain value (markers become ``None``)."""
    if isinstance(slot, (Skipped, StageFailure)):
        return None
    return slot


@dataclass
class RunOutcome:
    """Aggregate result of one run.

    ``outputs[i]`` always corresponds to ``inputs[i]``; each slot is a plain
    value, ``Skipped`` or ``StageFailure``.  ``outputs`` is ``None`` when the
    caller asked the executor not to retain per-input outputs.
    """

    agent_name: str
    inputs: list[Any]
    outputs: list[Any] | None
    after_all: Any = None

    @property
    def skipped(self) -> list[tuple[int, Skipped]]:
        return [(i, s) for i, s in enumerate(self.outputs or []) if isinstance(s, Skipped)]

    @property
    def failures(self) -> list[StageFailure]:
        return [s for s in self.outputs or [] if isinstance(s, StageFailure)]

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_value(self) -> dict[str, Any]:
        """Host-value form: ``{"outputs": [...] | None, "after_all": ...}``."""
        outputs = [slot_value(s) for s in self.outputs] if self.outputs is not None else None
        return {"outputs": outputs, "after_all": self.after_all}

    def to_report(self) -> dict[str, Any]:
        """JSON-ready report that keeps skip reasons and failures visible."""
        return {
            "agent": self.agent_name,
            "outputs": [_report_slot(s) for s in self.outputs] if self.outputs is not None else None,
            "after_all": self.after_all,
        }


@dataclass
class SoloOutcome:
    """Result of a solo run: one target, one optional output."""

    agent_name: str
    target: str
    output: Any = None
    skipped: Skipped | None = None
    after_all: Any = None

    def to_report(self) -> dict[str, Any]:
        report: dict[str, Any] = {"agent": self.agent_name, "target": self.target, "output": self.output}
        if self.skipped is not None:
            report["skipped"] = {"reason": self.skipped.reason}
        report["after_all"] = self.after_all
        return report


def _report_slot(slot: Any) -> Any:
    if isinstance(slot, Skipped):
        return {"skipped": {"reason": slot.reason, "stage": str(slot.stage)}}
    if isinstance(slot, StageFailure):
        return {
            "failed": {
                "stage": str(slot.stage) if slot.stage else None,
                "error": slot.error_type,
                "message": slot.message,
            }
        }
    return slot
