"""Run progress event model.

Events are emitted through ``RunContext.emit`` to whatever sink the caller
installed (the CLI prints them to stderr).  They are informational only;
nothing in the executor depends on them being consumed.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from pipewright.agent_runtime.models.enums import EventType, StageName


class RunEvent(BaseModel):
    """A single progress notification."""

    event_type: EventType
    agent_name: str
    depth: int = 0
    input_index: int | None = None
    stage: StageName | None = None
    message: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)

    def describe(self) -> str:
        """One-line human rendering."""
        parts = [f"[{self.agent_name}]"]
        if self.depth:
            parts.append(f"(depth {self.depth})")
        parts.append(str(self.event_type))
        if self.input_index is not None:
            parts.append(f"#{self.input_index}")
        if self.stage is not None:
            parts.append(f"at {self.stage}")
        if self.message:
            parts.append(f"- {self.message}")
        return " ".join(parts)
