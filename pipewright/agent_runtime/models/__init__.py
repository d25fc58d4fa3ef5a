"""Data models for the agent runtime."""

from pipewright.agent_runtime.models.agent import Agent, AgentOptions, StageScript
from pipewright.agent_runtime.models.enums import EventType, ScriptKind, SignalKind, StageName
from pipewright.agent_runtime.models.events import RunEvent
from pipewright.agent_runtime.models.outcome import RunOutcome, Skipped, SoloOutcome, StageFailure

__all__ = [
    # Agent
    "Agent",
    "AgentOptions",
    # Enums
    "EventType",
    # Events
    "RunEvent",
    # Outcome
    "RunOutcome",
    "ScriptKind",
    "SignalKind",
    "Skipped",
    "SoloOutcome",
    "StageFailure",
    "StageName",
    "StageScript",
]
