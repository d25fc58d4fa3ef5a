"""Agent definition data models.

An agent is an immutable bundle of named stage bodies plus model options.
These are pure Pydantic models; reading them from disk is the job of
``managers.agents``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pipewright.agent_runtime.models.enums import SCRIPTED_STAGES, ScriptKind, StageName

# -- Agent components --------------------------------------------------------


class StageScript(BaseModel):
    """Body of one stage: Python statements, or a Jinja2 template."""

    model_config = ConfigDict(frozen=True)

    source: str
    kind: ScriptKind = ScriptKind.SCRIPT

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: object) -> object:
        # A bare string in an agent file is a script body.
        if isinstance(data, str):
            return {"source": data}
        return data


class AgentOptions(BaseModel):
    """Model selection and run options for an agent."""

    model_config = ConfigDict(frozen=True)

    model: str | None = Field(default=None, description="Provider-qualified model name, e.g. 'openai:gpt-4o'")
    system_prompt: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    concurrency: int | None = Field(default=None, ge=1, description="Overrides settings.max_concurrency")


# -- Top-level agent ---------------------------------------------------------


class Agent(BaseModel):
    """A loaded agent definition."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: Path | None = None
    stages: dict[StageName, StageScript] = Field(default_factory=dict)
    options: AgentOptions = Field(default_factory=AgentOptions)

    @field_validator("stages")
    @classmethod
    def _check_stages(cls, stages: dict[StageName, StageScript]) -> dict[StageName, StageScript]:
        for stage, script in stages.items():
            if stage not in SCRIPTED_STAGES:
                msg = f"stage '{stage}' cannot have a body"
                raise ValueError(msg)
            if script.kind == ScriptKind.TEMPLATE and stage != StageName.INSTRUCTION:
                msg = f"only the instruction stage may be a template, not '{stage}'"
                raise ValueError(msg)
        return stages

    def has_stage(self, stage: StageName) -> bool:
        return stage in self.stages

    def stage(self, stage: StageName) -> StageScript | None:
        return self.stages.get(stage)

    @property
    def base_dir(self) -> Path | None:
        """Directory of the agent file, if it was loaded from one."""
        return self.path.parent if self.path is not None else None
