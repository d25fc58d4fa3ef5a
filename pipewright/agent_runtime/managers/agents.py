"""Agent file loading.

Reads a YAML (or JSON) mapping and validates it into an ``Agent``.  The
mapping layout is::

    name: my-agent          # optional, defaults to the file stem
    options: {model: ...}   # optional
    stages:
      data: |
        return input
      instruction:
        kind: template
        source: "Summarise {{ data }}"

Raises ``AgentNotFoundError`` when the file is missing and
``AgentDefinitionError`` when it exists but is not a valid agent.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from pipewright.agent_runtime.errors import AgentDefinitionError, AgentNotFoundError
from pipewright.agent_runtime.models.agent import Agent
from pipewright.agent_runtime.models.enums import StageName


def load_agent_file(path: str | Path, *, require_instruction: bool = False) -> Agent:
    """Load and validate the agent defined in *path*."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise AgentNotFoundError(str(path)) from None

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        msg = f"Agent file '{path}' is not valid YAML: {exc}"
        raise AgentDefinitionError(msg) from exc

    return parse_agent(data, path=path, require_instruction=require_instruction)


def parse_agent(
    data: Any,
    *,
    path: Path | None = None,
    require_instruction: bool = False,
) -> Agent:
    """Validate an already-parsed mapping into an ``Agent``."""
    source = f"'{path}'" if path else "definition"
    if data is None:
        data = {}
    if not isinstance(data, dict):
        msg = f"Agent {source} must be a mapping, got {type(data).__name__}"
        raise AgentDefinitionError(msg)

    fields = dict(data)
    if "name" not in fields:
        if path is None:
            msg = "Agent definition without a file needs a 'name'"
            raise AgentDefinitionError(msg)
        fields["name"] = path.stem
    fields["path"] = path.resolve() if path else None

    try:
        agent = Agent.model_validate(fields)
    except ValidationError as exc:
        msg = f"Invalid agent {source}: {exc}"
        raise AgentDefinitionError(msg) from exc

    if require_instruction and not agent.has_stage(StageName.INSTRUCTION):
        msg = f"Agent '{agent.name}' has no instruction stage"
        raise AgentDefinitionError(msg)
    return agent