"""Unit tests for agent file loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from pipewright.agent_runtime.errors import AgentDefinitionError, AgentNotFoundError
from pipewright.agent_runtime.managers.agents import load_agent_file, parse_agent
from pipewright.agent_runtime.models.enums import ScriptKind, StageName

DOC_AGENT_YAML = """\
options:
  model: openai:gpt-4o
  temperature: 0.1
  concurrency: 2
stages:
  data: |
    if input.name == "mod.rs":
        return skip("mod.rs does not need to be processed")
    return input
  instruction:
    kind: template
    source: "Summarise {{ data.name }}"
  output: |
    return ai_response
"""


def test_load_yaml_agent(tmp_path: Path) -> None:
    path = tmp_path / "doc-writer.yaml"
    path.write_text(DOC_AGENT_YAML)

    agent = load_agent_file(path)

    assert agent.name == "doc-writer"
    assert agent.path == path.resolve()
    assert agent.base_dir == tmp_path.resolve()
    assert agent.options.model == "openai:gpt-4o"
    assert agent.options.concurrency == 2
    assert agent.has_stage(StageName.DATA)
    assert not agent.has_stage(StageName.BEFORE_ALL)
    assert agent.stage(StageName.INSTRUCTION).kind == ScriptKind.TEMPLATE
    assert agent.stage(StageName.OUTPUT).source == "return ai_response\n"


def test_load_json_agent_with_explicit_name(tmp_path: Path) -> None:
    path = tmp_path / "x.json"
    path.write_text('{"name": "json-agent", "stages": {"data": "return 1"}}')
    agent = load_agent_file(path)
    assert agent.name == "json-agent"


def test_empty_file_is_an_agent_without_stages(tmp_path: Path) -> None:
    path = tmp_path / "noop.yml"
    path.write_text("")
    agent = load_agent_file(path)
    assert agent.name == "noop"
    assert agent.stages == {}


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(AgentNotFoundError):
        load_agent_file(tmp_path / "missing.yaml")


def test_invalid_yaml(tmp_path: Path) -> None:
    path = tmp_path / "broken.yaml"
    path.write_text("stages: [unclosed\n")
    with pytest.raises(AgentDefinitionError, match="not valid YAML"):
        load_agent_file(path)


def test_require_instruction(tmp_path: Path) -> None:
    path = tmp_path / "no-instruction.yaml"
    path.write_text("stages:\n  data: return input\n")
    assert load_agent_file(path).name == "no-instruction"
    with pytest.raises(AgentDefinitionError, match="no instruction stage"):
        load_agent_file(path, require_instruction=True)


@pytest.mark.parametrize(
    "data",
    [
        ["not", "a", "map"],
        {"stages": {"call": "return 1"}},
        {"stages": {"unknown": "return 1"}},
        {"stages": {"data": {"kind": "template", "source": "{{ input }}"}}},
        {"options": {"concurrency": 0}},
    ],
)
def test_invalid_definitions(data: object) -> None:
    with pytest.raises(AgentDefinitionError):
        parse_agent(data, path=Path("bad.yaml"))


def test_name_required_without_path() -> None:
    with pytest.raises(AgentDefinitionError, match="needs a 'name'"):
        parse_agent({"stages": {}})
    assert parse_agent({"name": "inline"}).path is None
