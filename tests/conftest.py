"""Shared test fixtures: settings, an in-memory registry and a fake call transport.

Every test gets a ``RunContext`` whose workspace root is ``tmp_path`` and
whose call transport is a ``RecordingTransport``: no network, no model.
Agents are either registered on the ``registry`` fixture or written as YAML
files under ``tmp_path / "agents"``.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import anyio
import pytest

from pipewright.agent_runtime.context import RunContext
from pipewright.agent_runtime.execution.resolver import AgentLocator
from pipewright.agent_runtime.models.agent import AgentOptions
from pipewright.agent_runtime.registry import AgentRegistry
from pipewright.agent_runtime.settings import PipewrightSettings, _get_settings_cached


def _set_env(key: str, value: str) -> None:
    """Set an env var and invalidate the settings cache."""
    os.environ[key] = value
    _get_settings_cached.cache_clear()


class RecordingTransport:
    """Call transport fake.

    Records every ``(payload, options)`` pair and answers with
    ``respond(payload)`` (``"echo: <payload>"`` by default).  ``delay`` makes
    each call sleep first; ``error`` makes each call raise.
    """

    def __init__(self, respond: Callable[[Any], Any] | None = None) -> None:
        self.respond = respond or (lambda payload: f"echo: {payload}")
        self.delay: float = 0
        self.error: Exception | None = None
        self.calls: list[tuple[Any, AgentOptions]] = []
        self.active = 0
        self.max_active = 0

    @property
    def payloads(self) -> list[Any]:
        return [payload for payload, _ in self.calls]

    async def invoke(self, payload: Any, options: AgentOptions) -> Any:
        self.calls.append((payload, options))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await anyio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return self.respond(payload)
        finally:
            self.active -= 1


# ---------------------------------------------------------------------------
# Function-scoped: settings, registry, transport, context
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> PipewrightSettings:
    """Settings rooted at ``tmp_path`` with agents under ``tmp_path/agents``."""
    return PipewrightSettings(
        workspace_root=str(tmp_path),
        agent_dirs=["agents"],
        max_concurrency=4,
        max_recursion_depth=8,
        call_timeout=None,
    )


@pytest.fixture
def agents_dir(tmp_path: Path) -> Path:
    path = tmp_path / "agents"
    path.mkdir()
    return path


@pytest.fixture
def registry(settings: PipewrightSettings) -> AgentRegistry:
    return AgentRegistry(AgentLocator.from_settings(settings))


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def ctx(settings: PipewrightSettings, registry: AgentRegistry, transport: RecordingTransport) -> RunContext:
    return RunContext(settings=settings, registry=registry, transport=transport)
