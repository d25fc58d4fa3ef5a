"""In-process agent registry.

Holds agents registered programmatically (embedding applications, tests) and
falls back to the file locator for everything else.  File-backed agents are
re-read on every lookup: an agent is loaded once per run and once per nested
invocation, so edits on disk are picked up by the next run.

Lookups happen from worker threads (``run()`` inside stage scripts), so all
access to the in-memory table goes through a lock.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from loguru import logger

from pipewright.agent_runtime.errors import AgentNotFoundError
from pipewright.agent_runtime.managers.agents import load_agent_file

if TYPE_CHECKING:
    from pathlib import Path

    from pipewright.agent_runtime.execution.resolver import AgentLocator
    from pipewright.agent_runtime.models.agent import Agent


class DuplicateAgentError(ValueError):
    """Raised when registering a name that is already taken."""


class AgentRegistry:
    """Thread-safe registry of agents, keyed by name.

    ``get(ref)`` checks registered names first, then asks the locator for a
    file.  Pass ``locator=None`` for a purely in-memory registry.
    """

    def __init__(self, locator: AgentLocator | None = None, *, require_instruction: bool = False) -> None:
        self._agents: dict[str, Agent] = {}
        self._lock = threading.Lock()
        self._locator = locator
        self._require_instruction = require_instruction

    # -- Mutation --------------------------------------------------------------

    def register(self, agent: Agent, *, replace: bool = False) -> None:
        """Register an agent under its name.  Raises ``DuplicateAgentError``."""
        with self._lock:
            if agent.name in self._agents and not replace:
                raise DuplicateAgentError(agent.name)
            logger.debug("Registry: register agent {}", agent.name)
            self._agents[agent.name] = agent

    def unregister(self, name: str) -> Agent | None:
        with self._lock:
            agent = self._agents.pop(name, None)
        if agent:
            logger.debug("Registry: unregister agent {}", name)
        return agent

    # -- Query -----------------------------------------------------------------

    def get(self, ref: str, *, base_dir: Path | None = None) -> Agent:
        """Resolve *ref* to an ``Agent``.  Raises ``AgentNotFoundError``.

        *base_dir* is the directory of the calling agent, used as a fallback
        root for relative path references.
        """
        with self._lock:
            agent = self._agents.get(ref)
        if agent is not None:
            return agent

        if self._locator is None:
            raise AgentNotFoundError(ref)
        path = self._locator.resolve(ref, base_dir)
        if path is None:
            raise AgentNotFoundError(ref)

        logger.debug("Registry: loading agent {} from {}", ref, path)
        return load_agent_file(path, require_instruction=self._require_instruction)

    def names(self) -> list[str]:
        """Registered agent names (file-backed agents are not listed)."""
        with self._lock:
            return sorted(self._agents)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._agents

    @property
    def locator(self) -> AgentLocator | None:
        return self._locator
