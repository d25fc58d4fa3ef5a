"""Call stage transport.

The call stage hands the instruction payload to a ``CallTransport`` and uses
whatever comes back as ``ai_response`` for the output stage.  The executor
only depends on the protocol; ``ModelTransport`` is the default
implementation, backed by pydantic-ai.

Payload forms accepted by ``ModelTransport``:

- a string: sent as the user prompt;
- a map ``{"prompt": str, "system": str | None}``: ``system`` overrides the
  agent's ``options.system_prompt``;
- anything else: serialised to JSON and sent as the prompt.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic_ai import Agent as ModelAgent
from pydantic_ai import ModelSettings

if TYPE_CHECKING:
    from pipewright.agent_runtime.models.agent import AgentOptions

logger = logging.getLogger(__name__)


@runtime_checkable
class CallTransport(Protocol):
    """Async protocol for the external model/service invocation."""

    async def invoke(self, payload: Any, options: AgentOptions) -> Any:
        """Send *payload* and return the (JSON-compatible) response.

        May raise any exception; the executor records it as a ``CallError``
        for the current input.
        """
        ...


class NoModelConfiguredError(ValueError):
    """Neither the agent nor the settings name a model."""


class ModelTransport:
    """Call transport backed by a pydantic-ai ``Agent``.

    A fresh pydantic-ai agent is built per call: agent options differ between
    (nested) agents, and construction is cheap compared to the request.
    """

    def __init__(self, default_model: str | None = None) -> None:
        self.default_model = default_model

    async def invoke(self, payload: Any, options: AgentOptions) -> Any:
        model = options.model or self.default_model
        if not model:
            msg = "No model configured: set options.model on the agent or PIPEWRIGHT_DEFAULT_MODEL"
            raise NoModelConfiguredError(msg)

        prompt, system = split_payload(payload)
        system = system if system is not None else options.system_prompt

        model_agent = ModelAgent(
            model,
            system_prompt=system or (),
            model_settings=resolve_model_settings(options),
        )
        logger.debug("Calling model %s (prompt=%d chars)", model, len(prompt))
        result = await model_agent.run(prompt)
        return result.output


def split_payload(payload: Any) -> tuple[str, str | None]:
    """Split an instruction payload into ``(prompt, system_prompt)``."""
    if isinstance(payload, str):
        return payload, None
    if isinstance(payload, Mapping) and isinstance(payload.get("prompt"), str):
        system = payload.get("system")
        return payload["prompt"], system if isinstance(system, str) else None
    return json.dumps(payload, ensure_ascii=False), None


def resolve_model_settings(options: AgentOptions) -> ModelSettings:
    """Map ``AgentOptions`` to pydantic-ai ``ModelSettings``.

    Only explicitly set fields are included; ``None`` values are omitted
    so the provider uses its own defaults.
    """
    settings: dict[str, Any] = {}
    if options.temperature is not None:
        settings["temperature"] = options.temperature
    if options.max_tokens is not None:
        settings["max_tokens"] = options.max_tokens
    return ModelSettings(**settings) if settings else ModelSettings()
