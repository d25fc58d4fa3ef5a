"""Engine configuration loaded from PIPEWRIGHT_* environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipewrightSettings(BaseSettings):
    """Pipewright engine settings.

    All fields are read from environment variables with the ``PIPEWRIGHT_``
    prefix.  For example, ``PIPEWRIGHT_MAX_CONCURRENCY=8`` maps to
    ``max_concurrency``.

    LLM provider keys (OPENAI_API_KEY, ANTHROPIC_API_KEY, ...) are **not**
    managed here -- they are read directly by pydantic-ai via its own model
    conventions.
    """

    model_config = SettingsConfigDict(
        env_prefix="PIPEWRIGHT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Agent location --------------------------------------------------------
    workspace_root: str = "."
    """Directory that relative agent paths and agent_dirs are resolved against."""

    agent_dirs: list[str] = Field(default_factory=lambda: ["agents", ".pipewright/agents"])
    """Directories searched (in order) when an agent is referenced by bare name."""

    require_instruction: bool = False
    """Reject agents that define no instruction stage at load time."""

    # -- Execution -------------------------------------------------------------
    max_concurrency: int = Field(default=4, ge=1)
    """Inputs processed at the same time within one run.

    An agent may lower or raise this with ``options.concurrency``.
    """

    max_recursion_depth: int = Field(default=8, ge=0)
    """Maximum nesting of ``run()`` calls made from stage scripts.

    Zero disables recursive invocation entirely.
    """

    call_timeout: float | None = None
    """Seconds to wait for a single Call-stage response.  ``None`` waits forever."""

    # -- Model -----------------------------------------------------------------
    default_model: str | None = None
    """Model used when an agent does not name one, e.g. ``openai:gpt-4o``."""


def get_settings() -> PipewrightSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to force a
    re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> PipewrightSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return PipewrightSettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
