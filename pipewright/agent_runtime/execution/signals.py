"""Control signals -- flow control expressed as data.

Stage scripts cannot raise engine-level control flow directly; instead they
return a map carrying a reserved top-level key::

    {"_pipewright_": {"kind": "Skip", "data": {"reason": "..."}}}
    {"_pipewright_": {"kind": "BeforeAllResponse",
                      "data": {"inputs": [...], "before_all": ...}}}

``skip()`` and ``before_all_response()`` build these shapes for scripts, and
``decode_signal`` turns a stage's return value into exactly one of
``Plain`` / ``Skip`` / ``BeforeAllResponse``.  Decoding happens once per stage
evaluation; the executor never passes a signal on as ordinary data.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pipewright.agent_runtime.errors import ControlSignalMalformedError
from pipewright.agent_runtime.models.enums import SignalKind, StageName

RESERVED_KEY = "_pipewright_"
"""Top-level key that marks a stage result as a control signal."""


# ---------------------------------------------------------------------------
# Decoded results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Plain:
    """Ordinary stage result, no signal."""

    value: Any


@dataclass(frozen=True)
class Skip:
    """Exclude the current input from the rest of its pipeline."""

    reason: str | None = None


@dataclass(frozen=True)
class BeforeAllResponse:
    """Override the run's input set and/or set its shared data."""

    inputs: list[Any] | None = None
    before_all: Any = None
    has_before_all: bool = False


StageResult = Plain | Skip | BeforeAllResponse


# ---------------------------------------------------------------------------
# Script helpers
# ---------------------------------------------------------------------------


def skip(reason: str | None = None) -> dict[str, Any]:
    """Script helper: ``return skip()`` or ``return skip("why")``."""
    if reason is not None and not isinstance(reason, str):
        msg = f"skip() reason must be a string, got {type(reason).__name__}"
        raise TypeError(msg)
    signal: dict[str, Any] = {"kind": SignalKind.SKIP.value}
    if reason is not None:
        signal["data"] = {"reason": reason}
    return {RESERVED_KEY: signal}


def before_all_response(data: Any) -> dict[str, Any]:
    """Script helper for the before-all stage.

    *data* must be a map with optional ``inputs`` (a list that replaces the
    run's inputs) and ``before_all`` (any value shared with every input).
    Field types are checked when the result is decoded.
    """
    if not isinstance(data, Mapping):
        msg = f"before_all_response() takes a map, got {type(data).__name__}"
        raise ControlSignalMalformedError(msg)
    return {RESERVED_KEY: {"kind": SignalKind.BEFORE_ALL_RESPONSE.value, "data": dict(data)}}


# ---------------------------------------------------------------------------
# Decoder
# ---------------------------------------------------------------------------


def decode_signal(value: Any, stage: StageName | None = None) -> StageResult:
    """Decode a stage's return value.

    Raises ``ControlSignalMalformedError`` when the reserved key is present but
    the shape under it is not a valid signal.
    """
    if not isinstance(value, Mapping) or RESERVED_KEY not in value:
        return Plain(value)

    signal = value[RESERVED_KEY]
    if not isinstance(signal, Mapping):
        raise _malformed(f"'{RESERVED_KEY}' must hold a map, got {type(signal).__name__}", stage)

    kind = signal.get("kind")
    if kind == SignalKind.SKIP:
        return _decode_skip(signal.get("data"), stage)
    if kind == SignalKind.BEFORE_ALL_RESPONSE:
        return _decode_before_all(signal.get("data"), stage)
    raise _malformed(f"unknown signal kind {kind!r}", stage)


def _decode_skip(data: Any, stage: StageName | None) -> Skip:
    if data is None:
        return Skip()
    if not isinstance(data, Mapping):
        raise _malformed(f"Skip data must be a map, got {type(data).__name__}", stage)
    reason = data.get("reason")
    if reason is not None and not isinstance(reason, str):
        raise _malformed(f"Skip reason must be a string, got {type(reason).__name__}", stage)
    return Skip(reason=reason)


def _decode_before_all(data: Any, stage: StageName | None) -> BeforeAllResponse:
    if not isinstance(data, Mapping):
        raise _malformed(f"BeforeAllResponse data must be a map, got {type(data).__name__}", stage)
    inputs = data.get("inputs")
    if inputs is not None and not isinstance(inputs, list):
        raise _malformed(f"BeforeAllResponse inputs must be a list, got {type(inputs).__name__}", stage)
    return BeforeAllResponse(
        inputs=list(inputs) if inputs is not None else None,
        before_all=data.get("before_all"),
        has_before_all="before_all" in data,
    )


def _malformed(detail: str, stage: StageName | None) -> ControlSignalMalformedError:
    return ControlSignalMalformedError(detail, stage=stage)
