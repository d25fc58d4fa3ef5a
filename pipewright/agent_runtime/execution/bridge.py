"""Value bridge -- host JSON values <-> script-native Python values.

Stage scripts are plain Python, so the bridge is less about representation
than about *boundaries*:

- ``to_script`` hands scripts a deep copy (inputs stay immutable no matter what
  a script does) with maps wrapped in ``ScriptMap`` so both ``input["name"]``
  and ``input.name`` work.
- ``from_script`` accepts only the closed value universe (null, bool, number,
  string, sequence, string-keyed map) and raises ``SerializationError`` for
  anything else instead of guessing.

Map key order is preserved in both directions.
"""

from __future__ import annotations

import contextlib
import math
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, Any

from pipewright.agent_runtime.errors import SerializationError

if TYPE_CHECKING:
    from pipewright.agent_runtime.models.enums import StageName


class ScriptMap(dict):
    """Dict with attribute access, used for every map handed to a script.

    Present keys win over dict methods, so ``input.items`` reads the ``items``
    key when there is one.  Dunder names always resolve normally.
    """

    __slots__ = ()

    def __getattribute__(self, name: str) -> Any:
        if not name.startswith("__") and dict.__contains__(self, name):
            return dict.__getitem__(self, name)
        return super().__getattribute__(name)

    def __getattr__(self, name: str) -> Any:
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name: str, value: Any) -> None:
        self[name] = value

    def __delattr__(self, name: str) -> None:
        try:
            del self[name]
        except KeyError:
            raise AttributeError(name) from None


# ---------------------------------------------------------------------------
# Host -> script
# ---------------------------------------------------------------------------


def to_script(value: Any, stage: StageName | None = None) -> Any:
    """Deep-copy a host value into its script form."""
    return _to_script(value, stage, set())


def _to_script(value: Any, stage: StageName | None, seen: set[int]) -> Any:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return _check_float(value, stage)
    if isinstance(value, Mapping):
        with _visiting(value, stage, seen):
            return ScriptMap((_check_key(k, stage), _to_script(value[k], stage, seen)) for k in value)
    if isinstance(value, (list, tuple)):
        with _visiting(value, stage, seen):
            return [_to_script(v, stage, seen) for v in value]
    raise SerializationError(f"unsupported host value of type {type(value).__name__}", stage=stage)


# ---------------------------------------------------------------------------
# Script -> host
# ---------------------------------------------------------------------------


def from_script(value: Any, stage: StageName | None = None) -> Any:
    """Convert a script value back into a plain host value.

    Raises ``SerializationError`` naming *stage* for values outside the
    supported universe (functions, modules, sets, bytes, arbitrary objects,
    non-finite floats, non-string keys, cycles).
    """
    return _from_script(value, stage, set())


def _from_script(value: Any, stage: StageName | None, seen: set[int]) -> Any:
    # bool is an int subclass; both pass through untouched.
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return _check_float(value, stage)
    if isinstance(value, Mapping):
        with _visiting(value, stage, seen):
            return {_check_key(k, stage): _from_script(value[k], stage, seen) for k in value}
    if isinstance(value, (list, tuple)):
        with _visiting(value, stage, seen):
            return [_from_script(v, stage, seen) for v in value]
    raise SerializationError(f"cannot convert script value of type {type(value).__name__}", stage=stage)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _check_float(value: float, stage: StageName | None) -> float:
    if not math.isfinite(value):
        raise SerializationError(f"non-finite number {value!r} cannot be represented", stage=stage)
    return value


def _check_key(key: Any, stage: StageName | None) -> str:
    if not isinstance(key, str):
        raise SerializationError(f"map keys must be strings, got {type(key).__name__}", stage=stage)
    return key


@contextlib.contextmanager
def _visiting(container: object, stage: StageName | None, seen: set[int]) -> Iterator[None]:
    """Track containers on the current path to reject cycles."""
    key = id(container)
    if key in seen:
        raise SerializationError("cyclic value cannot be converted", stage=stage)
    seen.add(key)
    try:
        yield
    finally:
        seen.discard(key)
