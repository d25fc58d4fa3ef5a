"""Run mode front-ends.

Two ways of feeding the pipeline executor:

- **List runner** (``run_list``): an explicit, ordered input collection;
  returns the full ``RunOutcome``.
- **Solo runner** (``run_solo``): one implicit unit of work -- a single
  target file -- with no visible indexing; returns a ``SoloOutcome`` with a
  single optional output.

Both delegate all stage sequencing to ``run_agent``.  ``file_inputs`` builds
list-runner inputs from glob patterns.
"""

from __future__ import annotations

import contextlib
import glob
import logging
import os
import tempfile
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any

from anyio import to_thread

from pipewright.agent_runtime.errors import PipelineError, SerializationError
from pipewright.agent_runtime.execution.executor import run_agent
from pipewright.agent_runtime.models.outcome import Skipped, SoloOutcome, StageFailure

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pipewright.agent_runtime.context import RunContext
    from pipewright.agent_runtime.models.agent import Agent
    from pipewright.agent_runtime.models.outcome import RunOutcome

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# List runner
# ---------------------------------------------------------------------------


async def run_list(
    ctx: RunContext,
    agent: Agent | str,
    inputs: Sequence[Any] | None,
    *,
    return_outputs: bool = True,
) -> RunOutcome:
    """Run *agent* over an explicit list of inputs.

    ``None`` leaves the input set to before-all (or a single implicit ``None``).
    """
    agent = resolve_agent(ctx, agent)
    inputs = list(inputs) if inputs is not None else None
    return await run_agent(ctx, agent, inputs, return_outputs=return_outputs)


# ---------------------------------------------------------------------------
# Solo runner
# ---------------------------------------------------------------------------


async def run_solo(
    ctx: RunContext,
    agent: Agent | str,
    target: str | Path,
    *,
    write_output: bool = False,
) -> SoloOutcome:
    """Run *agent* once against *target*.

    The single input is the file reference of *target* including its
    ``content`` (``None`` when the file does not exist yet).  A failed input
    is raised rather than reported.  With *write_output*, a string output
    replaces the content of *target*.
    """
    agent = resolve_agent(ctx, agent)
    target_path = Path(target)
    value = await to_thread.run_sync(partial(file_ref, target_path, with_content=True))

    outcome = await run_agent(ctx, agent, [value])
    slots = outcome.outputs or []
    if len(slots) != 1:
        logger.warning("Solo run of %s produced %d outputs; reporting the first", agent.name, len(slots))
    slot = slots[0] if slots else None

    if isinstance(slot, StageFailure):
        if slot.error is not None:
            raise slot.error
        raise PipelineError(slot.message, stage=slot.stage)

    result = SoloOutcome(agent_name=agent.name, target=str(target_path), after_all=outcome.after_all)
    if isinstance(slot, Skipped):
        result.skipped = slot
        return result

    result.output = slot
    if write_output:
        if isinstance(slot, str):
            await to_thread.run_sync(partial(_atomic_write, target_path, slot))
            logger.info("Solo run of %s wrote %s", agent.name, target_path)
        else:
            logger.warning("Solo output of %s is not text; %s left untouched", agent.name, target_path)
    return result


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


def file_ref(path: Path, *, with_content: bool = False) -> dict[str, Any]:
    """Input value describing a file: ``{path, name, stem, ext[, content]}``.

    Content that is not UTF-8 text raises ``SerializationError``.
    """
    ref: dict[str, Any] = {
        "path": path.as_posix(),
        "name": path.name,
        "stem": path.stem,
        "ext": path.suffix.removeprefix("."),
    }
    if with_content:
        ref["content"] = _read_text(path) if path.is_file() else None
    return ref


def _read_text(path: Path) -> str:
    """Read *path* as UTF-8.  Raises ``SerializationError`` or ``PipelineError``."""
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        msg = f"cannot read {path} as UTF-8 text: {exc.reason} at byte {exc.start}"
        raise SerializationError(msg) from exc
    except OSError as exc:
        msg = f"cannot read {path}: {exc.strerror or exc}"
        raise PipelineError(msg) from exc


def file_inputs(patterns: Sequence[str], root: str | Path = ".") -> list[dict[str, Any]]:
    """Expand glob patterns (``**`` supported) into sorted, unique file references.

    Relative patterns are matched against *root*; paths in the references
    keep that prefix, so they stay valid from the caller's directory.
    """
    root = Path(root)
    found: set[Path] = set()
    for pattern in patterns:
        full = pattern if Path(pattern).is_absolute() else str(root / pattern)
        for match in glob.glob(full, recursive=True):
            path = Path(match)
            if path.is_file():
                found.add(path)
    return [file_ref(path) for path in sorted(found)]


def resolve_agent(ctx: RunContext, agent: Agent | str) -> Agent:
    """Accept an ``Agent`` or a reference resolved through the registry."""
    if isinstance(agent, str):
        return ctx.registry.get(agent)
    return agent


def _atomic_write(path: Path, data: str) -> None:
    """Write data atomically: temp file + rename.

    Ensures readers never see a partially-written target.  The temp file is
    created in the same directory so ``os.replace`` is atomic on POSIX.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up temp file on any failure.
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise
