"""Agent location -- maps agent references to files on disk.

Resolution order for a reference ``ref``:

1. If ``ref`` looks like a path (contains a separator or ends with a known
   extension):
   - absolute paths are used as-is;
   - relative paths are tried against the workspace root, then against the
     directory of the calling agent (``base_dir``), if any.
2. Otherwise ``ref`` is a bare name, looked up in each configured agent
   directory as ``{dir}/{ref}{ext}`` for every known extension.

The first existing file wins.  ``None`` means "not found"; raising
``AgentNotFoundError`` is the registry's decision.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pipewright.agent_runtime.settings import PipewrightSettings

AGENT_EXTENSIONS = (".yaml", ".yml", ".json")
"""File extensions recognised as agent definitions."""


class AgentLocator:
    """Resolves agent references against the workspace layout.

    Layout::

        {workspace_root}/{agent_dir}/{name}.yaml

    Where ``agent_dir`` iterates over ``settings.agent_dirs`` in order.
    """

    def __init__(self, workspace_root: str | Path, agent_dirs: list[str] | None = None) -> None:
        self.workspace_root = Path(workspace_root)
        self.agent_dirs = [self.workspace_root / d for d in agent_dirs or []]

    @classmethod
    def from_settings(cls, settings: PipewrightSettings) -> AgentLocator:
        return cls(settings.workspace_root, settings.agent_dirs)

    def resolve(self, ref: str, base_dir: Path | None = None) -> Path | None:
        """Return the agent file for *ref*, or ``None`` if nothing matches."""
        for candidate in self.candidates(ref, base_dir):
            if candidate.is_file():
                return candidate
        return None

    def candidates(self, ref: str, base_dir: Path | None = None) -> list[Path]:
        """All paths tried for *ref*, in resolution order."""
        if _is_path_like(ref):
            path = Path(ref).expanduser()
            if path.is_absolute():
                return [path]
            roots = [self.workspace_root]
            if base_dir is not None and base_dir != self.workspace_root:
                roots.append(base_dir)
            return [root / path for root in roots]

        return [d / f"{ref}{ext}" for d in self.agent_dirs for ext in AGENT_EXTENSIONS]

    def list_agents(self) -> list[Path]:
        """Every agent file reachable by bare name (first directory wins)."""
        seen: set[str] = set()
        found: list[Path] = []
        for d in self.agent_dirs:
            if not d.is_dir():
                continue
            for path in sorted(d.iterdir()):
                if path.suffix in AGENT_EXTENSIONS and path.stem not in seen and path.is_file():
                    seen.add(path.stem)
                    found.append(path)
        return found


def _is_path_like(ref: str) -> bool:
    return "/" in ref or "\\" in ref or ref.endswith(AGENT_EXTENSIONS) or ref.startswith("~")
