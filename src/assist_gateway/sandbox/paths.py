"""Workspace path resolution and confinement.

Confinement always runs on the fully canonicalized path (``..`` segments and
symlinks expanded by ``Path.resolve``), never on a string prefix of the raw
input, so ``../`` traversal and symlinks pointing outside the root are caught.
"""
from __future__ import annotations

from pathlib import Path
from typing import Union

from assist_gateway.errors import InvalidPath, SandboxEscape

PathLike = Union[str, Path]


class PathResolver:
    def __init__(self, workspace_root: PathLike) -> None:
        raw = str(workspace_root or "").strip()
        if not raw:
            raise InvalidPath("workspace root is empty")
        self._root = Path(raw).expanduser().resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, path: PathLike) -> Path:
        if path is None:
            raise InvalidPath("empty path")
        raw = str(path).strip()
        if not raw:
            raise InvalidPath("empty path")
        if "\x00" in raw:
            raise InvalidPath("path contains NUL byte")
        candidate = Path(raw).expanduser()
        if not candidate.is_absolute():
            candidate = self._root / candidate
        try:
            return candidate.resolve(strict=False)
        except (OSError, RuntimeError) as exc:
            raise InvalidPath(f"cannot resolve path '{raw}': {exc}") from exc

    def confine(self, path: PathLike) -> Path:
        target = Path(path)
        if not target.is_absolute():
            raise InvalidPath(f"confine expects an absolute path, got '{path}'")
        try:
            canonical = target.resolve(strict=False)
        except (OSError, RuntimeError) as exc:
            raise InvalidPath(f"cannot resolve path '{path}': {exc}") from exc
        if canonical != self._root and not canonical.is_relative_to(self._root):
            raise SandboxEscape(f"path escapes sandbox: {canonical}", path=str(canonical), root=str(self._root))
        return canonical

    def resolve_confined(self, path: PathLike) -> Path:
        return self.confine(self.resolve(path))

    def relative(self, path: PathLike) -> str:
        canonical = self.confine(Path(path) if Path(path).is_absolute() else self.resolve(path))
        if canonical == self._root:
            return "."
        return canonical.relative_to(self._root).as_posix()
