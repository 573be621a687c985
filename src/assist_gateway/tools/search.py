from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Iterable, List

from assist_gateway.errors import ToolExecutionFailed
from assist_gateway.sandbox.paths import PathResolver
from assist_gateway.tools.base import BaseTool, ToolOutcome, optional_int, require_str

_SKIP_DIRS = {
    ".git",
    ".hg",
    ".svn",
    ".venv",
    "venv",
    "__pycache__",
    ".mypy_cache",
    ".pytest_cache",
    ".ruff_cache",
    ".tox",
    "dist",
    "build",
    "node_modules",
}
DEFAULT_MAX_RESULTS = 100
MAX_FILE_BYTES = 512_000
MAX_LINE_CHARS = 400


class SearchCodeTool(BaseTool):
    name = "search_code"
    description = "Search workspace text files for a literal string. Returns file, line and text per match."
    input_schema = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Literal text to search for"},
            "path": {"type": "string", "description": "Directory or file to search (default workspace root)"},
            "max_results": {"type": "integer", "description": f"Maximum matches (default {DEFAULT_MAX_RESULTS})"},
        },
        "required": ["query"],
    }

    def __init__(self, resolver: PathResolver) -> None:
        self._resolver = resolver

    def run(self, args: Dict[str, Any]) -> ToolOutcome:
        query = require_str(args, "query")
        raw_path = str(args.get("path") or ".").strip() or "."
        root = self._resolver.resolve_confined(raw_path)
        if not root.exists():
            raise ToolExecutionFailed(f"path not found: {raw_path}")
        limit = max(1, optional_int(args, "max_results", DEFAULT_MAX_RESULTS) or DEFAULT_MAX_RESULTS)

        results: List[Dict[str, Any]] = []
        truncated = False
        for candidate in _iter_text_files(root):
            for lineno, text in _matching_lines(candidate, query):
                if len(results) >= limit:
                    truncated = True
                    break
                results.append(
                    {
                        "file": self._resolver.relative(candidate),
                        "line": lineno,
                        "text": text[:MAX_LINE_CHARS],
                    }
                )
            if truncated:
                break
        return ToolOutcome.success(
            {
                "query": query,
                "searched_path": self._resolver.relative(root),
                "results": results,
                "truncated": truncated,
            }
        )


def _iter_text_files(root: Path) -> Iterable[Path]:
    if root.is_file():
        yield root
        return
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS)
        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            if path.is_symlink():
                continue
            try:
                if path.stat().st_size > MAX_FILE_BYTES:
                    continue
            except OSError:
                continue
            yield path


def _matching_lines(path: Path, query: str) -> Iterable[tuple[int, str]]:
    try:
        data = path.read_bytes()
    except OSError:
        return
    if b"\x00" in data[:8192]:
        return
    text = data.decode("utf-8", errors="replace")
    for lineno, line in enumerate(text.splitlines(), start=1):
        if query in line:
            yield lineno, line
