from __future__ import annotations

from typing import Any, Dict, Mapping

from assist_gateway.domain.models import OperationKind
from assist_gateway.errors import InvalidArguments, ToolExecutionFailed
from assist_gateway.sandbox.paths import PathResolver
from assist_gateway.tools.base import BaseTool, ToolOutcome, optional_int, require_str
from assist_gateway.util import atomic_write_text

MAX_READ_BYTES = 200_000
MAX_WRITE_BYTES = 1_000_000


class ReadFileTool(BaseTool):
    name = "read_file"
    description = "Read a file from the workspace. Returns file contents."
    input_schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "File path relative to workspace root"},
            "max_bytes": {"type": "integer", "description": f"Maximum bytes to read (default {MAX_READ_BYTES})"},
        },
        "required": ["path"],
    }

    def __init__(self, resolver: PathResolver) -> None:
        self._resolver = resolver

    def run(self, args: Dict[str, Any]) -> ToolOutcome:
        target = self._resolver.resolve_confined(require_str(args, "path"))
        if not target.is_file():
            raise ToolExecutionFailed(f"file not found: {self._resolver.relative(target)}")
        max_bytes = optional_int(args, "max_bytes", MAX_READ_BYTES) or MAX_READ_BYTES
        max_bytes = max(1, min(max_bytes, MAX_READ_BYTES))
        with target.open("rb") as handle:
            data = handle.read(max_bytes)
        return ToolOutcome.success(data.decode("utf-8", errors="replace"))


class WriteFileTool(BaseTool):
    name = "write_file"
    description = "Write content to a file in the workspace, creating parent directories."
    input_schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "File path relative to workspace root"},
            "content": {"type": "string", "description": "Content to write to the file"},
        },
        "required": ["path", "content"],
    }
    operation_kind = OperationKind.WRITE_FILE

    def __init__(self, resolver: PathResolver) -> None:
        self._resolver = resolver

    def preflight(self, args: Mapping[str, Any]) -> None:
        self._resolver.resolve_confined(require_str(args, "path"))
        require_str(args, "content", allow_empty=True)

    def run(self, args: Dict[str, Any]) -> ToolOutcome:
        target = self._resolver.resolve_confined(require_str(args, "path"))
        content = require_str(args, "content", allow_empty=True)
        if len(content.encode("utf-8")) > MAX_WRITE_BYTES:
            raise InvalidArguments("content exceeds max bytes")
        if target.is_dir():
            raise ToolExecutionFailed(f"path is a directory: {self._resolver.relative(target)}")
        try:
            atomic_write_text(target, content)
        except OSError as exc:
            raise ToolExecutionFailed(f"write failed: {exc}") from exc
        if not target.is_file():
            raise ToolExecutionFailed("write failed verification (file missing)")
        rel = self._resolver.relative(target)
        return ToolOutcome.success({"path": rel, "bytes": target.stat().st_size})


class ListDirTool(BaseTool):
    name = "list_dir"
    description = "List the entries of a workspace directory. Directories end with '/'."
    input_schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Directory relative to workspace root (default '.')"},
        },
        "required": [],
    }

    def __init__(self, resolver: PathResolver) -> None:
        self._resolver = resolver

    def run(self, args: Dict[str, Any]) -> ToolOutcome:
        raw = str(args.get("path") or ".").strip() or "."
        target = self._resolver.resolve_confined(raw)
        if not target.is_dir():
            raise ToolExecutionFailed(f"not a directory: {raw}")
        entries = []
        for child in sorted(target.iterdir(), key=lambda p: p.name):
            entries.append(child.name + "/" if child.is_dir() else child.name)
        return ToolOutcome.success(entries)
