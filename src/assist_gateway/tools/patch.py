from __future__ import annotations

from typing import Any, Dict, Mapping

from assist_gateway.domain.models import OperationKind
from assist_gateway.execution.diff_engine import DiffEngine, PatchMode
from assist_gateway.tools.base import BaseTool, ToolOutcome, require_str


class GenerateDiffTool(BaseTool):
    name = "generate_diff"
    description = "Produce a unified diff between a workspace file and proposed new content."
    input_schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "File path relative to workspace root"},
            "new_content": {"type": "string", "description": "Desired full content of the file"},
        },
        "required": ["path", "new_content"],
    }

    def __init__(self, engine: DiffEngine) -> None:
        self._engine = engine

    def run(self, args: Dict[str, Any]) -> ToolOutcome:
        path = require_str(args, "path")
        patch = self._engine.generate_diff(path, require_str(args, "new_content", allow_empty=True))
        return ToolOutcome.success({"path": path, "patch": patch, "changed": bool(patch)})


class ApplyPatchTool(BaseTool):
    name = "apply_patch"
    description = (
        "Apply a unified diff to a workspace file. Use mode='overwrite' only to replace "
        "the whole file with patch_text."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "File path relative to workspace root"},
            "patch_text": {"type": "string", "description": "Unified diff (or full content in overwrite mode)"},
            "mode": {"type": "string", "enum": ["patch", "overwrite"], "description": "Default 'patch'"},
        },
        "required": ["path", "patch_text"],
    }
    operation_kind = OperationKind.APPLY_PATCH

    def __init__(self, engine: DiffEngine, resolver) -> None:
        self._engine = engine
        self._resolver = resolver

    def preflight(self, args: Mapping[str, Any]) -> None:
        self._resolver.resolve_confined(require_str(args, "path"))
        require_str(args, "patch_text", allow_empty=True)
        PatchMode.parse(args.get("mode"))

    def run(self, args: Dict[str, Any]) -> ToolOutcome:
        outcome = self._engine.apply_patch(
            require_str(args, "path"),
            require_str(args, "patch_text", allow_empty=True),
            mode=args.get("mode") or PatchMode.PATCH,
        )
        return ToolOutcome.success({"ok": outcome.ok, "output": outcome.output, "note": outcome.note})
