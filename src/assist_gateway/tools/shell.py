from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from assist_gateway.domain.models import OperationKind
from assist_gateway.execution.local_shell import LocalShellRunner
from assist_gateway.tools.base import BaseTool, ToolOutcome, optional_int, require_str
from assist_gateway.util import clip_text

MAX_OUTPUT_CHARS = 20_000
MAX_TIMEOUT_SEC = 600


class RunCommandTool(BaseTool):
    """Runs a shell command through the terminal policy.

    A non-zero exit status is still a successful tool call; the model gets the
    exit code and both streams and decides what to do with them.
    """

    name = "run_command"
    description = "Run a shell command in the workspace (subject to the terminal allow/deny policy)."
    input_schema = {
        "type": "object",
        "properties": {
            "cmd": {"type": "string", "description": "Shell command to execute"},
            "cwd": {"type": "string", "description": "Working directory relative to workspace root"},
            "timeout_sec": {"type": "integer", "description": f"Timeout in seconds (max {MAX_TIMEOUT_SEC})"},
        },
        "required": ["cmd"],
    }
    operation_kind = OperationKind.RUN_COMMAND

    def __init__(self, runner: LocalShellRunner) -> None:
        self._runner = runner

    def preflight(self, args: Mapping[str, Any]) -> None:
        self._runner.check(require_str(args, "cmd"), _cwd(args))

    def run(self, args: Dict[str, Any]) -> ToolOutcome:
        cmd = require_str(args, "cmd")
        timeout = optional_int(args, "timeout_sec")
        if timeout is not None:
            timeout = max(1, min(timeout, MAX_TIMEOUT_SEC))
        result = self._runner.run(cmd, cwd=_cwd(args), timeout_sec=timeout)
        return ToolOutcome.success(
            {
                "exit_code": result.returncode,
                "stdout": clip_text(result.stdout, MAX_OUTPUT_CHARS),
                "stderr": clip_text(result.stderr, MAX_OUTPUT_CHARS),
            }
        )


def _cwd(args: Mapping[str, Any]) -> Optional[str]:
    raw = str(args.get("cwd") or "").strip()
    return raw or None
