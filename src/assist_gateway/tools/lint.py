"""Language-aware lint runner.

Picks the first installed linter for the file's language, runs it through the
terminal policy and normalizes its JSON report into findings of the form
``{file, line, column, severity, message, rule}``. When the output is not
JSON, ``path:line:col: message`` lines are parsed instead.
"""
from __future__ import annotations

import json
import re
import shlex
import shutil
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from assist_gateway.errors import InvalidArguments, ToolExecutionFailed
from assist_gateway.execution.local_shell import LocalShellRunner
from assist_gateway.sandbox.paths import PathResolver
from assist_gateway.tools.base import BaseTool, ToolOutcome, require_str
from assist_gateway.util import clip_text

MAX_RAW_OUTPUT_CHARS = 20_000

_EXTENSION_LANGUAGES = {
    ".py": "python",
    ".lua": "lua",
    ".js": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
}
_TEXT_FINDING_RE = re.compile(r"^([^:]+):(\d+):(\d*):?\s*(.+)$")


@dataclass(frozen=True)
class Linter:
    command: str
    args: Tuple[str, ...]


LINTERS: Dict[str, Tuple[Linter, ...]] = {
    "python": (
        Linter("ruff", ("check", "--output-format=json")),
        Linter("flake8", ("--format=json",)),
    ),
    "lua": (Linter("luacheck", ("--formatter=json",)),),
    "javascript": (Linter("eslint", ("--format=json",)),),
    "typescript": (Linter("eslint", ("--format=json",)),),
}


def detect_language(path: str) -> str:
    for suffix, language in _EXTENSION_LANGUAGES.items():
        if path.endswith(suffix):
            return language
    if "." not in path.rsplit("/", 1)[-1]:
        raise InvalidArguments("unable to determine language: no file extension")
    raise InvalidArguments(f"unsupported file extension: {path.rsplit('.', 1)[-1]}")


class RunLintTool(BaseTool):
    name = "run_lint"
    description = "Run a language-specific linter on a workspace file and return structured findings."
    input_schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "File or directory relative to workspace root"},
            "language": {
                "type": "string",
                "enum": sorted(LINTERS.keys()),
                "description": "Override language detection",
            },
            "linter": {"type": "string", "description": "Specific linter to use"},
        },
        "required": ["path"],
    }

    def __init__(
        self,
        resolver: PathResolver,
        runner: LocalShellRunner,
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> None:
        self._resolver = resolver
        self._runner = runner
        self._which = which

    def run(self, args: Dict[str, Any]) -> ToolOutcome:
        target = self._resolver.resolve_confined(require_str(args, "path"))
        if not target.exists():
            raise ToolExecutionFailed(f"path does not exist: {args.get('path')}")
        rel = self._resolver.relative(target)
        language = str(args.get("language") or "").strip().lower() or detect_language(rel)
        linter = self._find_linter(language, str(args.get("linter") or "").strip() or None)

        command = " ".join([linter.command, *linter.args, shlex.quote(rel)])
        result = self._runner.run(command)
        raw_output = result.stdout or ""
        findings = parse_lint_output(raw_output, linter.command)
        return ToolOutcome.success(
            {
                "linter_used": linter.command,
                "language": language,
                "target_path": rel,
                "findings_count": len(findings),
                "findings": findings,
                "exit_code": result.returncode,
                "raw_output": clip_text(raw_output, MAX_RAW_OUTPUT_CHARS),
            }
        )

    def _find_linter(self, language: str, preferred: Optional[str]) -> Linter:
        candidates = LINTERS.get(language)
        if not candidates:
            raise InvalidArguments(f"no linters configured for language: {language}")
        if preferred:
            for linter in candidates:
                if linter.command == preferred:
                    if self._which(linter.command):
                        return linter
                    raise ToolExecutionFailed(f"requested linter not available: {preferred}")
            raise InvalidArguments(f"requested linter not supported for {language}: {preferred}")
        for linter in candidates:
            if self._which(linter.command):
                return linter
        names = ", ".join(linter.command for linter in candidates)
        raise ToolExecutionFailed(f"no linters available for {language}. Install one of: {names}")


def parse_lint_output(raw_output: str, linter: str) -> List[Dict[str, Any]]:
    try:
        data = json.loads(raw_output)
    except (TypeError, ValueError):
        return _parse_text_findings(raw_output)
    try:
        return _parse_json_findings(data, linter)
    except (AttributeError, TypeError):
        return _parse_text_findings(raw_output)


def _parse_json_findings(data: Any, linter: str) -> List[Dict[str, Any]]:
    findings: List[Dict[str, Any]] = []
    if linter == "ruff":
        for item in data:
            location = item.get("location") or {}
            code = item.get("code")
            findings.append(
                _finding(item.get("filename"), location.get("row"), location.get("column"), _e_severity(code), item.get("message"), code)
            )
    elif linter == "flake8":
        for filename, items in data.items():
            for item in items:
                code = item.get("code")
                findings.append(
                    _finding(filename, item.get("line_number"), item.get("column_number"), _e_severity(code), item.get("text"), code)
                )
    elif linter == "luacheck":
        for file_data in data:
            for event in file_data.get("events") or []:
                code = event.get("code")
                severity = "error" if str(code or "").startswith("0") else "warning"
                findings.append(
                    _finding(file_data.get("filename"), event.get("line"), event.get("column"), severity, event.get("msg"), code)
                )
    elif linter == "eslint":
        for file_data in data:
            for msg in file_data.get("messages") or []:
                severity = "error" if msg.get("severity") == 2 else "warning"
                findings.append(
                    _finding(file_data.get("filePath"), msg.get("line"), msg.get("column"), severity, msg.get("message"), msg.get("ruleId"))
                )
    return findings


def _parse_text_findings(raw_output: str) -> List[Dict[str, Any]]:
    findings: List[Dict[str, Any]] = []
    for line in (raw_output or "").splitlines():
        match = _TEXT_FINDING_RE.match(line)
        if not match:
            continue
        file_name, line_no, column, message = match.groups()
        findings.append(
            _finding(file_name, int(line_no), int(column) if column else None, "warning", message.strip(), None)
        )
    return findings


def _e_severity(code: Any) -> str:
    return "error" if str(code or "").startswith("E") else "warning"


def _finding(file_name, line, column, severity, message, rule) -> Dict[str, Any]:
    return {
        "file": file_name,
        "line": line,
        "column": column,
        "severity": severity,
        "message": message,
        "rule": rule,
    }
