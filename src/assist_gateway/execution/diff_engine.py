"""Unified diff generation and verified patch application.

``apply_patch`` never trusts the patch utility's exit status on its own: the
expected post-image is rebuilt from the pre-image, tolerating line offsets the
way patch(1) does, and a fresh diff between disk and that post-image must come
back empty. A failed external run puts the pre-image back.
"""
from __future__ import annotations

import difflib
import logging
import re
import shlex
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence

from assist_gateway.errors import PatchFailed, ToolExecutionFailed
from assist_gateway.observability.structured_log import log_json
from assist_gateway.sandbox.paths import PathResolver
from assist_gateway.util import atomic_write_text, read_text_exact

logger = logging.getLogger(__name__)

NO_NEWLINE_MARKER = "\\ No newline at end of file"
DEV_NULL = "/dev/null"
PATCH_TIMEOUT_SEC = 30
PATCH_ARGS = ("-p0", "--batch", "--forward", "--no-backup-if-mismatch", "--reject-file=-")

_HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


class PatchMode(str, Enum):
    PATCH = "patch"
    OVERWRITE = "overwrite"

    @classmethod
    def parse(cls, value: object) -> "PatchMode":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        if not text:
            return cls.PATCH
        for member in cls:
            if member.value == text:
                return member
        raise PatchFailed(f"unknown patch mode: {value}")


@dataclass(frozen=True)
class PatchOutcome:
    ok: bool
    output: str = ""
    note: str = ""


@dataclass
class _Hunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    old_lines: List[str] = field(default_factory=list)
    new_lines: List[str] = field(default_factory=list)


class DiffEngine:
    def __init__(self, resolver: PathResolver, patch_command: Optional[str] = None) -> None:
        self._resolver = resolver
        self._patch_command = (patch_command or "").strip() or None

    def generate_diff(self, path: str, new_content: Optional[str]) -> str:
        target = self._resolver.resolve_confined(path)
        rel = self._resolver.relative(target)
        desired = new_content or ""
        if target.exists():
            current = _read_file(target, rel)
            if current == desired:
                return ""
            from_name = rel
        else:
            if not desired:
                return ""
            current = ""
            from_name = DEV_NULL
        return render_unified_diff(current, desired, from_name, rel)

    def apply_patch(self, path: str, patch_text: Optional[str], mode: object = PatchMode.PATCH) -> PatchOutcome:
        target = self._resolver.resolve_confined(path)
        rel = self._resolver.relative(target)
        patch_mode = PatchMode.parse(mode)
        text = patch_text or ""

        if patch_mode is PatchMode.OVERWRITE:
            _write_file(target, text)
            log_json(logger, "patch.apply", path=rel, mode=patch_mode.value, bytes=len(text))
            return PatchOutcome(ok=True, note="file overwritten")

        if not text.strip():
            return PatchOutcome(ok=True, note="empty patch, nothing to apply")

        existed = target.exists()
        current = _read_file(target, rel) if existed else ""
        hunks = parse_unified_diff(text, rel)

        if self._patch_command:
            output = self._apply_external(target, rel, text, current, existed, hunks)
        else:
            expected = apply_hunks(current, hunks)
            _write_file(target, expected)
            output = f"patching file {rel}"
            self._verify(rel, expected, output)
        log_json(logger, "patch.apply", path=rel, mode=patch_mode.value, hunks=len(hunks), ok=True)
        return PatchOutcome(ok=True, output=output)

    def _apply_external(
        self, target: Path, rel: str, text: str, current: str, existed: bool, hunks: Sequence[_Hunk]
    ) -> str:
        # The utility runs first; the post-image is rebuilt from the pre-image afterwards
        # and any mismatch puts the pre-image back.
        try:
            output = self._run_external_patch(text)
            try:
                expected = apply_hunks(current, hunks)
            except PatchFailed as exc:
                raise PatchFailed("patch utility result could not be verified", raw_output=output) from exc
            self._verify(rel, expected, output)
        except PatchFailed:
            _restore(target, current, existed)
            raise
        return output

    def _verify(self, rel: str, expected: str, output: str) -> None:
        if self.generate_diff(rel, expected) != "":
            log_json(logger, "patch.apply", level=logging.WARNING, path=rel, ok=False)
            raise PatchFailed("patch failed to apply cleanly", raw_output=output)

    def _run_external_patch(self, patch_text: str) -> str:
        argv = shlex.split(self._patch_command or "") + list(PATCH_ARGS)
        try:
            proc = subprocess.run(
                argv,
                input=patch_text,
                cwd=str(self._resolver.root),
                capture_output=True,
                text=True,
                timeout=PATCH_TIMEOUT_SEC,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise PatchFailed(f"patch utility failed to run: {exc}") from exc
        output = (proc.stdout or "") + (proc.stderr or "")
        if proc.returncode != 0:
            raise PatchFailed("patch utility rejected the patch", raw_output=output)
        return output


def render_unified_diff(current: str, desired: str, from_name: str, to_name: str) -> str:
    old_lines = split_lines(current)
    new_lines = split_lines(desired)
    out: List[str] = []
    for line in difflib.unified_diff(old_lines, new_lines, fromfile=from_name, tofile=to_name, n=3):
        if line.endswith("\n"):
            out.append(line)
        else:
            out.append(line + "\n")
            out.append(NO_NEWLINE_MARKER + "\n")
    return "".join(out)


def split_lines(text: str) -> List[str]:
    """Split on ``\\n`` only, keeping terminators; a trailing partial line is kept as is."""
    if not text:
        return []
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def parse_unified_diff(patch_text: str, expected_path: str = "") -> List[_Hunk]:
    lines = split_lines(patch_text)
    hunks: List[_Hunk] = []
    targets: List[str] = []
    current: Optional[_Hunk] = None
    last_side = ""

    for raw in lines:
        line = raw[:-1] if raw.endswith("\n") else raw
        if line.startswith("--- ") and (current is None or _hunk_complete(current)):
            current = None
            continue
        if line.startswith("+++ ") and current is None:
            targets.append(_header_path(line[4:]))
            continue
        match = _HUNK_HEADER_RE.match(line)
        if match:
            if current is not None and not _hunk_complete(current):
                raise PatchFailed(f"malformed hunk before line: {line}")
            current = _Hunk(
                old_start=int(match.group(1)),
                old_count=_count(match.group(2)),
                new_start=int(match.group(3)),
                new_count=_count(match.group(4)),
            )
            hunks.append(current)
            last_side = ""
            continue
        if current is None:
            # Preamble such as "diff -u a b" or "Index:" lines.
            continue
        if line.startswith("\\"):
            _strip_last_newline(current, last_side)
            continue
        if _hunk_complete(current):
            continue
        body = raw[1:] if raw[:1] in {" ", "-", "+"} else None
        if raw == "\n":
            body = "\n"
            prefix = " "
        else:
            prefix = raw[:1]
        if body is None:
            raise PatchFailed(f"invalid hunk line: {line[:60]}")
        if prefix == " ":
            current.old_lines.append(body)
            current.new_lines.append(body)
            last_side = "both"
        elif prefix == "-":
            current.old_lines.append(body)
            last_side = "old"
        else:
            current.new_lines.append(body)
            last_side = "new"

    if len(set(targets)) > 1:
        raise PatchFailed(f"patch touches more than one file: {', '.join(sorted(set(targets)))}")
    if not hunks:
        raise PatchFailed("no hunks found in patch")
    for idx, hunk in enumerate(hunks, start=1):
        if not _hunk_complete(hunk):
            raise PatchFailed(f"hunk #{idx} is truncated")
    if expected_path and targets:
        named = targets[0]
        if named != DEV_NULL and named != expected_path and _strip_ab_prefix(named) != expected_path:
            raise PatchFailed(f"patch targets '{named}', expected '{expected_path}'")
    return hunks


def apply_hunks(current: str, hunks: Sequence[_Hunk]) -> str:
    original = split_lines(current)
    result: List[str] = []
    cursor = 0
    for idx, hunk in enumerate(hunks, start=1):
        declared = hunk.old_start if hunk.old_count == 0 else hunk.old_start - 1
        start = _locate(original, hunk.old_lines, declared, cursor)
        if start is None:
            raise PatchFailed(f"hunk #{idx} does not apply at line {hunk.old_start}")
        result.extend(original[cursor:start])
        result.extend(hunk.new_lines)
        cursor = start + len(hunk.old_lines)
    result.extend(original[cursor:])
    return "".join(result)


def _locate(lines: Sequence[str], needle: Sequence[str], declared: int, floor: int) -> Optional[int]:
    """Position of ``needle`` at or after ``floor`` closest to ``declared``, like patch(1) offsets."""
    if not needle:
        return declared if floor <= declared <= len(lines) else None
    last = len(lines) - len(needle)
    width = len(needle)
    for delta in range(max(declared - floor, last - declared) + 1):
        for pos in (declared - delta, declared + delta) if delta else (declared,):
            if floor <= pos <= last and list(lines[pos : pos + width]) == list(needle):
                return pos
    return None


def _hunk_complete(hunk: _Hunk) -> bool:
    return len(hunk.old_lines) >= hunk.old_count and len(hunk.new_lines) >= hunk.new_count


def _strip_last_newline(hunk: _Hunk, side: str) -> None:
    targets = []
    if side in {"old", "both"} and hunk.old_lines:
        targets.append(hunk.old_lines)
    if side in {"new", "both"} and hunk.new_lines:
        targets.append(hunk.new_lines)
    for bucket in targets:
        if bucket[-1].endswith("\n"):
            bucket[-1] = bucket[-1][:-1]


def _count(value: Optional[str]) -> int:
    return 1 if value is None else int(value)


def _header_path(raw: str) -> str:
    # Drop an optional timestamp separated by a tab.
    return raw.split("\t", 1)[0].strip()


def _strip_ab_prefix(name: str) -> str:
    if name.startswith(("a/", "b/")):
        return name[2:]
    return name


def _read_file(target: Path, rel: str) -> str:
    if not target.is_file():
        raise ToolExecutionFailed(f"not a regular file: {rel}")
    try:
        return read_text_exact(target)
    except UnicodeDecodeError as exc:
        raise ToolExecutionFailed(f"file is not valid UTF-8 text: {rel}") from exc


def _restore(target: Path, content: str, existed: bool) -> None:
    if existed:
        _write_file(target, content)
    elif target.is_file():
        target.unlink()


def _write_file(target: Path, content: str) -> None:
    try:
        atomic_write_text(target, content)
    except OSError as exc:
        raise ToolExecutionFailed(f"write failed: {exc}") from exc
