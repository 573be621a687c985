import logging
import subprocess
from typing import Optional

from assist_gateway.domain.contracts import CommandResult
from assist_gateway.errors import TimeoutExceeded, ToolExecutionFailed
from assist_gateway.observability.structured_log import log_json
from assist_gateway.sandbox.paths import PathResolver
from assist_gateway.sandbox.terminal import TerminalPolicyEngine
from assist_gateway.util import redact_with_audit

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 30


class LocalShellRunner:
    """Runs policy-checked shell commands inside the workspace."""

    def __init__(
        self,
        resolver: PathResolver,
        policy_engine: TerminalPolicyEngine,
        default_timeout_sec: int = DEFAULT_TIMEOUT_SEC,
    ):
        self._resolver = resolver
        self._policy_engine = policy_engine
        self._default_timeout_sec = max(1, int(default_timeout_sec))

    @property
    def policy_engine(self) -> TerminalPolicyEngine:
        return self._policy_engine

    def check(self, command: str, cwd: Optional[str] = None) -> None:
        """Raise PolicyDenied / SandboxEscape without running anything."""
        self._policy_engine.is_allowed(command)
        if cwd:
            self._resolver.resolve_confined(cwd)

    def run(self, command: str, cwd: Optional[str] = None, timeout_sec: Optional[int] = None) -> CommandResult:
        self._policy_engine.is_allowed(command)
        workdir = self._resolver.resolve_confined(cwd) if cwd else self._resolver.root
        if not workdir.is_dir():
            raise ToolExecutionFailed(f"working directory does not exist: {self._resolver.relative(workdir)}")
        timeout = self._default_timeout_sec if timeout_sec is None else max(1, int(timeout_sec))
        try:
            proc = subprocess.run(
                command,
                shell=True,
                cwd=str(workdir),
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            log_json(logger, "shell.run", level=logging.WARNING, command=command, timeout_sec=timeout, timed_out=True)
            raise TimeoutExceeded(f"command timed out after {timeout}s", command=command) from exc
        except OSError as exc:
            raise ToolExecutionFailed(f"failed to start command: {exc}") from exc

        stdout = redact_with_audit(proc.stdout or "")
        stderr = redact_with_audit(proc.stderr or "")
        log_json(
            logger,
            "shell.run",
            command=command,
            cwd=self._resolver.relative(workdir),
            returncode=proc.returncode,
            redactions=stdout.replacements + stderr.replacements,
        )
        return CommandResult(returncode=proc.returncode, stdout=stdout.text, stderr=stderr.text)
