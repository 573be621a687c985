"""Allow/deny policy for shell commands.

Matching is plain substring matching against the raw command string. It is not
a shell parser: quoting, variable expansion or aliasing can still smuggle a
denied program past it. Treat it as a guard rail for a cooperative model.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from assist_gateway.domain.models import SandboxPolicy
from assist_gateway.errors import PolicyDenied

DEFAULT_ALLOW: Tuple[str, ...] = (
    "ls",
    "rg",
    "grep",
    "sed",
    "awk",
    "python",
    "lua",
    "bash",
    "sh",
    "node",
    "npm",
)
DEFAULT_DENY: Tuple[str, ...] = (
    "rm -rf",
    "shutdown",
    "reboot",
    "mkfs",
    "dd if=",
    "cryptsetup",
    "sudo ",
)


@dataclass(frozen=True)
class TerminalDecision:
    allowed: bool
    reason: str
    matched_rule: str = ""


class TerminalPolicyEngine:
    """Evaluates commands deny-first against a SandboxPolicy."""

    def __init__(
        self,
        allow: Optional[Iterable[str]] = None,
        deny: Optional[Iterable[str]] = None,
    ) -> None:
        self._allow = _clean_rules(DEFAULT_ALLOW if allow is None else allow)
        self._deny = _clean_rules(DEFAULT_DENY if deny is None else deny)

    @classmethod
    def from_policy(cls, policy: SandboxPolicy) -> "TerminalPolicyEngine":
        return cls(allow=policy.terminal_allow, deny=policy.terminal_deny)

    @property
    def allow_rules(self) -> Tuple[str, ...]:
        return self._allow

    @property
    def deny_rules(self) -> Tuple[str, ...]:
        return self._deny

    def evaluate(self, command: Optional[str]) -> TerminalDecision:
        cmd = command or ""
        if not cmd.strip():
            return TerminalDecision(allowed=False, reason="empty command")
        for rule in self._deny:
            if rule in cmd:
                return TerminalDecision(
                    allowed=False,
                    reason=f"command denied by policy: {rule}",
                    matched_rule=rule,
                )
        if not self._allow:
            return TerminalDecision(allowed=True, reason="no allowlist configured")
        for rule in self._allow:
            if rule in cmd:
                return TerminalDecision(allowed=True, reason="allowlisted", matched_rule=rule)
        return TerminalDecision(allowed=False, reason="command not in allowlist")

    def is_allowed(self, command: Optional[str]) -> TerminalDecision:
        decision = self.evaluate(command)
        if not decision.allowed:
            raise PolicyDenied(decision.reason, matched_rule=decision.matched_rule)
        return decision


def _clean_rules(rules: Sequence[str] | Iterable[str]) -> Tuple[str, ...]:
    # Trailing whitespace is significant ("sudo " must not match "sudoku").
    out = []
    for rule in rules:
        text = str(rule or "").lstrip()
        if text.strip():
            out.append(text)
    return tuple(out)
