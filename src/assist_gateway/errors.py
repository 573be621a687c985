"""Error taxonomy shared by the sandbox, tool and provider layers.

Every error carries a stable ``code`` so that tool results, API responses and
log lines can refer to a failure class without depending on message text.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class GatewayError(Exception):
    code = "ERR_UNKNOWN"

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details: Dict[str, Any] = dict(details)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class ConfigError(GatewayError):
    code = "ERR_CONFIG"


class InvalidPath(GatewayError):
    code = "ERR_INVALID_PATH"


class SandboxEscape(GatewayError):
    code = "ERR_SANDBOX_ESCAPE"


class PolicyDenied(GatewayError):
    code = "ERR_POLICY_DENIED"

    def __init__(self, message: str, matched_rule: str = "") -> None:
        super().__init__(message, matched_rule=matched_rule)
        self.matched_rule = matched_rule


class InvalidDefinition(GatewayError):
    code = "ERR_INVALID_DEFINITION"

    def __init__(self, violations: Sequence[str]) -> None:
        items = [str(v) for v in violations]
        super().__init__("; ".join(items) or "invalid tool definition", violations=items)
        self.violations: List[str] = items


class ToolNotFound(GatewayError):
    code = "ERR_TOOL_NOT_FOUND"


class InvalidArguments(GatewayError):
    code = "ERR_INVALID_ARGS"


class ToolExecutionFailed(GatewayError):
    code = "ERR_TOOL_FAILED"


class PatchFailed(GatewayError):
    code = "ERR_PATCH_FAILED"

    def __init__(self, message: str, raw_output: str = "") -> None:
        super().__init__(message, raw_output=raw_output)
        self.raw_output = raw_output


class TransportFailure(GatewayError):
    code = "ERR_TRANSPORT"


class ProviderError(GatewayError):
    code = "ERR_PROVIDER"

    def __init__(self, message: str, status: int = 0, body: str = "") -> None:
        super().__init__(message, status=status, body=body)
        self.status = status
        self.body = body


class TimeoutExceeded(GatewayError):
    code = "ERR_TIMEOUT"


class ProviderChainExhausted(GatewayError):
    code = "ERR_PROVIDER_CHAIN_EXHAUSTED"

    def __init__(self, attempts: Sequence[str], last_error: Optional[BaseException] = None) -> None:
        tried = list(attempts)
        detail = f"{type(last_error).__name__}: {last_error}" if last_error is not None else "no providers available"
        super().__init__(
            f"All providers failed (tried: {', '.join(tried) or 'none'}). Last error: {detail}",
            attempts=tried,
        )
        self.attempts = tried
        self.last_error = last_error


class OperationNotFound(GatewayError):
    code = "ERR_OPERATION_NOT_FOUND"


class InvalidTransition(GatewayError):
    code = "ERR_INVALID_TRANSITION"


class ExchangeCancelled(GatewayError):
    code = "ERR_CANCELLED"
