from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union


class OperationKind(str, Enum):
    WRITE_FILE = "WriteFile"
    APPLY_PATCH = "ApplyPatch"
    RUN_COMMAND = "RunCommand"


class OperationStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ExecutionMode(str, Enum):
    DIRECT = "direct"
    GATED = "gated"

    @classmethod
    def parse(cls, value: Any, default: Optional["ExecutionMode"] = None) -> "ExecutionMode":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return default if default is not None else cls.DIRECT


@dataclass(frozen=True)
class SandboxPolicy:
    workspace_root: Path
    terminal_allow: Tuple[str, ...] = ()
    terminal_deny: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ToolSpec:
    """Provider-facing projection of a registered tool."""

    name: str
    description: str
    input_schema: Mapping[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": dict(self.input_schema),
        }


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    tool_use_id: str
    content: Any
    is_error: bool = False


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str = ""
    tool_calls: Tuple[ToolCall, ...] = ()
    tool_results: Tuple[ToolResult, ...] = ()


SystemPrompt = Union[str, Sequence[str], Sequence[Mapping[str, Any]]]


@dataclass(frozen=True)
class NormalizedRequest:
    messages: Tuple[ChatMessage, ...]
    system: SystemPrompt = ""
    tools: Tuple[ToolSpec, ...] = ()
    tool_choice: Optional[Any] = None
    max_tokens: int = 1024
    provider: Optional[str] = None
    model: Optional[str] = None

    @classmethod
    def from_prompt(cls, prompt: str, **kwargs: Any) -> "NormalizedRequest":
        return cls(messages=(ChatMessage(role="user", content=prompt),), **kwargs)


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class NormalizedResponse:
    text: Optional[str]
    tool_calls: Tuple[ToolCall, ...]
    usage: Usage
    cost: Optional[float]
    model: str
    provider: str
    tool_results: Tuple[ToolResult, ...] = ()


@dataclass(frozen=True)
class Operation:
    id: int
    kind: OperationKind
    payload: Mapping[str, Any]
    status: OperationStatus
    created_at: datetime
