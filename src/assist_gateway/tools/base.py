from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from assist_gateway.domain.models import OperationKind, ToolSpec
from assist_gateway.errors import GatewayError, InvalidArguments, InvalidDefinition

_TOOL_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


@dataclass(frozen=True)
class ToolOutcome:
    ok: bool
    output: Any
    error_code: str = ""

    @classmethod
    def success(cls, output: Any) -> "ToolOutcome":
        return cls(ok=True, output=output)

    @classmethod
    def failure(cls, code: str, message: str) -> "ToolOutcome":
        return cls(ok=False, output=message, error_code=code)


class ToolHandler(Protocol):
    name: str
    description: str
    input_schema: Mapping[str, Any]
    operation_kind: Optional[OperationKind]

    def execute(self, args: Mapping[str, Any]) -> ToolOutcome:
        ...

    def preflight(self, args: Mapping[str, Any]) -> None:
        ...


class BaseTool:
    """Common plumbing for built-in tools.

    Subclasses implement ``run``; any ``GatewayError`` raised there is turned
    into a failed ``ToolOutcome`` carrying the error code.
    """

    name = ""
    description = ""
    input_schema: Mapping[str, Any] = {"type": "object", "properties": {}}
    operation_kind: Optional[OperationKind] = None

    def execute(self, args: Mapping[str, Any]) -> ToolOutcome:
        try:
            return self.run(dict(args or {}))
        except GatewayError as exc:
            return ToolOutcome.failure(exc.code, exc.message)

    def preflight(self, args: Mapping[str, Any]) -> None:
        return None

    def run(self, args: Dict[str, Any]) -> ToolOutcome:
        raise NotImplementedError


def require_str(args: Mapping[str, Any], key: str, allow_empty: bool = False) -> str:
    value = args.get(key)
    if value is None or (not allow_empty and not str(value).strip()):
        raise InvalidArguments(f"missing required arg '{key}'")
    if not isinstance(value, str):
        raise InvalidArguments(f"arg '{key}' must be a string")
    return value


def optional_int(args: Mapping[str, Any], key: str, default: Optional[int] = None) -> Optional[int]:
    value = args.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidArguments(f"arg '{key}' must be an integer") from exc


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: Mapping[str, Any]
    handler: ToolHandler
    operation_kind: Optional[OperationKind] = None

    @classmethod
    def from_handler(cls, handler: ToolHandler) -> "ToolDefinition":
        return cls(
            name=str(getattr(handler, "name", "") or ""),
            description=str(getattr(handler, "description", "") or ""),
            input_schema=getattr(handler, "input_schema", None) or {},
            handler=handler,
            operation_kind=getattr(handler, "operation_kind", None),
        )

    @property
    def is_mutating(self) -> bool:
        return self.operation_kind is not None

    def spec(self) -> ToolSpec:
        return ToolSpec(name=self.name, description=self.description, input_schema=self.input_schema)


def definition_violations(definition: ToolDefinition) -> List[str]:
    violations: List[str] = []
    label = definition.name or "<unnamed>"
    if not _TOOL_NAME_RE.match(definition.name or ""):
        violations.append(f"{label}: name must match {_TOOL_NAME_RE.pattern}")
    if not (definition.description or "").strip():
        violations.append(f"{label}: description is required")
    schema = definition.input_schema
    if not isinstance(schema, Mapping):
        violations.append(f"{label}: input_schema must be an object")
    else:
        if schema.get("type") != "object":
            violations.append(f"{label}: input_schema.type must be 'object'")
        if not isinstance(schema.get("properties"), Mapping):
            violations.append(f"{label}: input_schema.properties must be a mapping")
        required = schema.get("required", [])
        properties = schema.get("properties") if isinstance(schema.get("properties"), Mapping) else {}
        if not isinstance(required, (list, tuple)):
            violations.append(f"{label}: input_schema.required must be a list")
        else:
            for key in required:
                if key not in properties:
                    violations.append(f"{label}: required field '{key}' is not a declared property")
    if not callable(getattr(definition.handler, "execute", None)):
        violations.append(f"{label}: handler has no execute(args)")
    if definition.operation_kind is not None and not isinstance(definition.operation_kind, OperationKind):
        violations.append(f"{label}: operation_kind must be an OperationKind")
    return violations


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: Dict[str, ToolDefinition] = {}

    def register(self, definition: ToolDefinition) -> ToolDefinition:
        violations = definition_violations(definition)
        if definition.name in self._tools:
            violations.append(f"{definition.name}: duplicate tool name")
        if violations:
            raise InvalidDefinition(violations)
        self._tools[definition.name] = definition
        return definition

    def register_tool(self, handler: ToolHandler) -> ToolDefinition:
        return self.register(ToolDefinition.from_handler(handler))

    def lookup(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get((name or "").strip())

    def names(self) -> List[str]:
        return sorted(self._tools.keys())

    def validate_all(self) -> None:
        violations: List[str] = []
        for name in self.names():
            violations.extend(definition_violations(self._tools[name]))
        if violations:
            raise InvalidDefinition(violations)

    def specs(self, names: Optional[Iterable[str]] = None) -> List[ToolSpec]:
        selected = self.names() if names is None else [n for n in names if n in self._tools]
        return [self._tools[name].spec() for name in selected]
