"""Dispatch of model-requested tool calls.

Read-only tools always run immediately. Tools with an operation kind run
immediately in DIRECT mode; in GATED mode they are checked with the tool's
``preflight`` and parked in the approval queue, and the model is told the
operation is pending instead of receiving a result.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping

from assist_gateway.approvals.queue import ApprovalQueue
from assist_gateway.domain.models import ExecutionMode, Operation, OperationKind, ToolCall, ToolResult
from assist_gateway.errors import GatewayError, ToolExecutionFailed, ToolNotFound
from assist_gateway.observability.structured_log import log_json
from assist_gateway.tools.base import ToolDefinition, ToolOutcome, ToolRegistry

logger = logging.getLogger(__name__)

QUEUED_MESSAGE = (
    "Operation {id} ({kind}) has been queued for approval. "
    "It runs only after a reviewer approves it at the CLI prompt or with "
    "POST /api/operations/{id}/approve; POST /api/operations/{id}/reject cancels it."
)


class ToolExecutionWrapper:
    def __init__(self, registry: ToolRegistry, queue: ApprovalQueue) -> None:
        self._registry = registry
        self._queue = queue

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def queue(self) -> ApprovalQueue:
        return self._queue

    async def execute(self, call: ToolCall, mode: ExecutionMode = ExecutionMode.DIRECT) -> ToolResult:
        definition = self._registry.lookup(call.name)
        if definition is None:
            log_json(logger, "tool.failed", level=logging.WARNING, tool=call.name, error=ToolNotFound.code)
            return _error_result(call.id, ToolNotFound(f"unknown tool: {call.name}"))

        kind = definition.operation_kind
        if ExecutionMode.parse(mode) is ExecutionMode.GATED and kind is not None:
            return self._enqueue(definition, kind, call)
        return await self._run(definition, call.id, call.input)

    async def execute_operation(self, op: Operation) -> ToolResult:
        payload = op.payload
        tool_use_id = str(payload.get("tool_use_id") or f"operation-{op.id}")
        name = str(payload.get("tool") or "")
        definition = self._registry.lookup(name)
        if definition is None:
            return _error_result(tool_use_id, ToolNotFound(f"unknown tool: {name}"))
        args = payload.get("args") if isinstance(payload.get("args"), Mapping) else {}
        return await self._run(definition, tool_use_id, args)

    def _enqueue(self, definition: ToolDefinition, kind: OperationKind, call: ToolCall) -> ToolResult:
        try:
            definition.handler.preflight(call.input)
        except GatewayError as exc:
            log_json(logger, "tool.failed", level=logging.WARNING, tool=call.name, error=exc.code, stage="preflight")
            return _error_result(call.id, exc)
        op = self._queue.enqueue(
            kind,
            {"tool": definition.name, "tool_use_id": call.id, "args": dict(call.input)},
        )
        log_json(logger, "tool.queued", tool=call.name, operation_id=op.id, kind=op.kind.value)
        return ToolResult(
            tool_use_id=call.id,
            content={
                "pending": True,
                "operation_id": op.id,
                "kind": op.kind.value,
                "message": QUEUED_MESSAGE.format(id=op.id, kind=op.kind.value),
            },
        )

    async def _run(self, definition: ToolDefinition, tool_use_id: str, args: Mapping[str, Any]) -> ToolResult:
        log_json(logger, "tool.execute", tool=definition.name, tool_use_id=tool_use_id)
        try:
            outcome = await asyncio.to_thread(definition.handler.execute, dict(args))
        except GatewayError as exc:
            log_json(logger, "tool.failed", level=logging.WARNING, tool=definition.name, error=exc.code)
            return _error_result(tool_use_id, exc)
        except Exception as exc:
            logger.exception("tool %s raised unexpectedly", definition.name)
            return _error_result(tool_use_id, ToolExecutionFailed(f"{type(exc).__name__}: {exc}"))

        if not isinstance(outcome, ToolOutcome):
            return _error_result(
                tool_use_id,
                ToolExecutionFailed(f"tool {definition.name} returned {type(outcome).__name__}, expected ToolOutcome"),
            )
        if outcome.ok:
            return ToolResult(tool_use_id=tool_use_id, content=outcome.output)
        log_json(logger, "tool.failed", level=logging.WARNING, tool=definition.name, error=outcome.error_code)
        return ToolResult(
            tool_use_id=tool_use_id,
            content={"error": outcome.error_code or ToolExecutionFailed.code, "message": str(outcome.output)},
            is_error=True,
        )


def _error_result(tool_use_id: str, exc: GatewayError) -> ToolResult:
    content: Dict[str, Any] = {"error": exc.code, "message": exc.message}
    return ToolResult(tool_use_id=tool_use_id, content=content, is_error=True)
