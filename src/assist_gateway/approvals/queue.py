"""In-memory approval queue for mutating tool operations.

The queue owns every ``Operation``; callers only ever see frozen snapshots
with their own deep copy of the payload captured at enqueue time.
Status changes replace the stored snapshot under the lock, and
``drain_approved`` removes what it returns so an approved operation is handed
out for execution at most once.
"""
from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from assist_gateway.domain.models import Operation, OperationKind, OperationStatus
from assist_gateway.errors import InvalidTransition, OperationNotFound
from assist_gateway.observability.structured_log import log_json

logger = logging.getLogger(__name__)

SUMMARY_COMMAND_CHARS = 50
EMPTY_LIST_TEXT = "No pending operations."
LIST_FOOTER = "Approve or reject with POST /api/operations/<id>/approve or /reject."

_ALLOWED_TRANSITIONS = {
    OperationStatus.PENDING: {OperationStatus.APPROVED, OperationStatus.REJECTED},
    OperationStatus.APPROVED: set(),
    OperationStatus.REJECTED: set(),
}


@dataclass(frozen=True)
class OperationView:
    id: int
    kind: str
    summary: str
    status: str
    age_sec: int
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "summary": self.summary,
            "status": self.status,
            "age_sec": self.age_sec,
            "created_at": self.created_at.isoformat(),
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalQueue:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._lock = threading.Lock()
        self._items: Dict[int, Operation] = {}
        self._next_id = 1
        self._clock = clock or _utc_now

    def enqueue(self, kind: OperationKind, payload: Mapping[str, Any]) -> Operation:
        kind = OperationKind(kind)
        with self._lock:
            op = Operation(
                id=self._next_id,
                kind=kind,
                payload=copy.deepcopy(dict(payload or {})),
                status=OperationStatus.PENDING,
                created_at=self._clock(),
            )
            self._next_id += 1
            self._items[op.id] = op
        log_json(logger, "approval.enqueue", operation_id=op.id, kind=kind.value, summary=summarize(op))
        return _detached(op)

    def get(self, op_id: int) -> Operation:
        with self._lock:
            op = self._items.get(int(op_id))
        if op is None:
            raise OperationNotFound(f"operation {op_id} not found", operation_id=op_id)
        return _detached(op)

    def set_status(self, op_id: int, status: OperationStatus) -> Operation:
        status = OperationStatus(status)
        with self._lock:
            current = self._items.get(int(op_id))
            if current is None:
                raise OperationNotFound(f"operation {op_id} not found", operation_id=op_id)
            if current.status == status:
                return _detached(current)
            if status not in _ALLOWED_TRANSITIONS[current.status]:
                raise InvalidTransition(
                    f"operation {op_id} cannot move from {current.status.value} to {status.value}",
                    operation_id=op_id,
                )
            updated = replace(current, status=status)
            self._items[updated.id] = updated
        log_json(logger, "approval.status", operation_id=updated.id, status=status.value)
        return _detached(updated)

    def approve(self, op_id: int) -> Operation:
        return self.set_status(op_id, OperationStatus.APPROVED)

    def reject(self, op_id: int) -> Operation:
        return self.set_status(op_id, OperationStatus.REJECTED)

    def drain_approved(self) -> List[Operation]:
        with self._lock:
            drained = [op for op in self._items.values() if op.status == OperationStatus.APPROVED]
            drained.sort(key=lambda op: op.id)
            for op in drained:
                del self._items[op.id]
        if drained:
            log_json(logger, "approval.drain", operation_ids=[op.id for op in drained])
        return drained

    def clear_completed(self) -> int:
        with self._lock:
            done = [op_id for op_id, op in self._items.items() if op.status != OperationStatus.PENDING]
            for op_id in done:
                del self._items[op_id]
        log_json(logger, "approval.clear", cleared=len(done))
        return len(done)

    def snapshot(self) -> List[Operation]:
        with self._lock:
            ops = sorted(self._items.values(), key=lambda op: op.id)
        return [_detached(op) for op in ops]

    def pending(self) -> List[Operation]:
        return [op for op in self.snapshot() if op.status == OperationStatus.PENDING]

    def list_operations(self, now: Optional[datetime] = None) -> List[OperationView]:
        current = now or self._clock()
        views = []
        for op in self.snapshot():
            age = max(0, int((current - op.created_at).total_seconds()))
            views.append(
                OperationView(
                    id=op.id,
                    kind=op.kind.value,
                    summary=summarize(op),
                    status=op.status.value,
                    age_sec=age,
                    created_at=op.created_at,
                )
            )
        return views

    def format_list(self) -> str:
        ops = self.snapshot()
        if not ops:
            return EMPTY_LIST_TEXT
        lines = ["Pending operations:", ""]
        lines.extend(format_operation(op) for op in ops)
        lines.extend(["", LIST_FOOTER])
        return "\n".join(lines)


def _detached(op: Operation) -> Operation:
    return replace(op, payload=copy.deepcopy(op.payload))


def summarize(op: Operation) -> str:
    args = op.payload.get("args") if isinstance(op.payload.get("args"), Mapping) else op.payload
    if op.kind == OperationKind.WRITE_FILE and args.get("path"):
        return f"Write to: {args['path']}"
    if op.kind == OperationKind.APPLY_PATCH and args.get("path"):
        return f"Patch: {args['path']}"
    if op.kind == OperationKind.RUN_COMMAND and args.get("cmd"):
        cmd = str(args["cmd"])
        if len(cmd) > SUMMARY_COMMAND_CHARS:
            cmd = cmd[:47] + "..."
        return f"Run: {cmd}"
    if op.payload.get("summary"):
        return str(op.payload["summary"])
    return "No details available"


def format_operation(op: Operation) -> str:
    time_str = op.created_at.strftime("%H:%M")
    return f"[{time_str}] ID:{op.id} {op.kind.value} - {summarize(op)} ({op.status.value.upper()})"
