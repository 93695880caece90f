"""Append-only audit log of tool invocations."""

from __future__ import annotations

import json
from threading import Lock
from typing import Any

from .errors import LedgerError
from .logging import get_logger
from .schemas import InvocationStatus, ToolInvocation, ToolRequest, _utcnow

logger = get_logger(__name__)

__all__ = ["ToolLedger"]


class ToolLedger:
    """Ordered invocation log.

    ``record`` is the only mutator. A new id is appended as ``pending``; an
    existing id accepts exactly one transition to ``success`` or ``error``.
    The ledger is read-only to everything but the orchestrator and never
    influences control flow.
    """

    def __init__(self) -> None:
        self._entries: list[ToolInvocation] = []
        self._index: dict[str, int] = {}
        self._lock = Lock()

    def record(self, invocation: ToolInvocation) -> ToolInvocation:
        with self._lock:
            pos = self._index.get(invocation.id)
            if pos is None:
                if invocation.status != InvocationStatus.PENDING:
                    raise LedgerError(f"new invocation {invocation.id} must start as pending")
                self._index[invocation.id] = len(self._entries)
                self._entries.append(invocation)
                return invocation
            current = self._entries[pos]
            if current.status != InvocationStatus.PENDING:
                raise LedgerError(
                    f"invocation {invocation.id} already {current.status.value}; entries are never reopened"
                )
            if invocation.status == InvocationStatus.PENDING:
                raise LedgerError(f"invocation {invocation.id} is already pending")
            self._entries[pos] = invocation
            return invocation

    def begin(self, request: ToolRequest) -> ToolInvocation:
        return self.record(
            ToolInvocation(
                request_id=request.id,
                tool_name=request.name,
                arguments_snapshot=json.dumps(request.arguments, ensure_ascii=False, sort_keys=True),
            )
        )

    def succeed(self, invocation_id: str, result: Any) -> ToolInvocation:
        current = self._require(invocation_id)
        return self.record(
            current.model_copy(
                update={
                    "status": InvocationStatus.SUCCESS,
                    "result_snapshot": json.dumps(result, ensure_ascii=False, default=str),
                    "completed_at": _utcnow(),
                }
            )
        )

    def fail(self, invocation_id: str, reason: str) -> ToolInvocation:
        current = self._require(invocation_id)
        return self.record(
            current.model_copy(
                update={
                    "status": InvocationStatus.ERROR,
                    "error": reason,
                    "completed_at": _utcnow(),
                }
            )
        )

    def pending_ids(self) -> list[str]:
        with self._lock:
            return [e.id for e in self._entries if e.status == InvocationStatus.PENDING]

    def get(self, invocation_id: str) -> ToolInvocation | None:
        with self._lock:
            pos = self._index.get(invocation_id)
            return None if pos is None else self._entries[pos]

    def entries(self) -> tuple[ToolInvocation, ...]:
        with self._lock:
            return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def _require(self, invocation_id: str) -> ToolInvocation:
        current = self.get(invocation_id)
        if current is None:
            raise LedgerError(f"unknown invocation {invocation_id}")
        return current
