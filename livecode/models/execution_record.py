"""Plain execution record and the status state machine.

Repositories hand out :class:`ExecutionRecord` values and accept field
updates built by :func:`transition`, so every status change in the system
passes through the same rules.
"""
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from livecode.errors import InvalidTransition


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the database columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ExecutionStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset({ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT})
ACTIVE_STATUSES = frozenset({ExecutionStatus.QUEUED, ExecutionStatus.RUNNING})

# RUNNING -> RUNNING is a job-level retry re-entering the sandbox
ALLOWED_TRANSITIONS = {
    ExecutionStatus.QUEUED: frozenset({ExecutionStatus.RUNNING, ExecutionStatus.FAILED}),
    ExecutionStatus.RUNNING: frozenset({
        ExecutionStatus.RUNNING,
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.TIMEOUT,
    }),
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
    ExecutionStatus.TIMEOUT: frozenset(),
}

WRITE_ONCE_FIELDS = ("id", "session_id", "code_snapshot", "language", "queued_at")


@dataclass(frozen=True)
class ExecutionRecord:
    session_id: uuid.UUID
    code_snapshot: str
    language: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    status: ExecutionStatus = ExecutionStatus.QUEUED
    stdout: str | None = None
    stderr: str | None = None
    execution_time_ms: int | None = None
    queued_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    attempts: int = 0
    awaiting_retry: bool = False

    def with_fields(self, fields: dict[str, Any]) -> ExecutionRecord:
        return replace(self, **fields)


def transition(record: ExecutionRecord, target: ExecutionStatus, now: datetime | None = None,
               **fields: Any) -> dict[str, Any]:
    """Validate ``record.status -> target`` and build the fields to persist.

    Entering ``RUNNING`` starts a new attempt: ``started_at`` is reset,
    the attempt counter advances and output from an earlier attempt is
    cleared. Entering a terminal state stamps ``finished_at``.
    """
    if target not in ALLOWED_TRANSITIONS[record.status]:
        raise InvalidTransition(record.id, record.status, target)
    for name in WRITE_ONCE_FIELDS:
        if name in fields:
            raise InvalidTransition(record.id, record.status, target, f"{name} is write-once")

    now = now or utcnow()
    updates: dict[str, Any] = {"status": target}
    if target is ExecutionStatus.RUNNING:
        updates.update(
            started_at=max(now, record.queued_at),
            attempts=record.attempts + 1,
            stdout=None,
            stderr=None,
            awaiting_retry=False,
        )
    else:
        earliest = record.started_at or record.queued_at
        updates.update(finished_at=max(now, earliest), awaiting_retry=False)
    updates.update(fields)
    return updates
