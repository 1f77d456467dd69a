"""Admission control for new run requests.

A request is admitted only when the session is under its rate window and
has no execution in flight. The duplicate check and the insert run under
one per-session lock; the store's unique guard backs it up across
processes, and its conflict is reported as ``DuplicateInProgress``.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Union

from redis.exceptions import RedisError

from livecode.errors import AdmissionLockTimeout, DuplicateActiveExecution, QueueError
from livecode.models.execution_record import ExecutionRecord, ExecutionStatus, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionInfo:
    id: uuid.UUID
    language: Optional[str]
    source_code: str = ""


class SessionLookup(Protocol):
    def get_session_info(self, session_id) -> Optional[SessionInfo]: ...


@dataclass(frozen=True)
class Admitted:
    execution_id: uuid.UUID
    status: ExecutionStatus = ExecutionStatus.QUEUED


@dataclass(frozen=True)
class RateLimited:
    retry_after_seconds: int


@dataclass(frozen=True)
class DuplicateInProgress:
    existing_execution_id: uuid.UUID
    existing_status: ExecutionStatus


@dataclass(frozen=True)
class SessionNotFound:
    session_id: object


@dataclass(frozen=True)
class AdmissionUnavailable:
    message: str


AdmissionResult = Union[Admitted, RateLimited, DuplicateInProgress, SessionNotFound, AdmissionUnavailable]


class AdmissionController:
    def __init__(self, repository, queue, rate_limiter, locks, sessions: SessionLookup, *,
                 default_language: str = "python", clock: Callable = utcnow):
        self.repository = repository
        self.queue = queue
        self.rate_limiter = rate_limiter
        self.locks = locks
        self.sessions = sessions
        self.default_language = default_language
        self.clock = clock

    def admit(self, session_id, submitted_code: str) -> AdmissionResult:
        session = self.sessions.get_session_info(session_id)
        if session is None:
            logger.error(f"❌ Session {session_id} not found")
            return SessionNotFound(session_id)

        try:
            decision = self.rate_limiter.hit(str(session.id))
        except RedisError as exc:
            logger.error(f"Rate limiter unavailable for session {session.id}: {exc}")
            return AdmissionUnavailable("Rate limiter unavailable; try again shortly")
        if not decision.allowed:
            logger.warning(
                f"Session {session.id} rate limited: {decision.count} runs in window, "
                f"retry after {decision.retry_after_seconds}s"
            )
            return RateLimited(decision.retry_after_seconds)

        record = None
        try:
            with self.locks.hold(str(session.id)):
                record = self._create(session, submitted_code)
        except AdmissionLockTimeout as exc:
            logger.error(str(exc))
            return AdmissionUnavailable(str(exc))
        except DuplicateActiveExecution as exc:
            return self._duplicate(exc.existing)
        except RedisError as exc:
            if record is None:
                logger.error(f"Admission lock unavailable for session {session.id}: {exc}")
                return AdmissionUnavailable("Admission lock unavailable; try again shortly")
            # created before the release failed; the lock expires on its own
            logger.warning(f"Admission lock release failed for session {session.id}: {exc}")

        if isinstance(record, DuplicateInProgress):
            return record

        try:
            self.queue.enqueue(record.id)
        except QueueError as exc:
            # record stays QUEUED; the recovery sweep re-enqueues it
            logger.error(f"Execution {record.id} persisted but not queued: {exc}")
        return Admitted(record.id)

    def _create(self, session: SessionInfo, submitted_code: str):
        active = self.repository.find_active_by_session(session.id)
        if active is not None:
            return self._duplicate(active)

        record = self.repository.create(ExecutionRecord(
            session_id=session.id,
            code_snapshot=submitted_code,
            language=(session.language or self.default_language).lower(),
            queued_at=self.clock(),
        ))
        logger.info(f"📝 Execution {record.id} created with status QUEUED at {record.queued_at}")
        return record

    @staticmethod
    def _duplicate(existing: ExecutionRecord) -> DuplicateInProgress:
        logger.info(f"Session {existing.session_id} already has execution {existing.id} ({existing.status.value})")
        return DuplicateInProgress(existing.id, existing.status)
