"""Retry budget, exhaustion and the stale-record recovery sweep."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable

from livecode.errors import InvalidTransition, QueueError
from livecode.models.execution_record import ExecutionRecord, ExecutionStatus, transition, utcnow

logger = logging.getLogger(__name__)


class JobResult(str, enum.Enum):
    FINISHED = "finished"
    RETRY = "retry"
    EXHAUSTED = "exhausted"
    MISSING = "missing"
    SKIPPED = "skipped"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class JobRetriesExhausted:
    attempts: int
    last_error: str

    @property
    def message(self) -> str:
        return f"Job failed after {self.attempts} attempts: {self.last_error}"


@dataclass
class SweepReport:
    failed: list = field(default_factory=list)
    requeued: list = field(default_factory=list)


class RetrySupervisor:
    def __init__(self, repository, queue, *, max_attempts: int = 3, job_timeout_seconds: int = 60,
                 stale_grace_seconds: int = 30, queued_redelivery_seconds: int = 120,
                 clock: Callable = utcnow):
        self.repository = repository
        self.queue = queue
        self.max_attempts = max_attempts
        self.job_timeout_seconds = job_timeout_seconds
        self.stale_grace_seconds = stale_grace_seconds
        self.queued_redelivery_seconds = queued_redelivery_seconds
        self.clock = clock

    def attempt_failed(self, record: ExecutionRecord, reason: str) -> JobResult:
        """Schedule another attempt, or finalize once the budget is spent."""
        if record.attempts >= self.max_attempts:
            return self.exhaust(record, reason)

        updated = self.repository.update_fields(
            record.id,
            {"awaiting_retry": True},
            expected={"status": ExecutionStatus.RUNNING, "attempts": record.attempts},
        )
        if updated is None:
            logger.warning(f"Execution {record.id} changed before its retry could be scheduled")
            return JobResult.SUPERSEDED

        logger.warning(
            f"Execution {record.id}: attempt {record.attempts}/{self.max_attempts} failed ({reason}); retrying"
        )
        try:
            self.queue.enqueue(record.id)
        except QueueError as exc:
            # still awaiting_retry; recover_stale re-enqueues it
            logger.error(f"Execution {record.id}: retry could not be queued: {exc}")
        return JobResult.RETRY

    def exhaust(self, record: ExecutionRecord, reason: str) -> JobResult:
        failure = JobRetriesExhausted(record.attempts, reason)
        fields = transition(record, ExecutionStatus.FAILED, self.clock(), stderr=failure.message)
        updated = self.repository.update_fields(
            record.id, fields, expected={"status": record.status, "attempts": record.attempts}
        )
        if updated is None:
            logger.warning(f"Execution {record.id} changed before it could be marked FAILED")
            return JobResult.SUPERSEDED
        logger.error(f"Execution {record.id}: {record.status.value} → FAILED ({failure.message})")
        return JobResult.EXHAUSTED

    def recover_stale(self) -> SweepReport:
        """Fail abandoned RUNNING records and re-enqueue forgotten QUEUED ones.

        A RUNNING record flagged ``awaiting_retry`` is between attempts: its
        ``started_at`` belongs to the failed attempt, so it is re-enqueued
        with its remaining budget instead of being failed.
        """
        now = self.clock()
        report = SweepReport()

        running_cutoff = now - timedelta(seconds=self.job_timeout_seconds + self.stale_grace_seconds)
        for record in self.repository.find_stale(ExecutionStatus.RUNNING, running_cutoff):
            if record.awaiting_retry:
                if self._redeliver(record, f"retry pending since attempt {record.attempts}"):
                    report.requeued.append(record.id)
                continue
            message = (
                f"Execution abandoned: no result within the {self.job_timeout_seconds}s job ceiling "
                f"(attempt {record.attempts})"
            )
            try:
                fields = transition(record, ExecutionStatus.FAILED, now, stderr=message)
            except InvalidTransition as exc:
                logger.error(str(exc))
                continue
            updated = self.repository.update_fields(
                record.id, fields,
                expected={"status": ExecutionStatus.RUNNING, "attempts": record.attempts, "awaiting_retry": False},
            )
            if updated is not None:
                logger.error(f"Execution {record.id}: RUNNING → FAILED (stale since {record.started_at})")
                report.failed.append(record.id)

        queued_cutoff = now - timedelta(seconds=self.queued_redelivery_seconds)
        for record in self.repository.find_stale(ExecutionStatus.QUEUED, queued_cutoff):
            if self._redeliver(record, f"still QUEUED since {record.queued_at}"):
                report.requeued.append(record.id)

        if report.failed or report.requeued:
            logger.info(f"Stale sweep: {len(report.failed)} failed, {len(report.requeued)} re-enqueued")
        return report

    def _redeliver(self, record: ExecutionRecord, why: str) -> bool:
        try:
            self.queue.enqueue(record.id)
        except QueueError as exc:
            logger.error(f"Execution {record.id}: redelivery failed: {exc}")
            return False
        logger.warning(f"Execution {record.id} {why}; re-enqueued")
        return True
