"""Process one delivered execution id: claim, run, record the outcome."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable

from livecode.errors import JobDeadlineExceeded
from livecode.models.execution_record import ExecutionRecord, ExecutionStatus, transition, utcnow
from livecode.services.sandbox_runner import (
    InfrastructureFailure,
    RuntimeFailure,
    SandboxOutcome,
    Success,
    Timeout,
    UnsupportedLanguage,
)
from livecode.services.supervisor import JobResult, RetrySupervisor

logger = logging.getLogger(__name__)


class ExecutionWorker:
    def __init__(self, repository, runner, supervisor: RetrySupervisor, *,
                 job_timeout_seconds: int = 60, clock: Callable = utcnow):
        self.repository = repository
        self.runner = runner
        self.supervisor = supervisor
        self.job_timeout_seconds = job_timeout_seconds
        self.clock = clock

    def process(self, execution_id) -> JobResult:
        record = self.repository.get(execution_id)
        if record is None:
            logger.error(f"Execution {execution_id} not found; dropping job")
            return JobResult.MISSING

        if record.status.is_terminal:
            logger.info(f"Execution {record.id} already {record.status.value}; ignoring duplicate delivery")
            return JobResult.SKIPPED
        if record.status is ExecutionStatus.RUNNING and not record.awaiting_retry:
            logger.warning(f"Execution {record.id} is already RUNNING elsewhere; ignoring delivery")
            return JobResult.SKIPPED

        if not self.runner.supports(record.language):
            # fail fast, no attempt consumed
            return self._finish(record, UnsupportedLanguage(record.language))

        if record.attempts >= self.supervisor.max_attempts:
            return self.supervisor.exhaust(record, "no attempts left")

        claimed = self.repository.update_fields(
            record.id,
            transition(record, ExecutionStatus.RUNNING, self.clock()),
            expected={"status": record.status, "attempts": record.attempts},
        )
        if claimed is None:
            logger.info(f"Execution {record.id} was claimed by another worker")
            return JobResult.SKIPPED
        logger.info(
            f"Execution {claimed.id}: {record.status.value} → RUNNING "
            f"(attempt {claimed.attempts}/{self.supervisor.max_attempts})"
        )

        try:
            outcome = self._run_with_deadline(claimed)
        except JobDeadlineExceeded as exc:
            logger.error(str(exc))
            return self.supervisor.attempt_failed(claimed, str(exc))

        if isinstance(outcome, InfrastructureFailure):
            return self.supervisor.attempt_failed(claimed, outcome.message)
        return self._finish(claimed, outcome)

    def _run_with_deadline(self, record: ExecutionRecord) -> SandboxOutcome:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sandbox")
        future = executor.submit(self.runner.run, record.code_snapshot, record.language)
        try:
            return future.result(timeout=self.job_timeout_seconds)
        except FutureTimeout:
            raise JobDeadlineExceeded(record.id, self.job_timeout_seconds) from None
        except Exception as exc:
            logger.exception(f"Sandbox runner crashed for execution {record.id}")
            return InfrastructureFailure(f"Sandbox runner crashed: {exc}")
        finally:
            executor.shutdown(wait=False)

    def _finish(self, record: ExecutionRecord, outcome: SandboxOutcome) -> JobResult:
        if isinstance(outcome, Success):
            target, fields = ExecutionStatus.COMPLETED, dict(
                stdout=outcome.stdout, stderr=outcome.stderr, execution_time_ms=outcome.elapsed_ms)
        elif isinstance(outcome, RuntimeFailure):
            target, fields = ExecutionStatus.FAILED, dict(
                stdout=outcome.stdout, stderr=outcome.stderr, execution_time_ms=outcome.elapsed_ms)
        elif isinstance(outcome, Timeout):
            target, fields = ExecutionStatus.TIMEOUT, dict(
                stdout=outcome.partial_stdout, stderr=outcome.partial_stderr, execution_time_ms=outcome.elapsed_ms)
        else:
            target, fields = ExecutionStatus.FAILED, dict(stdout="", stderr=outcome.message)

        updated = self.repository.update_fields(
            record.id,
            transition(record, target, self.clock(), **fields),
            expected={"status": record.status, "attempts": record.attempts},
        )
        if updated is None:
            logger.warning(f"Execution {record.id} changed while running; {target.value} result discarded")
            return JobResult.SUPERSEDED

        logger.info(
            f"Execution {record.id} lifecycle: QUEUED({updated.queued_at}) → "
            f"RUNNING({updated.started_at}) → {updated.status.value}({updated.finished_at})"
        )
        return JobResult.FINISHED
