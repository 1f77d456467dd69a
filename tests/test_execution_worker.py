import threading
import uuid
from datetime import timedelta

import pytest

from conftest import FakeClock, FakeRunner
from livecode.models.execution_record import ExecutionRecord, ExecutionStatus
from livecode.repositories.execution_repository import InMemoryExecutionRepository
from livecode.services.execution_queue import InMemoryExecutionQueue
from livecode.services.execution_worker import ExecutionWorker
from livecode.services.sandbox_runner import InfrastructureFailure, RuntimeFailure, Success, Timeout
from livecode.services.supervisor import JobResult, RetrySupervisor


class Harness:
    def __init__(self, *outcomes, job_timeout_seconds=60):
        self.clock = FakeClock()
        self.repository = InMemoryExecutionRepository()
        self.queue = InMemoryExecutionQueue()
        self.runner = FakeRunner(*outcomes)
        self.supervisor = RetrySupervisor(
            self.repository, self.queue,
            max_attempts=3, job_timeout_seconds=60, stale_grace_seconds=30, clock=self.clock,
        )
        self.worker = ExecutionWorker(
            self.repository, self.runner, self.supervisor,
            job_timeout_seconds=job_timeout_seconds, clock=self.clock,
        )

    def queued(self, code="print('Hello World')", language="python", **fields):
        record = ExecutionRecord(
            session_id=uuid.uuid4(), code_snapshot=code, language=language, queued_at=self.clock(), **fields
        )
        return self.repository.create(record)

    def get(self, record):
        return self.repository.get(record.id)


def test_success_completes_with_output():
    h = Harness(Success("Hello World\n", "", 37))
    record = h.queued()

    assert h.worker.process(record.id) is JobResult.FINISHED

    done = h.get(record)
    assert done.status is ExecutionStatus.COMPLETED
    assert done.stdout == "Hello World\n"
    assert done.stderr == ""
    assert done.execution_time_ms == 37
    assert done.attempts == 1
    assert done.queued_at <= done.started_at <= done.finished_at
    assert h.runner.calls == [("print('Hello World')", "python")]


def test_runtime_failure_is_terminal_failed():
    h = Harness(RuntimeFailure("Traceback ...\nZeroDivisionError", "partial\n", 15, 1))
    record = h.queued("1/0")

    assert h.worker.process(record.id) is JobResult.FINISHED

    done = h.get(record)
    assert done.status is ExecutionStatus.FAILED
    assert "ZeroDivisionError" in done.stderr
    assert done.stdout == "partial\n"
    assert done.execution_time_ms == 15
    assert h.queue.pending() == []


def test_sandbox_timeout_is_terminal_and_not_retried():
    h = Harness(Timeout("Execution timed out after 10 seconds.\n", "", 10_050))
    record = h.queued("while True: pass")

    assert h.worker.process(record.id) is JobResult.FINISHED

    done = h.get(record)
    assert done.status is ExecutionStatus.TIMEOUT
    assert done.execution_time_ms >= 10_000
    assert done.finished_at is not None
    assert len(h.runner.calls) == 1
    assert h.queue.pending() == []


def test_unsupported_language_fails_fast_without_runner():
    h = Harness()
    record = h.queued("puts 1", language="ruby")

    assert h.worker.process(record.id) is JobResult.FINISHED

    done = h.get(record)
    assert done.status is ExecutionStatus.FAILED
    assert done.stderr == "Unsupported language: ruby"
    assert done.attempts == 0
    assert done.finished_at is not None
    assert h.runner.calls == []


def test_infrastructure_failure_retries_then_succeeds():
    h = Harness(InfrastructureFailure("Cannot connect to the Docker daemon"), Success("ok\n", "", 20))
    record = h.queued()

    assert h.worker.process(record.id) is JobResult.RETRY
    pending = h.get(record)
    assert pending.status is ExecutionStatus.RUNNING
    assert pending.awaiting_retry is True
    assert h.queue.dequeue(0) == str(record.id)

    h.clock.advance(5)
    assert h.worker.process(record.id) is JobResult.FINISHED
    done = h.get(record)
    assert done.status is ExecutionStatus.COMPLETED
    assert done.attempts == 2
    assert done.started_at == h.clock.now


def test_retries_exhausted_after_three_attempts():
    h = Harness(*[InfrastructureFailure("engine unavailable")] * 3)
    record = h.queued()

    results = [h.worker.process(record.id) for _ in range(3)]

    assert results == [JobResult.RETRY, JobResult.RETRY, JobResult.EXHAUSTED]
    done = h.get(record)
    assert done.status is ExecutionStatus.FAILED
    assert done.stderr == "Job failed after 3 attempts: engine unavailable"
    assert done.attempts == 3
    assert done.finished_at is not None
    assert len(h.runner.calls) == 3


def test_runner_crash_counts_as_failed_attempt():
    h = Harness(RuntimeError("boom"))
    record = h.queued()

    assert h.worker.process(record.id) is JobResult.RETRY
    assert h.get(record).awaiting_retry is True


def test_job_deadline_abandons_attempt_and_drops_late_result():
    release = threading.Event()

    def hang(code, language):
        release.wait(5)
        return Success("late\n", "", 1)

    h = Harness(hang, job_timeout_seconds=0.05)
    record = h.queued()

    assert h.worker.process(record.id) is JobResult.RETRY
    release.set()

    abandoned = h.get(record)
    assert abandoned.status is ExecutionStatus.RUNNING
    assert abandoned.stdout is None


def test_missing_execution_is_dropped():
    h = Harness()
    assert h.worker.process(uuid.uuid4()) is JobResult.MISSING
    assert h.runner.calls == []


def test_duplicate_delivery_of_finished_job_is_ignored():
    h = Harness(Success("1\n", "", 5))
    record = h.queued()
    h.worker.process(record.id)

    assert h.worker.process(record.id) is JobResult.SKIPPED
    assert len(h.runner.calls) == 1
    assert h.get(record).stdout == "1\n"


def test_delivery_of_job_running_elsewhere_is_ignored():
    h = Harness()
    record = h.queued()
    h.repository.update_fields(record.id, {"status": ExecutionStatus.RUNNING, "attempts": 1,
                                           "started_at": h.clock()})

    assert h.worker.process(record.id) is JobResult.SKIPPED
    assert h.runner.calls == []


def test_result_discarded_when_record_swept_during_run():
    h = Harness()
    record = h.queued()

    def swept_while_running(code, language):
        h.repository.update_fields(record.id, {"status": ExecutionStatus.FAILED, "stderr": "abandoned"})
        return Success("late\n", "", 5)

    h.runner.outcomes = [swept_while_running]

    assert h.worker.process(record.id) is JobResult.SUPERSEDED
    assert h.get(record).stderr == "abandoned"


def test_sweep_fails_stale_running_records():
    h = Harness()
    stale = h.queued()
    h.repository.update_fields(stale.id, {"status": ExecutionStatus.RUNNING, "attempts": 1,
                                          "started_at": h.clock()})
    h.clock.advance(91)

    report = h.supervisor.recover_stale()

    assert report.failed == [stale.id]
    swept = h.get(stale)
    assert swept.status is ExecutionStatus.FAILED
    assert swept.finished_at == h.clock.now
    assert "job ceiling" in swept.stderr
    assert h.queue.pending() == []


def test_sweep_leaves_recent_running_records_alone():
    h = Harness()
    record = h.queued()
    h.repository.update_fields(record.id, {"status": ExecutionStatus.RUNNING, "attempts": 1,
                                           "started_at": h.clock()})
    h.clock.advance(60)

    assert h.supervisor.recover_stale().failed == []
    assert h.get(record).status is ExecutionStatus.RUNNING


def test_sweep_requeues_stale_queued_records():
    h = Harness()
    record = h.queued()
    h.clock.advance(121)

    report = h.supervisor.recover_stale()

    assert report.requeued == [record.id]
    assert h.queue.pending() == [str(record.id)]
    assert h.get(record).status is ExecutionStatus.QUEUED


@pytest.mark.parametrize("attempts", [3, 4])
def test_redelivery_beyond_budget_fails_without_running(attempts):
    h = Harness()
    record = h.queued()
    h.repository.update_fields(record.id, {"status": ExecutionStatus.RUNNING, "attempts": attempts,
                                           "awaiting_retry": True, "started_at": h.clock()})

    assert h.worker.process(record.id) is JobResult.EXHAUSTED
    assert h.get(record).status is ExecutionStatus.FAILED
    assert h.runner.calls == []


def test_sweep_requeues_pending_retry_instead_of_failing_it():
    h = Harness(InfrastructureFailure("daemon restarting"), Success("ok\n", "", 12))
    record = h.queued()
    assert h.worker.process(record.id) is JobResult.RETRY
    assert h.queue.dequeue(0) == str(record.id)
    h.clock.advance(91)

    report = h.supervisor.recover_stale()

    assert report.failed == []
    assert report.requeued == [record.id]
    assert h.get(record).status is ExecutionStatus.RUNNING
    assert h.worker.process(record.id) is JobResult.FINISHED
    done = h.get(record)
    assert done.status is ExecutionStatus.COMPLETED
    assert done.attempts == 2


def test_pending_retry_swept_late_still_ends_with_exhaustion_message():
    h = Harness(*[InfrastructureFailure("engine unavailable")] * 3)
    record = h.queued()

    for _ in range(3):
        h.worker.process(record.id)
        h.clock.advance(91)
        h.supervisor.recover_stale()

    done = h.get(record)
    assert done.status is ExecutionStatus.FAILED
    assert done.attempts == 3
    assert done.stderr == "Job failed after 3 attempts: engine unavailable"
