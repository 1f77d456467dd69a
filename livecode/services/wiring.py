"""Build the execution subsystem from Flask config and expose it per app."""
from dataclasses import dataclass
from typing import Any

import redis
from flask import current_app

from livecode.repositories.execution_repository import InMemoryExecutionRepository, SqlAlchemyExecutionRepository
from livecode.services.admission_locks import LocalAdmissionLocks, RedisAdmissionLocks
from livecode.services.admission_service import AdmissionController
from livecode.services.code_session_service import CodeSessionService
from livecode.services.execution_queue import CeleryExecutionQueue, InMemoryExecutionQueue, RedisExecutionQueue
from livecode.services.execution_worker import ExecutionWorker
from livecode.services.rate_limiter import InMemoryRateLimiter, RedisRateLimiter
from livecode.services.sandbox_runner import SandboxRunner
from livecode.services.supervisor import RetrySupervisor

EXTENSION_KEY = "livecode"


@dataclass
class ExecutionServices:
    repository: Any
    queue: Any
    rate_limiter: Any
    locks: Any
    runner: SandboxRunner
    supervisor: RetrySupervisor
    worker: ExecutionWorker
    admission: AdmissionController


def _build_queue(config, redis_client):
    backend = config['QUEUE_BACKEND']
    if backend == 'celery':
        from livecode.tasks.execution_tasks import run_execution_task
        return CeleryExecutionQueue(run_execution_task)
    if backend == 'redis':
        return RedisExecutionQueue(redis_client)
    if backend == 'memory':
        return InMemoryExecutionQueue()
    raise ValueError(f"Unknown QUEUE_BACKEND: {backend}")


def build_services(config, redis_client=None, runner=None, rate_limiter=None) -> ExecutionServices:
    needs_redis = 'redis' in (config['QUEUE_BACKEND'], config['RATE_LIMIT_BACKEND'], config['ADMISSION_LOCK_BACKEND'])
    if redis_client is None and needs_redis:
        redis_client = redis.from_url(config['REDIS_URL'])

    if config['REPOSITORY_BACKEND'] == 'memory':
        repository = InMemoryExecutionRepository()
    else:
        repository = SqlAlchemyExecutionRepository()

    queue = _build_queue(config, redis_client)

    if rate_limiter is None:
        if config['RATE_LIMIT_BACKEND'] == 'redis':
            rate_limiter = RedisRateLimiter(
                redis_client, config['RATE_LIMIT_MAX_RUNS'], config['RATE_LIMIT_WINDOW_SECONDS'])
        else:
            rate_limiter = InMemoryRateLimiter(config['RATE_LIMIT_MAX_RUNS'], config['RATE_LIMIT_WINDOW_SECONDS'])

    if config['ADMISSION_LOCK_BACKEND'] == 'redis':
        locks = RedisAdmissionLocks(redis_client, config['ADMISSION_LOCK_TIMEOUT_SECONDS'])
    else:
        locks = LocalAdmissionLocks(config['ADMISSION_LOCK_TIMEOUT_SECONDS'])

    runner = runner or SandboxRunner(
        docker_binary=config['SANDBOX_DOCKER_BINARY'],
        image=config['SANDBOX_IMAGE'],
        timeout_seconds=config['SANDBOX_TIMEOUT_SECONDS'],
        memory_limit=config['SANDBOX_MEMORY_LIMIT'],
        cpus=config['SANDBOX_CPUS'],
        pids_limit=config['SANDBOX_PIDS_LIMIT'],
        tmpfs_size=config['SANDBOX_TMPFS_SIZE'],
        max_output_size=config['MAX_OUTPUT_SIZE'],
    )
    supervisor = RetrySupervisor(
        repository,
        queue,
        max_attempts=config['JOB_MAX_ATTEMPTS'],
        job_timeout_seconds=config['JOB_TIMEOUT_SECONDS'],
        stale_grace_seconds=config['STALE_GRACE_SECONDS'],
        queued_redelivery_seconds=config['QUEUED_REDELIVERY_SECONDS'],
    )
    worker = ExecutionWorker(repository, runner, supervisor, job_timeout_seconds=config['JOB_TIMEOUT_SECONDS'])
    admission = AdmissionController(
        repository, queue, rate_limiter, locks, CodeSessionService,
        default_language=config['DEFAULT_LANGUAGE'],
    )
    return ExecutionServices(repository, queue, rate_limiter, locks, runner, supervisor, worker, admission)


def init_services(app, **overrides) -> ExecutionServices:
    services = build_services(app.config, **overrides)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services() -> ExecutionServices:
    return current_app.extensions[EXTENSION_KEY]
