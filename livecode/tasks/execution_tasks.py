import logging
from livecode.celery_app import celery
from livecode.config import Config
from livecode.services.wiring import get_services

logger = logging.getLogger(__name__)


# Retries are decided by RetrySupervisor and re-enqueued explicitly, so
# Celery's own autoretry stays off. The hard limit is a last resort above
# the worker's own job deadline.
@celery.task(name='run_execution_task', max_retries=0, time_limit=Config.JOB_TIMEOUT_SECONDS * 2)
def run_execution_task(execution_id):
    services = get_services()
    result = services.worker.process(execution_id)
    logger.info(f"Job for execution {execution_id} ended: {result.value}")
    return {'execution_id': str(execution_id), 'result': result.value}


@celery.task(name='recover_stale_executions')
def recover_stale_executions():
    report = get_services().supervisor.recover_stale()
    return {
        'failed': [str(execution_id) for execution_id in report.failed],
        'requeued': [str(execution_id) for execution_id in report.requeued],
    }
