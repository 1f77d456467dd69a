from celery import Celery

celery = Celery('livecode_runner')


def init_celery(app):
    """Initialize Celery with Flask app context"""
    celery.conf.update(
        broker_url=app.config['CELERY_BROKER_URL'],
        result_backend=app.config['CELERY_RESULT_BACKEND'],
        task_serializer='json',
        result_serializer='json',
        accept_content=['json'],
        timezone='UTC',
        enable_utc=True,
        imports=['livecode.tasks.execution_tasks'],
        # at-least-once: ack after the task body returns, requeue on worker loss
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=app.config['WORKER_POOL_SIZE'],
        task_ignore_result=True,
        beat_schedule={
            'recover-stale-executions': {
                'task': 'recover_stale_executions',
                'schedule': float(app.config['STALE_SWEEP_INTERVAL_SECONDS']),
            },
        },
    )

    class ContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = ContextTask
    return celery
