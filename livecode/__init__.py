import logging
import click
from flask import Flask, jsonify
from livecode.config import Config
from livecode.models.db import db
from livecode.celery_app import init_celery
from livecode.api import create_api
from livecode.services.wiring import init_services
from livecode.tasks.worker_pool import WorkerPool

logger = logging.getLogger(__name__)


def create_app(config_object=Config, **service_overrides):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s',
    )

    db.init_app(app)
    init_celery(app)

    with app.app_context():
        from livecode.models import problem_model, code_sessions_model, execution_model  # noqa: F401
        db.create_all()

    services = init_services(app, **service_overrides)

    api = create_api()
    api.init_app(app)

    from livecode.routes.session_api import ns as session_ns
    from livecode.routes.execution_api import ns as execution_ns
    from livecode.routes.problem_api import ns as problem_ns
    api.add_namespace(session_ns, path='/code-sessions')
    api.add_namespace(execution_ns, path='/executions')
    api.add_namespace(problem_ns, path='/problems')

    app.extensions['livecode_worker_pool'] = WorkerPool(
        app,
        services.queue,
        services.worker,
        services.supervisor,
        size=app.config['WORKER_POOL_SIZE'],
        sweep_interval=app.config['STALE_SWEEP_INTERVAL_SECONDS'],
    )
    if app.config['START_LOCAL_WORKERS'] and app.config['QUEUE_BACKEND'] != 'celery':
        app.extensions['livecode_worker_pool'].start()

    register_commands(app)

    @app.route("/health")
    def health():
        return jsonify({"status": "healthy", "queue_backend": app.config['QUEUE_BACKEND']})

    logger.info(f"LiveCode runner ready (queue: {app.config['QUEUE_BACKEND']})")
    return app


def register_commands(app):
    @app.cli.command('seed-problems')
    def seed_problems_command():
        """Insert the starter problems that are missing."""
        from livecode.services.problem_service import ProblemService
        click.echo(f"created={ProblemService.seed_problems()}")

    @app.cli.command('recover-stale')
    def recover_stale_command():
        """Fail abandoned RUNNING executions and re-enqueue stale QUEUED ones."""
        report = app.extensions['livecode_worker_pool'].sweep()
        click.echo(f"failed={len(report.failed)} requeued={len(report.requeued)}")

    @app.cli.command('run-workers')
    def run_workers_command():
        """Run the local worker pool against the redis or memory queue."""
        if app.config['QUEUE_BACKEND'] == 'celery':
            raise click.UsageError("QUEUE_BACKEND is celery; start `celery -A celery_worker.celery worker` instead")
        pool = app.extensions['livecode_worker_pool']
        pool.start()
        click.echo(f"{pool.size} workers running; Ctrl+C to stop")
        try:
            while pool.running:
                pool.wait(1)
        except KeyboardInterrupt:
            pass
        finally:
            pool.stop()
