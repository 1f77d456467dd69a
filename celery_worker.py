# celery -A celery_worker.celery worker --beat
from livecode import create_app
from livecode.celery_app import celery

app = create_app()
app.app_context().push()

# Import tasks to register them with Celery
from livecode.tasks import execution_tasks  # noqa: E402,F401
