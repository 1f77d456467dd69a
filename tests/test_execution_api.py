import uuid

from redis.exceptions import ConnectionError as RedisConnectionError

from livecode.errors import DuplicateActiveExecution
from livecode.models.execution_record import ExecutionRecord, ExecutionStatus
from livecode.repositories.execution_repository import SqlAlchemyExecutionRepository
from livecode.services.sandbox_runner import RuntimeFailure, Success, Timeout

import pytest


def run(client, session_id, code="print('Hello World')"):
    return client.post(f'/api/v1/code-sessions/{session_id}/run', json={'code': code})


def poll(client, execution_id):
    response = client.get(f'/api/v1/executions/{execution_id}')
    assert response.status_code == 200
    return response.get_json()


def test_run_is_accepted_and_queued(client, services, session_id):
    response = run(client, session_id)

    assert response.status_code == 202
    body = response.get_json()
    assert body['status'] == 'QUEUED'
    assert services.queue.pending() == [body['execution_id']]

    polled = poll(client, body['execution_id'])
    assert polled['status'] == 'QUEUED'
    assert polled['stdout'] is None
    assert polled['execution_time_ms'] is None


def test_hello_world_completes(client, pool, fake_runner, session_id):
    fake_runner.outcomes = [Success("Hello World\n", "", 412)]
    execution_id = run(client, session_id).get_json()['execution_id']

    pool.drain()

    body = poll(client, execution_id)
    assert body['status'] == 'COMPLETED'
    assert body['stdout'] == "Hello World\n"
    assert body['stderr'] == ""
    assert body['execution_time_ms'] > 0
    assert body['started_at'] and body['finished_at']
    assert fake_runner.calls == [("print('Hello World')", "python")]


def test_infinite_loop_times_out(client, pool, fake_runner, session_id):
    fake_runner.outcomes = [Timeout("Execution timed out after 10 seconds.\n", "", 10_030)]
    execution_id = run(client, session_id, "while True: pass").get_json()['execution_id']

    pool.drain()

    body = poll(client, execution_id)
    assert body['status'] == 'TIMEOUT'
    assert body['execution_time_ms'] >= 10_000
    assert body['finished_at'] is not None


def test_runtime_error_is_failed(client, pool, fake_runner, session_id):
    fake_runner.outcomes = [RuntimeFailure("ZeroDivisionError: division by zero\n", "", 30, 1)]
    execution_id = run(client, session_id, "1/0").get_json()['execution_id']

    pool.drain()

    body = poll(client, execution_id)
    assert body['status'] == 'FAILED'
    assert "ZeroDivisionError" in body['stderr']


def test_second_run_while_queued_conflicts(client, services, session_id):
    first = run(client, session_id).get_json()

    response = run(client, session_id, "print('again')")

    assert response.status_code == 409
    body = response.get_json()
    assert body['execution_id'] == first['execution_id']
    assert body['status'] == 'QUEUED'
    assert body['message']
    listed = client.get(f'/api/v1/executions/session/{session_id}').get_json()
    assert len(listed['executions']) == 1


def test_eleventh_run_in_window_is_rate_limited(client, pool, session_id):
    for _ in range(10):
        assert run(client, session_id).status_code == 202
        pool.drain()

    response = run(client, session_id)

    assert response.status_code == 429
    body = response.get_json()
    assert body['retry_after'] > 0
    assert response.headers['Retry-After'] == str(body['retry_after'])
    listed = client.get(f'/api/v1/executions/session/{session_id}').get_json()
    assert len(listed['executions']) == 10


def test_snapshot_ignores_later_session_edits(app, client, pool, fake_runner, services, session_id):
    execution_id = run(client, session_id, "print('v1')").get_json()['execution_id']

    patched = client.patch(f'/api/v1/code-sessions/{session_id}', json={'source_code': "print('v2')"})
    assert patched.status_code == 200
    pool.drain()

    with app.app_context():
        assert services.repository.get(execution_id).code_snapshot == "print('v1')"
    assert fake_runner.calls == [("print('v1')", "python")]


def test_run_without_code_uses_session_source(client, pool, fake_runner, session_id):
    assert client.post(f'/api/v1/code-sessions/{session_id}/run').status_code == 202
    pool.drain()
    assert fake_runner.calls == [('print("draft")', "python")]


def test_unsupported_language_fails_without_sandbox(client, pool, fake_runner):
    session_id = client.post('/api/v1/code-sessions', json={'language': 'ruby', 'source_code': 'puts 1'}) \
        .get_json()['session_id']

    execution_id = run(client, session_id, "puts 1").get_json()['execution_id']
    pool.drain()

    body = poll(client, execution_id)
    assert body['status'] == 'FAILED'
    assert body['stderr'] == "Unsupported language: ruby"
    assert fake_runner.calls == []


def test_run_for_unknown_session_is_404(client):
    assert run(client, uuid.uuid4()).status_code == 404


def test_non_string_code_is_rejected(client, session_id):
    response = client.post(f'/api/v1/code-sessions/{session_id}/run', json={'code': 42})
    assert response.status_code == 400


@pytest.mark.parametrize("execution_id", [str(uuid.uuid4()), "not-a-uuid"])
def test_unknown_execution_is_404(client, execution_id):
    assert client.get(f'/api/v1/executions/{execution_id}').status_code == 404


def test_session_executions_are_listed_newest_first(client, pool, session_id):
    first = run(client, session_id).get_json()['execution_id']
    pool.drain()
    second = run(client, session_id).get_json()['execution_id']

    listed = client.get(f'/api/v1/executions/session/{session_id}').get_json()

    assert [e['execution_id'] for e in listed['executions']] == [second, first]
    assert listed['executions'][1]['status'] == 'COMPLETED'


def test_session_crud(client, session_id):
    body = client.get(f'/api/v1/code-sessions/{session_id}').get_json()
    assert body['language'] == 'python'
    assert body['source_code'] == 'print("draft")'
    assert client.get(f'/api/v1/code-sessions/{uuid.uuid4()}').status_code == 404
    assert client.patch(f'/api/v1/code-sessions/{uuid.uuid4()}', json={'source_code': 'x'}).status_code == 404


def test_health(client):
    assert client.get('/health').get_json()['status'] == 'healthy'


def test_database_refuses_second_active_execution(app):
    repository = SqlAlchemyExecutionRepository()
    session_id = uuid.uuid4()
    with app.app_context():
        first = repository.create(ExecutionRecord(session_id=session_id, code_snapshot="a", language="python"))

        with pytest.raises(DuplicateActiveExecution) as excinfo:
            repository.create(ExecutionRecord(session_id=session_id, code_snapshot="b", language="python"))
        assert excinfo.value.existing.id == first.id

        repository.update_fields(first.id, {"status": ExecutionStatus.COMPLETED})
        second = repository.create(ExecutionRecord(session_id=session_id, code_snapshot="b", language="python"))
        assert repository.find_active_by_session(session_id).id == second.id


def test_sql_update_fields_is_compare_and_set(app):
    repository = SqlAlchemyExecutionRepository()
    with app.app_context():
        record = repository.create(ExecutionRecord(session_id=uuid.uuid4(), code_snapshot="a", language="python"))

        assert repository.update_fields(record.id, {"status": ExecutionStatus.RUNNING},
                                        expected={"status": ExecutionStatus.COMPLETED}) is None
        updated = repository.update_fields(record.id, {"status": ExecutionStatus.RUNNING, "attempts": 1},
                                           expected={"status": ExecutionStatus.QUEUED, "attempts": 0})
        assert updated.status is ExecutionStatus.RUNNING
        assert updated.attempts == 1


def test_rate_limiter_outage_is_503(client, services, session_id):
    class Unreachable:
        def hit(self, key):
            raise RedisConnectionError("Connection refused")

    services.admission.rate_limiter = Unreachable()

    response = run(client, session_id)

    assert response.status_code == 503
    assert response.get_json()['message']
