"""Pytest configuration and fixtures."""
import threading
import uuid
from datetime import datetime, timedelta

import pytest

from livecode import create_app
from livecode.config import TestingConfig
from livecode.services.admission_service import SessionInfo
from livecode.services.rate_limiter import InMemoryRateLimiter
from livecode.services.sandbox_runner import SandboxRunner, Success


class FakeClock:
    """Settable naive-UTC clock."""

    def __init__(self, start=datetime(2026, 1, 20, 8, 0, 0)):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            return self.now

    def advance(self, seconds):
        with self._lock:
            self.now = self.now + timedelta(seconds=seconds)


class FakeRunner:
    """Sandbox stand-in: returns queued outcomes and records every call."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def supports(self, language):
        return SandboxRunner.supports(language)

    def run(self, code_snapshot, language):
        self.calls.append((code_snapshot, language))
        outcome = self.outcomes.pop(0) if self.outcomes else Success("", "", 1)
        if callable(outcome):
            return outcome(code_snapshot, language)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeSessions:
    def __init__(self):
        self.sessions = {}

    def add(self, language="python", source_code=""):
        info = SessionInfo(id=uuid.uuid4(), language=language, source_code=source_code)
        self.sessions[info.id] = info
        return info

    def get_session_info(self, session_id):
        return self.sessions.get(session_id)


class FastJobConfig(TestingConfig):
    JOB_TIMEOUT_SECONDS = 5


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def app(fake_runner):
    # frozen clock keeps every request of a test inside one rate window
    limiter = InMemoryRateLimiter(max_hits=10, window_seconds=60, clock=lambda: 1_000_000.0)
    app = create_app(FastJobConfig, runner=fake_runner, rate_limiter=limiter)
    yield app
    app.extensions['livecode_worker_pool'].stop(timeout=1)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions['livecode']


@pytest.fixture
def pool(app):
    return app.extensions['livecode_worker_pool']


@pytest.fixture
def session_id(client):
    response = client.post('/api/v1/code-sessions', json={'language': 'python', 'source_code': 'print("draft")'})
    assert response.status_code == 201
    return response.get_json()['session_id']
