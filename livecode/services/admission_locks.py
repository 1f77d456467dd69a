"""Per-session serialization point for admissions."""
import logging
import threading
from contextlib import contextmanager

from redis.exceptions import LockError

from livecode.errors import AdmissionLockTimeout

logger = logging.getLogger(__name__)


class LocalAdmissionLocks:
    """One ``threading.Lock`` per session key, for a single process.

    An entry lives only while someone holds or waits on it.
    """

    def __init__(self, timeout_seconds: float = 5):
        self.timeout_seconds = timeout_seconds
        # key -> [lock, holders and waiters]
        self._locks: dict[str, list] = {}
        self._guard = threading.Lock()

    def tracked_keys(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, session_key: str):
        with self._guard:
            entry = self._locks.setdefault(session_key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            if not entry[0].acquire(timeout=self.timeout_seconds):
                raise AdmissionLockTimeout(session_key)
            try:
                yield
            finally:
                entry[0].release()
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[session_key]


class RedisAdmissionLocks:
    """Redis lock per session key, shared by every API process."""

    def __init__(self, client, timeout_seconds: float = 5, prefix: str = "livecode:admission"):
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.prefix = prefix

    @contextmanager
    def hold(self, session_key: str):
        lock = self.client.lock(
            f"{self.prefix}:{session_key}",
            timeout=self.timeout_seconds * 2,
            blocking_timeout=self.timeout_seconds,
        )
        if not lock.acquire():
            raise AdmissionLockTimeout(session_key)
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                logger.warning(f"Admission lock for session {session_key} expired before release")
