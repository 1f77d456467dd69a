"""At-least-once queues carrying execution ids from admission to workers.

The payload is always the bare execution id; workers re-read the record.
Pull queues (``memory``, ``redis``) expose dequeue/ack/nack and are
drained by :class:`livecode.tasks.worker_pool.WorkerPool`. The Celery
queue pushes to Celery workers, which consume it themselves.
"""
import logging
import queue
import threading
from collections import Counter
from typing import Optional, Protocol

from kombu.exceptions import OperationalError
from redis.exceptions import RedisError

from livecode.errors import QueueError

logger = logging.getLogger(__name__)


class ExecutionQueue(Protocol):
    def enqueue(self, execution_id) -> None: ...

    def dequeue(self, timeout: float = 1.0) -> Optional[str]: ...

    def ack(self, execution_id) -> None: ...

    def nack(self, execution_id) -> None: ...


class InMemoryExecutionQueue:
    def __init__(self):
        self._items: "queue.Queue[str]" = queue.Queue()
        self._in_flight: Counter = Counter()
        self._lock = threading.Lock()

    def enqueue(self, execution_id):
        self._items.put(str(execution_id))
        logger.debug(f"Enqueued execution {execution_id}")

    def dequeue(self, timeout=1.0):
        try:
            if timeout:
                execution_id = self._items.get(timeout=timeout)
            else:
                execution_id = self._items.get_nowait()
        except queue.Empty:
            return None
        with self._lock:
            self._in_flight[execution_id] += 1
        return execution_id

    def ack(self, execution_id):
        self._settle(str(execution_id))

    def nack(self, execution_id):
        self._settle(str(execution_id))
        self._items.put(str(execution_id))

    def pending(self) -> list[str]:
        with self._items.mutex:
            return list(self._items.queue)

    def in_flight(self) -> int:
        with self._lock:
            return sum(self._in_flight.values())

    def _settle(self, execution_id):
        with self._lock:
            self._in_flight[execution_id] -= 1
            if self._in_flight[execution_id] <= 0:
                del self._in_flight[execution_id]


class RedisExecutionQueue:
    """Reliable list: ids move atomically to a processing list until acked."""

    def __init__(self, client, name: str = "livecode:executions"):
        self.client = client
        self.pending_key = name
        self.processing_key = f"{name}:processing"

    def enqueue(self, execution_id):
        try:
            self.client.lpush(self.pending_key, str(execution_id))
        except RedisError as exc:
            raise QueueError(f"Could not enqueue execution {execution_id}: {exc}") from exc

    def dequeue(self, timeout=1.0):
        value = self.client.blmove(self.pending_key, self.processing_key, timeout, "RIGHT", "LEFT")
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else value

    def ack(self, execution_id):
        self.client.lrem(self.processing_key, 1, str(execution_id))

    def nack(self, execution_id):
        pipe = self.client.pipeline(transaction=True)
        pipe.lrem(self.processing_key, 1, str(execution_id))
        pipe.rpush(self.pending_key, str(execution_id))
        pipe.execute()

    def restore_in_flight(self) -> int:
        """Requeue ids left in the processing list by a crashed worker."""
        restored = 0
        while self.client.lmove(self.processing_key, self.pending_key, "RIGHT", "RIGHT") is not None:
            restored += 1
        if restored:
            logger.warning(f"Restored {restored} in-flight executions to {self.pending_key}")
        return restored


class CeleryExecutionQueue:
    def __init__(self, task):
        self.task = task

    def enqueue(self, execution_id):
        try:
            self.task.apply_async(args=[str(execution_id)])
        except OperationalError as exc:
            raise QueueError(f"Could not send execution {execution_id} to Celery: {exc}") from exc
        logger.info(f"📤 Task sent to Celery for execution {execution_id}")

    def dequeue(self, timeout=1.0):
        raise QueueError("Celery workers consume this queue; run `celery worker` instead of a pull worker")

    def ack(self, execution_id):
        # acks_late: Celery acknowledges once the task returns
        pass

    def nack(self, execution_id):
        self.enqueue(execution_id)
