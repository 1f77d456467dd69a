"""Thread-based worker pool for the pull queues (``memory`` and ``redis``).

A fixed number of threads dequeue execution ids and hand them to the
``ExecutionWorker``; a separate thread runs the stale-record sweep on an
interval. Every job runs inside its own Flask application context so each
thread gets its own database session.
"""
import logging
import threading

logger = logging.getLogger(__name__)


class WorkerPool:
    def __init__(self, app, queue, worker, supervisor, size=4, poll_timeout=1.0, sweep_interval=60):
        if size < 1:
            raise ValueError("Worker pool size must be at least 1")
        self.app = app
        self.queue = queue
        self.worker = worker
        self.supervisor = supervisor
        self.size = size
        self.poll_timeout = poll_timeout
        self.sweep_interval = sweep_interval
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self):
        return bool(self._threads) and not self._stop.is_set()

    def start(self):
        if self.running:
            logger.warning("Worker pool already running")
            return
        restore = getattr(self.queue, "restore_in_flight", None)
        if restore is not None:
            restore()

        self._stop.clear()
        logger.info(f"Starting {self.size} execution workers (sweep every {self.sweep_interval}s)")
        for index in range(self.size):
            thread = threading.Thread(target=self._work_loop, name=f"execution-worker-{index}", daemon=True)
            thread.start()
            self._threads.append(thread)
        sweeper = threading.Thread(target=self._sweep_loop, name="execution-sweeper", daemon=True)
        sweeper.start()
        self._threads.append(sweeper)

    def stop(self, timeout=5.0):
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("Worker pool stopped")

    def wait(self, timeout):
        """Block until stopped or ``timeout`` elapses; True once stopped."""
        return self._stop.wait(timeout)

    def run_once(self, timeout=0):
        """Process at most one queued id; returns the job result or None."""
        execution_id = self.queue.dequeue(timeout)
        if execution_id is None:
            return None
        try:
            with self.app.app_context():
                result = self.worker.process(execution_id)
        except Exception:
            logger.exception(f"Worker crashed on execution {execution_id}; redelivering")
            self.queue.nack(execution_id)
            raise
        self.queue.ack(execution_id)
        return result

    def drain(self, limit=100):
        """Process queued ids until the queue is empty, in the calling thread."""
        results = []
        for _ in range(limit):
            result = self.run_once()
            if result is None:
                break
            results.append(result)
        return results

    def sweep(self):
        with self.app.app_context():
            return self.supervisor.recover_stale()

    def _work_loop(self):
        while not self._stop.is_set():
            try:
                self.run_once(self.poll_timeout)
            except Exception:
                # already logged and nacked; keep the thread alive
                self._stop.wait(self.poll_timeout)

    def _sweep_loop(self):
        while not self._stop.wait(self.sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Stale execution sweep failed")
