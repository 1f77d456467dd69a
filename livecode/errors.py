class LiveCodeError(Exception):
    """Base class for errors raised by the execution subsystem."""


class InvalidTransition(LiveCodeError):
    def __init__(self, execution_id, current, target, reason=None):
        self.execution_id = execution_id
        self.current = current
        self.target = target
        message = f"Execution {execution_id}: illegal transition {current.value} → {target.value}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class DuplicateActiveExecution(LiveCodeError):
    """The store refused a second active execution for one session."""

    def __init__(self, existing):
        self.existing = existing
        super().__init__(f"Session {existing.session_id} already has execution {existing.id} ({existing.status.value})")


class AdmissionLockTimeout(LiveCodeError):
    def __init__(self, session_id):
        self.session_id = session_id
        super().__init__(f"Timed out waiting for the admission lock of session {session_id}")


class QueueError(LiveCodeError):
    pass


class JobDeadlineExceeded(LiveCodeError):
    def __init__(self, execution_id, seconds):
        self.execution_id = execution_id
        self.seconds = seconds
        super().__init__(f"Job for execution {execution_id} exceeded the {seconds}s job ceiling")
