import logging
from livecode.services.admission_service import (
    Admitted,
    AdmissionUnavailable,
    DuplicateInProgress,
    RateLimited,
    SessionNotFound,
)
from livecode.services.code_session_service import CodeSessionService
from livecode.services.wiring import get_services

# Configure logging
logger = logging.getLogger(__name__)


def _isoformat(value):
    return value.isoformat() if value else None


class CodeExecutionService:

    @staticmethod
    def submit_run(session_id, code=None):
        """Admit a run request; returns ``(body, status_code, headers)``."""
        logger.info(f"🚀 Run requested for session {session_id}")

        if code is None:
            session = CodeSessionService.get_session_info(session_id)
            code = session.source_code if session else ""

        result = get_services().admission.admit(session_id, code)

        if isinstance(result, Admitted):
            return {"execution_id": str(result.execution_id), "status": result.status.value}, 202, {}
        if isinstance(result, DuplicateInProgress):
            return {
                "execution_id": str(result.existing_execution_id),
                "status": result.existing_status.value,
                "message": "An execution for this session is already in progress",
            }, 409, {}
        if isinstance(result, RateLimited):
            return {
                "message": "Too many runs for this session; try again later",
                "retry_after": result.retry_after_seconds,
            }, 429, {"Retry-After": str(result.retry_after_seconds)}
        if isinstance(result, SessionNotFound):
            return {"message": "Session not found"}, 404, {}
        if isinstance(result, AdmissionUnavailable):
            return {"message": result.message}, 503, {}
        raise TypeError(f"Unexpected admission result: {result!r}")

    @staticmethod
    def get_execution(execution_id):
        """Get execution status and result"""
        execution = get_services().repository.get(execution_id)

        if not execution:
            logger.warning(f"⚠️ Execution {execution_id} not found")
            return None

        logger.info(f"📊 Retrieving execution {execution_id} - Status: {execution.status.value}")

        return {
            "execution_id": str(execution.id),
            "status": execution.status.value,
            "stdout": execution.stdout,
            "stderr": execution.stderr,
            "execution_time_ms": execution.execution_time_ms,
            "queued_at": _isoformat(execution.queued_at),
            "started_at": _isoformat(execution.started_at),
            "finished_at": _isoformat(execution.finished_at),
        }

    @staticmethod
    def get_session_executions(session_id):
        """Get all executions for a session"""
        executions = get_services().repository.list_by_session(session_id)

        return [{
            "execution_id": str(execution.id),
            "status": execution.status.value,
            "queued_at": _isoformat(execution.queued_at),
            "finished_at": _isoformat(execution.finished_at),
            "execution_time_ms": execution.execution_time_ms
        } for execution in executions]
