import logging
from sqlalchemy.exc import IntegrityError
from livecode.models.db import db
from livecode.models.code_sessions_model import CodeSession
from livecode.models.execution_record import utcnow
from livecode.repositories.execution_repository import as_uuid
from livecode.services.admission_service import SessionInfo
from livecode.services.problem_service import ProblemService

logger = logging.getLogger(__name__)


class CodeSessionService:
    @staticmethod
    def create_session(language="python", source_code=None, problem_id=None, user_id=None):
        """Open a session; returns ``(payload, created)`` or ``(None, False)`` for an unknown problem.

        With a problem, a learner keeps one ACTIVE session per problem: asking
        again returns that session unchanged. New problem sessions start
        from the problem's template for ``language``.
        """
        problem = None
        if problem_id is not None:
            problem = ProblemService.load(problem_id)
            if problem is None:
                logger.warning(f"⚠️ Problem {problem_id} not found")
                return None, False

            existing = CodeSessionService._active_for(user_id, problem.id)
            if existing is not None:
                logger.info(f"♻️ Reusing session {existing.id} for user {user_id} on problem {problem.id}")
                return CodeSessionService._resumed(existing), False

        if source_code is None:
            source_code = problem.template_for(language) if problem else ''

        new_code_session = CodeSession(
            language=language,
            source_code=source_code,
            status='ACTIVE',
            problem_id=problem.id if problem else None,
            user_id=user_id,
        )
        db.session.add(new_code_session)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = CodeSessionService._active_for(user_id, problem.id) if problem else None
            if existing is None:
                raise
            return CodeSessionService._resumed(existing), False

        logger.info(f"✅ Created session {new_code_session.id}")
        return {
            "session_id": str(new_code_session.id),
            "status": new_code_session.status,
        }, True

    # autosave of the learner's working code; executions keep their own snapshot
    @staticmethod
    def update_session(session_id, language=None, source_code=None):
        code_session = CodeSessionService._load(session_id)

        if not code_session:
            return None

        if language is not None:
            code_session.language = language
        if source_code is not None:
            code_session.source_code = source_code

        code_session.updated_at = utcnow()
        db.session.commit()

        return {
            "session_id": str(code_session.id),
            "status": code_session.status
        }

    @staticmethod
    def get_session(session_id):
        session = CodeSessionService._load(session_id)

        if not session:
            return None

        return {
            "session_id": str(session.id),
            "language": session.language,
            "source_code": session.source_code,
            "status": session.status,
            "problem_id": str(session.problem_id) if session.problem_id else None,
            "user_id": session.user_id,
            "created_at": session.created_at.isoformat(),
            "updated_at": session.updated_at.isoformat()
        }

    @staticmethod
    def get_session_info(session_id):
        """Identity, language and current code, as read by admission control."""
        session = CodeSessionService._load(session_id)
        if not session:
            return None
        return SessionInfo(id=session.id, language=session.language, source_code=session.source_code)

    @staticmethod
    def _active_for(user_id, problem_id):
        return CodeSession.query.filter_by(user_id=user_id, problem_id=problem_id, status='ACTIVE').first()

    @staticmethod
    def _resumed(session):
        return {
            "session_id": str(session.id),
            "status": session.status,
            "language": session.language,
            "source_code": session.source_code,
        }

    @staticmethod
    def _load(session_id):
        key = as_uuid(session_id)
        if key is None:
            return None
        return db.session.get(CodeSession, key)
