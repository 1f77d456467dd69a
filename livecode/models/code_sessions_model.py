import uuid
from livecode.models.db import db
from livecode.models.execution_record import utcnow

ACTIVE_PROBLEM_SESSION_SQL = "status = 'ACTIVE' AND problem_id IS NOT NULL"


class CodeSession(db.Model):
    __tablename__ = "code_sessions"
    __table_args__ = (
        # one ACTIVE session per learner and problem
        db.Index(
            "uq_code_sessions_active_user_problem",
            "user_id",
            "problem_id",
            unique=True,
            postgresql_where=db.text(ACTIVE_PROBLEM_SESSION_SQL),
            sqlite_where=db.text(ACTIVE_PROBLEM_SESSION_SQL),
        ),
    )

    id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    problem_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey("problems.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    language = db.Column(db.String(20), nullable=False, default="python")
    source_code = db.Column(db.Text, nullable=False, default="")
    status = db.Column(db.String(20), nullable=False, default="ACTIVE")
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    executions = db.relationship("Execution", backref="session", lazy=True)
