import uuid
from livecode.models.db import db
from livecode.models.execution_record import ExecutionRecord, ExecutionStatus, utcnow

ACTIVE_STATUS_SQL = "status IN ('QUEUED', 'RUNNING')"


class Execution(db.Model):
    __tablename__ = "executions"
    __table_args__ = (
        # at most one in-flight execution per session
        db.Index(
            "uq_executions_active_session",
            "session_id",
            unique=True,
            postgresql_where=db.text(ACTIVE_STATUS_SQL),
            sqlite_where=db.text(ACTIVE_STATUS_SQL),
        ),
    )

    id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey("code_sessions.id"), nullable=False, index=True)
    code_snapshot = db.Column(db.Text, nullable=False)
    language = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, index=True)
    stdout = db.Column(db.Text)
    stderr = db.Column(db.Text)
    execution_time_ms = db.Column(db.Integer)
    queued_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    started_at = db.Column(db.DateTime)
    finished_at = db.Column(db.DateTime)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    awaiting_retry = db.Column(db.Boolean, nullable=False, default=False)

    @classmethod
    def from_record(cls, record: ExecutionRecord) -> "Execution":
        return cls(
            id=record.id,
            session_id=record.session_id,
            code_snapshot=record.code_snapshot,
            language=record.language,
            status=record.status.value,
            stdout=record.stdout,
            stderr=record.stderr,
            execution_time_ms=record.execution_time_ms,
            queued_at=record.queued_at,
            started_at=record.started_at,
            finished_at=record.finished_at,
            attempts=record.attempts,
            awaiting_retry=record.awaiting_retry,
        )

    def to_record(self) -> ExecutionRecord:
        return ExecutionRecord(
            id=self.id,
            session_id=self.session_id,
            code_snapshot=self.code_snapshot,
            language=self.language,
            status=ExecutionStatus(self.status),
            stdout=self.stdout,
            stderr=self.stderr,
            execution_time_ms=self.execution_time_ms,
            queued_at=self.queued_at,
            started_at=self.started_at,
            finished_at=self.finished_at,
            attempts=self.attempts,
            awaiting_retry=self.awaiting_retry,
        )
