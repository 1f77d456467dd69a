"""Execution record store: create, get, update_fields, find_active_by_session.

Two interchangeable stores are provided. ``SqlAlchemyExecutionRepository``
is the durable one used by the service; ``InMemoryExecutionRepository``
keeps records in a dict for single-process runs and tests. Both refuse a
second active execution for a session with ``DuplicateActiveExecution``.
"""
import logging
import threading
import uuid
from datetime import datetime
from typing import Any, Iterable, Optional, Protocol

from sqlalchemy.exc import IntegrityError

from livecode.errors import DuplicateActiveExecution
from livecode.models.db import db
from livecode.models.execution_model import Execution
from livecode.models.execution_record import ACTIVE_STATUSES, ExecutionRecord, ExecutionStatus

logger = logging.getLogger(__name__)


def as_uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _column_value(value):
    return value.value if isinstance(value, ExecutionStatus) else value


class ExecutionRepository(Protocol):
    def create(self, record: ExecutionRecord) -> ExecutionRecord: ...

    def get(self, execution_id) -> Optional[ExecutionRecord]: ...

    def update_fields(self, execution_id, fields: dict[str, Any],
                      expected: Optional[dict[str, Any]] = None) -> Optional[ExecutionRecord]: ...

    def find_active_by_session(self, session_id) -> Optional[ExecutionRecord]: ...

    def list_by_session(self, session_id) -> list[ExecutionRecord]: ...

    def find_stale(self, status: ExecutionStatus, older_than: datetime) -> list[ExecutionRecord]: ...


class SqlAlchemyExecutionRepository:
    """Record store on top of the Flask-SQLAlchemy session.

    Must be used inside an application context.
    """

    def create(self, record: ExecutionRecord) -> ExecutionRecord:
        row = Execution.from_record(record)
        db.session.add(row)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = self.find_active_by_session(record.session_id)
            if existing is None:
                raise
            logger.info(f"Unique index rejected a second active execution for session {record.session_id}")
            raise DuplicateActiveExecution(existing) from None
        return row.to_record()

    def get(self, execution_id) -> Optional[ExecutionRecord]:
        key = as_uuid(execution_id)
        if key is None:
            return None
        row = db.session.get(Execution, key, populate_existing=True)
        return row.to_record() if row else None

    def update_fields(self, execution_id, fields, expected=None):
        """Apply ``fields`` when the row still matches ``expected``.

        Returns the updated record, or ``None`` when the row is missing or
        another writer changed it first.
        """
        key = as_uuid(execution_id)
        query = Execution.query.filter(Execution.id == key)
        for name, value in (expected or {}).items():
            query = query.filter(getattr(Execution, name) == _column_value(value))
        values = {name: _column_value(value) for name, value in fields.items()}
        updated = query.update(values, synchronize_session=False)
        db.session.commit()
        if not updated:
            return None
        return self.get(key)

    def find_active_by_session(self, session_id) -> Optional[ExecutionRecord]:
        row = (
            Execution.query
            .filter(Execution.session_id == as_uuid(session_id))
            .filter(Execution.status.in_([s.value for s in ACTIVE_STATUSES]))
            .order_by(Execution.queued_at.asc())
            .first()
        )
        return row.to_record() if row else None

    def list_by_session(self, session_id) -> list[ExecutionRecord]:
        rows = (
            Execution.query
            .filter_by(session_id=as_uuid(session_id))
            .order_by(Execution.queued_at.desc())
            .all()
        )
        return [row.to_record() for row in rows]

    def find_stale(self, status, older_than):
        column = Execution.started_at if status is ExecutionStatus.RUNNING else Execution.queued_at
        rows = Execution.query.filter(Execution.status == status.value, column < older_than).all()
        return [row.to_record() for row in rows]


class InMemoryExecutionRepository:
    """Dict-backed record store guarded by a single lock."""

    def __init__(self, records: Iterable[ExecutionRecord] = ()):
        self._records: dict[uuid.UUID, ExecutionRecord] = {r.id: r for r in records}
        self._lock = threading.Lock()

    def create(self, record):
        with self._lock:
            existing = self._active_for(record.session_id)
            if existing is not None:
                raise DuplicateActiveExecution(existing)
            self._records[record.id] = record
            return record

    def get(self, execution_id):
        key = as_uuid(execution_id)
        with self._lock:
            return self._records.get(key)

    def update_fields(self, execution_id, fields, expected=None):
        key = as_uuid(execution_id)
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            for name, value in (expected or {}).items():
                if getattr(record, name) != value:
                    return None
            if "status" in fields:
                fields = dict(fields, status=ExecutionStatus(fields["status"]))
            record = record.with_fields(fields)
            self._records[key] = record
            return record

    def find_active_by_session(self, session_id):
        with self._lock:
            return self._active_for(as_uuid(session_id))

    def list_by_session(self, session_id):
        key = as_uuid(session_id)
        with self._lock:
            records = [r for r in self._records.values() if r.session_id == key]
        return sorted(records, key=lambda r: r.queued_at, reverse=True)

    def find_stale(self, status, older_than):
        with self._lock:
            records = list(self._records.values())
        stale = []
        for record in records:
            stamp = record.started_at if status is ExecutionStatus.RUNNING else record.queued_at
            if record.status is status and stamp is not None and stamp < older_than:
                stale.append(record)
        return stale

    def _active_for(self, session_id):
        active = [r for r in self._records.values() if r.session_id == session_id and r.status.is_active]
        return min(active, key=lambda r: r.queued_at) if active else None
