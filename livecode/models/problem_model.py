import uuid
from livecode.models.db import db
from livecode.models.execution_record import utcnow


class Problem(db.Model):
    __tablename__ = "problems"

    id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = db.Column(db.String(200), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=False, default="")
    # starter code keyed by language, e.g. {"python": "print('Start')"}
    code_template = db.Column(db.JSON, nullable=False, default=dict)
    time_limit = db.Column(db.Float, nullable=False, default=2.0)
    created_at = db.Column(db.DateTime, default=utcnow)
    sessions = db.relationship("CodeSession", backref="problem", lazy=True)

    def template_for(self, language):
        return (self.code_template or {}).get(language, "")
