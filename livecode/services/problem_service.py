import logging
import uuid
from livecode.models.db import db
from livecode.models.problem_model import Problem
from livecode.repositories.execution_repository import as_uuid

logger = logging.getLogger(__name__)

# fixed id so local clients can open a session without looking it up
DEFAULT_PROBLEM_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")

DEFAULT_PROBLEMS = [
    {
        "id": DEFAULT_PROBLEM_ID,
        "title": "Hello World",
        "description": "Print Hello World to standard output.",
        "code_template": {"python": 'print("Start")'},
        "time_limit": 2.0,
    },
]


def _to_dict(problem):
    return {
        "problem_id": str(problem.id),
        "title": problem.title,
        "description": problem.description,
        "code_template": problem.code_template or {},
        "time_limit": problem.time_limit,
    }


class ProblemService:
    @staticmethod
    def seed_problems(problems=None):
        """Insert the starter problems that are missing; safe to run repeatedly."""
        created = 0
        for data in problems or DEFAULT_PROBLEMS:
            if Problem.query.filter_by(title=data["title"]).first() is not None:
                continue
            db.session.add(Problem(**data))
            created += 1
        db.session.commit()
        logger.info(f"🌱 Seeded {created} problem(s)")
        return created

    @staticmethod
    def list_problems():
        return [_to_dict(p) for p in Problem.query.order_by(Problem.title.asc()).all()]

    @staticmethod
    def get_problem(problem_id):
        problem = ProblemService.load(problem_id)
        return _to_dict(problem) if problem else None

    @staticmethod
    def load(problem_id):
        key = as_uuid(problem_id)
        if key is None:
            return None
        return db.session.get(Problem, key)
