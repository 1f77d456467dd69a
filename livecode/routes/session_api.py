from flask import request
from flask_restx import Namespace, Resource, fields
from livecode.services.code_execution_service import CodeExecutionService
from livecode.services.code_session_service import CodeSessionService

ns = Namespace('code-sessions', description='Code session operations')

session_create_model = ns.model('SessionCreate', {
    'language': fields.String(required=False, default='python', description='Programming language'),
    'source_code': fields.String(required=False, description="Source code; defaults to the problem's template"),
    'problem_id': fields.String(required=False, description='Problem being solved'),
    'user_id': fields.Integer(required=False, description='Learner; required with problem_id')
})

session_update_model = ns.model('SessionUpdate', {
    'language': fields.String(required=False, description='Programming language'),
    'source_code': fields.String(required=False, description='Source code')
})

session_response_model = ns.model('SessionResponse', {
    'session_id': fields.String(description='Session ID'),
    'status': fields.String(description='Session status'),
    'language': fields.String(description='Programming language'),
    'source_code': fields.String(description='Source code'),
    'problem_id': fields.String(description='Problem ID'),
    'user_id': fields.Integer(description='Learner ID'),
    'created_at': fields.String(description='Creation timestamp'),
    'updated_at': fields.String(description='Update timestamp')
})

session_brief_response_model = ns.model('SessionBriefResponse', {
    'session_id': fields.String(description='Session ID'),
    'status': fields.String(description='Session status')
})

session_opened_model = ns.model('SessionOpened', {
    'session_id': fields.String(description='Session ID'),
    'status': fields.String(description='Session status'),
    'language': fields.String(description='Programming language, when resuming'),
    'source_code': fields.String(description='Saved source code, when resuming')
})

run_request_model = ns.model('RunRequest', {
    'code': fields.String(required=False, description="Code to run; defaults to the session's current source code")
})

run_accepted_model = ns.model('RunAccepted', {
    'execution_id': fields.String(description='Execution ID'),
    'status': fields.String(description='Execution status')
})

run_conflict_model = ns.model('RunConflict', {
    'execution_id': fields.String(description='Execution already in progress'),
    'status': fields.String(description='Its current status'),
    'message': fields.String(description='Reason')
})

run_rate_limited_model = ns.model('RunRateLimited', {
    'message': fields.String(description='Reason'),
    'retry_after': fields.Integer(description='Seconds until the rate window resets')
})

error_model = ns.model('SessionError', {
    'message': fields.String(description='Error message')
})


@ns.route('')
class SessionList(Resource):
    @ns.doc('create_session')
    @ns.expect(session_create_model, validate=False)
    @ns.marshal_with(session_opened_model, code=201)
    @ns.response(201, 'Session created successfully')
    @ns.response(200, "Learner's ACTIVE session for this problem returned")
    @ns.response(400, 'Invalid payload', error_model)
    @ns.response(404, 'Problem not found', error_model)
    def post(self):
        """Create a new live coding session, or resume the learner's session for a problem

        Example payload:
        {
            "problem_id": "11111111-1111-1111-1111-111111111111",
            "user_id": 1,
            "language": "python"
        }
        """
        data = request.get_json(silent=True) or {}
        language = data.get('language') or 'python'
        source_code = data.get('source_code')
        problem_id = data.get('problem_id')
        user_id = data.get('user_id')

        if source_code is not None and not isinstance(source_code, str):
            ns.abort(400, "source_code must be a string")
        if user_id is not None and (isinstance(user_id, bool) or not isinstance(user_id, int)):
            ns.abort(400, "user_id must be an integer")
        if problem_id is not None and user_id is None:
            ns.abort(400, "user_id is required with problem_id")

        result, created = CodeSessionService.create_session(
            language=language, source_code=source_code, problem_id=problem_id, user_id=user_id)

        if result is None:
            ns.abort(404, "Problem not found")

        return result, 201 if created else 200


@ns.route('/<string:session_id>')
@ns.param('session_id', 'The session identifier')
class SessionDetail(Resource):
    @ns.doc('get_session')
    @ns.marshal_with(session_response_model)
    @ns.response(404, 'Session not found', error_model)
    def get(self, session_id):
        """Get session details"""
        result = CodeSessionService.get_session(session_id=session_id)

        if result is None:
            ns.abort(404, "Session not found")

        return result, 200

    @ns.doc('update_session')
    @ns.expect(session_update_model, validate=False)
    @ns.marshal_with(session_brief_response_model)
    @ns.response(404, 'Session not found', error_model)
    def patch(self, session_id):
        """Autosave the learner's current source code"""
        data = request.get_json(silent=True) or {}
        result = CodeSessionService.update_session(
            session_id=session_id,
            language=data.get('language'),
            source_code=data.get('source_code'),
        )

        if result is None:
            ns.abort(404, "Session not found")

        return result, 200


@ns.route('/<string:session_id>/run')
@ns.param('session_id', 'The session identifier')
class SessionRun(Resource):
    @ns.doc('run_session_code')
    @ns.expect(run_request_model, validate=False)
    @ns.response(202, 'Execution queued', run_accepted_model)
    @ns.response(409, 'An execution is already queued or running', run_conflict_model)
    @ns.response(429, 'Too many runs in the rate window', run_rate_limited_model)
    @ns.response(404, 'Session not found', error_model)
    @ns.response(503, 'Admission temporarily unavailable', error_model)
    def post(self, session_id):
        """Snapshot the submitted code and queue it for execution

        Returns immediately; poll /executions/{execution_id} for the result.
        """
        data = request.get_json(silent=True) or {}
        code = data.get('code')
        if code is not None and not isinstance(code, str):
            ns.abort(400, "code must be a string")

        return CodeExecutionService.submit_run(session_id, code)
