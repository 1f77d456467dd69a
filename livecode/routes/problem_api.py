from flask_restx import Namespace, Resource, fields
from livecode.services.problem_service import ProblemService

ns = Namespace('problems', description='Coding exercises sessions are opened against')

problem_model = ns.model('Problem', {
    'problem_id': fields.String(description='Problem ID'),
    'title': fields.String(description='Title'),
    'description': fields.String(description='Statement'),
    'code_template': fields.Raw(description='Starter code keyed by language'),
    'time_limit': fields.Float(description='Suggested time limit in seconds')
})

error_model = ns.model('ProblemError', {
    'message': fields.String(description='Error message')
})


@ns.route('')
class ProblemList(Resource):
    @ns.doc('list_problems')
    @ns.marshal_list_with(problem_model)
    def get(self):
        """List problems"""
        return ProblemService.list_problems(), 200


@ns.route('/<string:problem_id>')
@ns.param('problem_id', 'The problem identifier')
class ProblemDetail(Resource):
    @ns.doc('get_problem')
    @ns.marshal_with(problem_model)
    @ns.response(404, 'Problem not found', error_model)
    def get(self, problem_id):
        """Get a problem and its code templates"""
        result = ProblemService.get_problem(problem_id)

        if result is None:
            ns.abort(404, "Problem not found")

        return result, 200
