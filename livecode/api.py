from flask_restx import Api


def create_api():
    """API with Swagger documentation under /docs"""
    return Api(
        version='1.0',
        title='LiveCode Runner API',
        description='Submit code from a live coding session and poll its sandboxed execution',
        doc='/docs',
        prefix='/api/v1'
    )
