# financeflow/errors.py
from flask import jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException
from financeflow.init_db import db
from financeflow.logging_config import setup_logging

logger = setup_logging()


class ApiError(Exception):
    """An expected failure that maps onto an HTTP status and error code."""
    status = 500
    code = 'SERVER_ERROR'

    def __init__(self, message, code=None, status=None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status


class ValidationError(ApiError):
    status = 400
    code = 'VALIDATION_ERROR'


class ConflictError(ApiError):
    status = 409
    code = 'CONFLICT'


class AuthError(ApiError):
    status = 401
    code = 'AUTH_ERROR'


class NotVerifiedError(ApiError):
    status = 403
    code = 'NOT_VERIFIED'


class UnauthorizedError(ApiError):
    status = 401
    code = 'UNAUTHORIZED'


class ForbiddenError(ApiError):
    status = 403
    code = 'FORBIDDEN'


class NotFoundError(ApiError):
    status = 404
    code = 'NOT_FOUND'


def error_response(code, message, status):
    return jsonify({'success': False, 'error': {'code': code, 'message': message}}), status


HTTP_ERROR_CODES = {
    404: 'NOT_FOUND',
    405: 'METHOD_NOT_ALLOWED',
    413: 'PAYLOAD_TOO_LARGE',
}


def register_error_handlers(app):

    @app.errorhandler(ApiError)
    def handle_api_error(error):
        return error_response(error.code, error.message, error.status)

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error):
        db.session.rollback()
        logger.error(f"Integrity error: {error.orig}")
        if 'UNIQUE' in str(error.orig).upper():
            return error_response('DUPLICATE_ERROR', 'A record with this value already exists', 400)
        return error_response('CONSTRAINT_ERROR', 'Database constraint violation', 400)

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        code = HTTP_ERROR_CODES.get(error.code, 'HTTP_ERROR')
        return error_response(code, error.description, error.code)

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        db.session.rollback()
        logger.exception(f"Unhandled error: {error}")
        if app.config.get('APP_ENV') == 'production':
            message = 'Internal server error'
        else:
            message = str(error)
        return error_response('SERVER_ERROR', message, 500)
