"""
Error Handling Utilities
Defines the API error taxonomy and renders every failure in the uniform envelope
"""
from flask import has_request_context, jsonify, request
from werkzeug.exceptions import HTTPException

from qistmarket.logger_config import log_error_with_context


class ApiError(Exception):
    """Base class for errors that map onto an HTTP status and a client-safe message"""
    status_code = 500
    default_message = "An error occurred"

    def __init__(self, message=None, details=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self):
        error = {"code": self.status_code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"success": False, "error": error}


class ValidationError(ApiError):
    status_code = 400
    default_message = "Invalid input provided"


class AuthenticationError(ApiError):
    status_code = 401
    default_message = "Authentication required"


class AuthorizationError(ApiError):
    status_code = 403
    default_message = "You do not have permission to perform this action"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "The requested resource was not found"


class ConflictError(ApiError):
    status_code = 409
    default_message = "This record already exists"


class InternalError(ApiError):
    status_code = 500
    default_message = "Internal server error"


def log_error(error, context=None):
    """
    Log error details server-side only

    Args:
        error: Exception object
        context: Optional context information (dict)
    """
    if context is None:
        context = {}

    if has_request_context():
        context['endpoint'] = request.path
        context['method'] = request.method
        context['remote_addr'] = request.remote_addr
        user_id = getattr(request, 'user_id', None)
        if user_id:
            context['user_id'] = user_id

    log_error_with_context(error, context)


def error_response(error):
    """Build (response, status) for an ApiError"""
    return jsonify(error.to_dict()), error.status_code


def register_error_handlers(app, db):
    """
    Register global error handlers

    ApiError subclasses are expected business outcomes; anything else is
    logged with request context and hidden behind a generic 500.
    """

    @app.errorhandler(ApiError)
    def handle_api_error(error):
        if error.status_code >= 500:
            db.session.rollback()
            log_error(error)
        return error_response(error)

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        message = error.description or error.name
        if error.code == 404:
            message = "Endpoint not found"
        elif error.code == 429:
            message = "Too many requests. Please try again later."
        return jsonify({
            "success": False,
            "error": {"code": error.code, "message": message}
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        db.session.rollback()
        log_error(error)
        return error_response(InternalError())
