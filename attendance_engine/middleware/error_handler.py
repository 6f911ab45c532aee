"""
Error handling middleware for Flask application.
"""
import logging
import uuid
from functools import wraps

from flask import request, g
from pydantic import ValidationError as PydanticValidationError
from werkzeug.exceptions import HTTPException

from attendance_engine.exceptions.base import AppError, DatabaseError
from attendance_engine.utils.response_utils import error_response
from attendance_engine.utils.error_handling import correlation_context

logger = logging.getLogger(__name__)

def handle_errors(app):
    """Register error handlers with Flask app."""

    @app.before_request
    def setup_correlation_id():
        """Set up correlation ID for request tracking."""
        correlation_id = request.headers.get('X-Correlation-ID')
        if not correlation_id:
            correlation_id = str(uuid.uuid4())[:8]

        correlation_context.set_correlation_id(correlation_id)
        g.correlation_id = correlation_id

    @app.after_request
    def add_correlation_header(response):
        """Add correlation ID to response headers."""
        if hasattr(g, 'correlation_id'):
            response.headers['X-Correlation-ID'] = g.correlation_id
        return response

    @app.errorhandler(PydanticValidationError)
    def handle_request_validation_error(error):
        correlation_id = getattr(g, 'correlation_id', 'unknown')
        messages = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in error.errors()]
        logger.warning(f"[{correlation_id}] Invalid request body: {messages}")
        return error_response("Invalid request body", 400, {"errors": messages}, code="VALIDATION_ERROR")

    @app.errorhandler(DatabaseError)
    def handle_database_error(error):
        correlation_id = getattr(g, 'correlation_id', 'unknown')
        logger.error(f"[{correlation_id}] Database error: {error.message}")
        return error_response(error.message, error.status_code, error.details, code=error.code)

    @app.errorhandler(AppError)
    def handle_app_error(error):
        correlation_id = getattr(g, 'correlation_id', 'unknown')
        if error.status_code >= 500:
            logger.error(f"[{correlation_id}] {error.code}: {error.message}")
        else:
            logger.warning(f"[{correlation_id}] {error.code}: {error.message}")
        return error_response(error.message, error.status_code, error.details, code=error.code)

    @app.errorhandler(404)
    def handle_not_found(error):
        correlation_id = getattr(g, 'correlation_id', 'unknown')
        logger.warning(f"[{correlation_id}] 404 error for {request.url}")
        return error_response("Resource not found", 404, code="NOT_FOUND")

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        correlation_id = getattr(g, 'correlation_id', 'unknown')
        logger.warning(f"[{correlation_id}] 405 error for {request.method} {request.url}")
        return error_response("Method not allowed", 405, code="METHOD_NOT_ALLOWED")

    @app.errorhandler(413)
    def handle_too_large(error):
        correlation_id = getattr(g, 'correlation_id', 'unknown')
        logger.warning(f"[{correlation_id}] Request body too large")
        return error_response("Request body too large", 413, code="PAYLOAD_TOO_LARGE")

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        if isinstance(error, HTTPException):
            return error_response(error.description or error.name, error.code or 500)
        correlation_id = getattr(g, 'correlation_id', 'unknown')
        logger.error(f"[{correlation_id}] Unexpected error: {str(error)}", exc_info=True)
        return error_response("An unexpected error occurred", 500)


def log_requests(app):
    """Add request logging middleware."""

    @app.before_request
    def log_request_info():
        correlation_id = getattr(g, 'correlation_id', 'unknown')
        logger.info(f"[{correlation_id}] {request.method} {request.url} - {request.remote_addr}")

    @app.after_request
    def log_response_info(response):
        correlation_id = getattr(g, 'correlation_id', 'unknown')
        logger.info(f"[{correlation_id}] Response: {response.status_code}")
        return response


def resource_errors(f):
    """
    Map application errors raised inside a flask-restful resource method to
    error responses. flask-restful intercepts exceptions from its routes before
    the app-level handlers run, so resources opt in through `method_decorators`.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        correlation_id = getattr(g, 'correlation_id', 'unknown')
        try:
            return f(*args, **kwargs)
        except PydanticValidationError as e:
            messages = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            logger.warning(f"[{correlation_id}] Invalid request body: {messages}")
            return error_response("Invalid request body", 400, {"errors": messages}, code="VALIDATION_ERROR")
        except AppError as e:
            if e.status_code >= 500:
                logger.error(f"[{correlation_id}] {e.code}: {e.message}")
            else:
                logger.warning(f"[{correlation_id}] {e.code}: {e.message}")
            return error_response(e.message, e.status_code, e.details, code=e.code)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"[{correlation_id}] Unexpected error in {f.__name__}: {str(e)}", exc_info=True)
            return error_response("An unexpected error occurred", 500)
    return decorated_function


def require_json(f):
    """Decorator rejecting requests without a JSON object body."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not request.is_json:
            return error_response("Request must be JSON", 400, code="VALIDATION_ERROR")
        json_data = request.get_json(silent=True)
        if not isinstance(json_data, dict):
            return error_response("Invalid JSON data", 400, code="VALIDATION_ERROR")
        return f(*args, **kwargs)
    return decorated_function
