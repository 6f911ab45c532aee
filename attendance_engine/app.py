"""
Main Application Factory.
"""
from flask import Flask
from flask_restful import Api
from attendance_engine.config.settings import Config
from attendance_engine.api.resources.attendance_resource import (
    MarkFaceResource,
    StudentAttendanceResource,
    StudentStatusResource,
)
from attendance_engine.api.resources.schedule_resource import SectionSlotsResource
from attendance_engine.api.resources.session_resource import (
    AdHocSessionResource,
    SectionSessionsResource,
    SessionLockResource,
    SessionResource,
    SessionStatusResource,
    SessionUnlockResource,
    StudentSessionsResource,
    TeacherSessionsResource,
)
from attendance_engine.api.monitor import monitor_bp
from attendance_engine.middleware.error_handler import handle_errors, log_requests
from attendance_engine.repositories.mongo_repository import close_connection, ensure_indexes, get_database
from attendance_engine.services.container import EXTENSION_KEY, ServiceContainer
from attendance_engine.utils.time_utils import utc_now
import logging
import atexit

logger = logging.getLogger(__name__)

def cleanup_resources():
    """Cleanup resources on application shutdown."""
    try:
        close_connection()
    except Exception as e:
        logger.error(f"Error closing database connection: {e}")

def create_app(db=None, recognition_client=None, clock=utc_now, validate_config=True):
    """
    Create and configure Flask application.

    `db`, `recognition_client` and `clock` can be injected; by default the
    configured MongoDB database and recognition service are used.
    """
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(Config)

    if db is None:
        # Validate configuration
        if validate_config:
            try:
                Config.validate()
            except ValueError as e:
                logger.error(f"Configuration validation failed: {e}")
                raise
        db = get_database()
        # Register cleanup function
        atexit.register(cleanup_resources)

    ensure_indexes(db)
    app.extensions[EXTENSION_KEY] = ServiceContainer(db, recognition_client=recognition_client, clock=clock)

    # Set up error handling and logging middleware
    handle_errors(app)
    log_requests(app)

    # Set security headers
    @app.after_request
    def set_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        return response

    api = Api(app)

    # Register Resources
    api.add_resource(SectionSessionsResource, '/api/sections/<string:section_id>/sessions')
    api.add_resource(SectionSlotsResource, '/api/sections/<string:section_id>/slots')
    api.add_resource(TeacherSessionsResource, '/api/teachers/<string:teacher_id>/sessions')
    api.add_resource(StudentSessionsResource, '/api/students/<string:student_id>/sessions')
    api.add_resource(AdHocSessionResource, '/api/sessions/adhoc')
    api.add_resource(SessionResource, '/api/sessions/<string:session_id>')
    api.add_resource(SessionStatusResource, '/api/sessions/<string:session_id>/status')
    api.add_resource(SessionLockResource, '/api/sessions/<string:session_id>/lock')
    api.add_resource(SessionUnlockResource, '/api/sessions/<string:session_id>/unlock')
    api.add_resource(MarkFaceResource, '/api/sessions/<string:session_id>/mark-face')
    api.add_resource(StudentStatusResource, '/api/sessions/<string:session_id>/students/<string:student_id>')
    api.add_resource(StudentAttendanceResource, '/api/students/<string:student_id>/attendance')

    # Register monitoring endpoints
    app.register_blueprint(monitor_bp)

    return app
