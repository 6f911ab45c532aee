"""
Custom Exceptions for the Attendance Session Engine.
"""

class AppError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500, details: dict = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

class ValidationError(AppError):
    """Raised when input validation fails (Pydantic or Business Rule)."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=400, details=details)

class ForbiddenError(AppError):
    """Raised when an actor is not allowed to perform an operation."""
    def __init__(self, message: str = "Operation not permitted", details: dict = None):
        super().__init__(message, code="FORBIDDEN", status_code=403, details=details)

class NotFoundError(AppError):
    """Raised when a section, session or student is not found."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, code="NOT_FOUND", status_code=404, details=details)

class ConflictError(AppError):
    """Raised when a booking overlaps an existing one or a concurrent write wins."""
    def __init__(self, message: str, booking: dict = None, details: dict = None):
        details = dict(details or {})
        if booking is not None:
            details["conflicting_booking"] = booking
        super().__init__(message, code="CONFLICT", status_code=409, details=details)
        self.booking = booking

class LockedError(AppError):
    """Raised when a mutation is attempted on a locked session."""
    def __init__(self, message: str, session_id: str = None, locked_at=None, lock_deadline=None):
        details = {
            "session_id": session_id,
            "locked_at": locked_at.isoformat() if locked_at else None,
            "lock_deadline": lock_deadline.isoformat() if lock_deadline else None,
        }
        super().__init__(message, code="LOCKED", status_code=423, details=details)
        self.session_id = session_id
        self.locked_at = locked_at
        self.lock_deadline = lock_deadline

class DatabaseError(AppError):
    """Raised when a database operation fails."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, code="DATABASE_ERROR", status_code=500, details=details)

class DuplicateSessionError(DatabaseError):
    """Raised by the session store when the (section, date, start time) key already exists."""
    def __init__(self, section_id: str, date: str, start_time: str):
        super().__init__(
            f"Session already exists for section {section_id} on {date} at {start_time}",
            details={"section_id": section_id, "date": date, "start_time": start_time},
        )
        self.code = "DUPLICATE_SESSION"
        self.status_code = 409

class ExternalServiceError(AppError):
    """Raised when the recognition service fails."""
    def __init__(self, message: str, service_name: str, code: str = None, status_code: int = 502, details: dict = None):
        super().__init__(
            f"{service_name} Error: {message}",
            code=code or f"{service_name.upper()}_ERROR",
            status_code=status_code,
            details=details,
        )
        self.service_name = service_name

class UpstreamTransientError(ExternalServiceError):
    """Raised after retries against the recognition service are exhausted."""
    def __init__(self, message: str, attempts: int, details: dict = None):
        details = dict(details or {})
        details["attempts"] = attempts
        super().__init__(message, "Recognition", code="UPSTREAM_TRANSIENT", status_code=503, details=details)
        self.attempts = attempts

class UpstreamFatalError(ExternalServiceError):
    """Raised when the recognition service rejects a request (not retried)."""
    def __init__(self, message: str, http_status: int = None, body: str = None):
        details = {"http_status": http_status, "body": body}
        super().__init__(message, "Recognition", code="UPSTREAM_FATAL", status_code=502, details=details)
        self.http_status = http_status
        self.body = body

class ResponseFormatUnrecognizedError(ExternalServiceError):
    """Raised when no known parser accepts the recognition service payload."""
    def __init__(self, raw_payload, message: str = "Unrecognized response format"):
        preview = raw_payload
        if isinstance(preview, (bytes, bytearray)):
            preview = bytes(preview[:2048]).decode("utf-8", errors="replace")
        elif not isinstance(preview, str):
            preview = repr(preview)
        super().__init__(
            message,
            "Recognition",
            code="RESPONSE_FORMAT_UNRECOGNIZED",
            status_code=502,
            details={"raw_payload": preview[:2048]},
        )
        self.raw_payload = raw_payload

class RequestCancelledError(AppError):
    """Raised when the caller cancelled a long-running recognition call."""
    def __init__(self, message: str = "Request cancelled"):
        super().__init__(message, code="CANCELLED", status_code=499)
