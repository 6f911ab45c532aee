"""
Error handling helpers.
Provides correlation IDs and retry with exponential backoff.
"""
import functools
import logging
import threading
import time
import uuid
from typing import Any, Callable, Optional

from attendance_engine.exceptions.base import RequestCancelledError

logger = logging.getLogger(__name__)

class CorrelationContext:
    """Thread-local correlation ID context."""

    def __init__(self):
        self._local = threading.local()

    def set_correlation_id(self, correlation_id: str):
        """Set correlation ID for current thread."""
        self._local.correlation_id = correlation_id

    def get_correlation_id(self) -> str:
        """Get correlation ID for current thread."""
        if not hasattr(self._local, 'correlation_id'):
            self._local.correlation_id = str(uuid.uuid4())[:8]
        return self._local.correlation_id

    def clear(self):
        """Clear correlation ID."""
        if hasattr(self._local, 'correlation_id'):
            delattr(self._local, 'correlation_id')

# Global correlation context
correlation_context = CorrelationContext()

def call_with_backoff(func: Callable[[], Any], max_attempts: int = 3, backoff_factor: float = 1.0,
                      retry_on: tuple = (Exception,), cancel_event: Optional[threading.Event] = None,
                      sleep: Callable[[float], None] = time.sleep) -> Any:
    """
    Call `func` until it succeeds, retrying `retry_on` exceptions.

    Waits `backoff_factor * 2**attempt` between attempts (attempt counts from
    0) and re-raises the last error once `max_attempts` calls have failed.
    When a cancel event is given it is checked before every attempt and the
    wait is interruptible.
    """
    correlation_id = correlation_context.get_correlation_id()
    name = getattr(func, "__name__", "call")

    for attempt in range(max_attempts):
        if cancel_event is not None and cancel_event.is_set():
            raise RequestCancelledError(f"{name} cancelled before attempt {attempt + 1}")
        try:
            return func()
        except retry_on as e:
            if attempt == max_attempts - 1:
                logger.error(f"[{correlation_id}] Final attempt {attempt + 1}/{max_attempts} failed for {name}: {e}")
                raise

            wait_time = backoff_factor * (2 ** attempt)
            logger.warning(f"[{correlation_id}] Retry {attempt + 1}/{max_attempts - 1} for {name} in {wait_time}s: {e}")
            if cancel_event is not None:
                if cancel_event.wait(wait_time):
                    raise RequestCancelledError(f"{name} cancelled while waiting to retry") from e
            else:
                sleep(wait_time)

def log_errors(func: Callable) -> Callable:
    """Decorator to add enhanced error logging."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        correlation_id = correlation_context.get_correlation_id()
        start_time = time.time()

        try:
            logger.info(f"[{correlation_id}] Starting {func.__name__}")
            result = func(*args, **kwargs)
            duration = time.time() - start_time
            logger.info(f"[{correlation_id}] Completed {func.__name__} in {duration:.2f}s")
            return result
        except Exception as e:
            duration = time.time() - start_time
            logger.error(f"[{correlation_id}] Failed {func.__name__} after {duration:.2f}s: {e}")
            raise
    return wrapper
