"""
Recognition Client
Submits a batch of classroom images to the external recognition service.
"""
import logging
import os
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from attendance_engine.config.settings import Config
from attendance_engine.exceptions.base import (
    UpstreamFatalError,
    UpstreamTransientError,
    ValidationError,
)
from attendance_engine.schemas.models import RecognitionResult
from attendance_engine.services.recognition_parsers import RawResponse, parse_response
from attendance_engine.utils.error_handling import call_with_backoff, correlation_context
from attendance_engine.utils.image_utils import normalize_image_bytes
from attendance_engine.utils.metrics import metrics

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class TransientRecognitionFailure(Exception):
    """A failure worth retrying: timeout, dropped connection, 5xx or 429."""

    def __init__(self, message: str, http_status: Optional[int] = None):
        super().__init__(message)
        self.http_status = http_status


class RecognitionClient:
    """Retrying HTTP client for the batch face-recognition service."""

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 timeout: Optional[float] = None, max_attempts: Optional[int] = None,
                 backoff_base: Optional[float] = None, max_images: Optional[int] = None,
                 http: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.base_url = (base_url or Config.RECOGNITION_API_URL or "").rstrip("/")
        self.token = token if token is not None else Config.RECOGNITION_API_TOKEN
        self.timeout = timeout or Config.RECOGNITION_TIMEOUT_SECONDS
        self.max_attempts = max_attempts or Config.RECOGNITION_MAX_RETRIES
        self.backoff_base = Config.RECOGNITION_BACKOFF_BASE if backoff_base is None else backoff_base
        self.max_images = max_images or Config.RECOGNITION_MAX_IMAGES
        self.http = http or requests.Session()
        self.sleep = sleep

    def _headers(self) -> Dict[str, str]:
        headers = {"X-Correlation-ID": correlation_context.get_correlation_id()}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _prepare_batch(self, image_paths: List[str]) -> List[tuple]:
        """Read and normalize images into multipart file tuples."""
        if not image_paths:
            raise ValidationError("No images uploaded")
        if len(image_paths) > self.max_images:
            raise ValidationError(f"At most {self.max_images} images can be submitted per batch")

        files = []
        for index, path in enumerate(image_paths):
            with open(path, "rb") as fh:
                data = normalize_image_bytes(fh.read(), os.path.basename(path))
            files.append(("images", (f"image_{index}.jpg", data, "image/jpeg")))
        return files

    def _post_once(self, files: List[tuple], data: Dict[str, Any]) -> requests.Response:
        url = f"{self.base_url}/recognize_batch"
        try:
            response = self.http.post(url, files=files, data=data, headers=self._headers(), timeout=self.timeout)
        except requests.Timeout as e:
            raise TransientRecognitionFailure(f"Timed out after {self.timeout}s") from e
        except requests.ConnectionError as e:
            raise TransientRecognitionFailure(f"Connection error: {e}") from e

        if response.status_code in RETRYABLE_STATUS:
            raise TransientRecognitionFailure(f"HTTP {response.status_code}", response.status_code)
        if response.status_code >= 400:
            body = response.text[:2048] if response.text else ""
            message = body
            try:
                payload = response.json()
                if isinstance(payload, dict):
                    message = payload.get("message") or payload.get("detail") or payload.get("error") or body
            except ValueError:
                pass
            raise UpstreamFatalError(f"Request rejected (HTTP {response.status_code}): {message}",
                                     http_status=response.status_code, body=body)
        return response

    def submit_batch(self, image_paths: List[str], context: Dict[str, Any],
                     cancel_event: Optional[threading.Event] = None) -> RecognitionResult:
        """
        Send up to `max_images` images as one batch and return normalized matches.

        Raises:
            ValidationError: no images, too many images, or an unreadable image
            UpstreamTransientError: retries exhausted on transient failures
            UpstreamFatalError: the service rejected the request
            ResponseFormatUnrecognizedError: the body matched no known shape
            RequestCancelledError: `cancel_event` was set before completion
        """
        if not self.base_url:
            raise UpstreamFatalError("RECOGNITION_API_URL is not configured")

        files = self._prepare_batch(image_paths)
        data = {key: str(value) for key, value in context.items() if value is not None}
        correlation_id = correlation_context.get_correlation_id()
        logger.info(f"[{correlation_id}] Submitting {len(files)} image(s) for recognition: {data}")

        def recognize_batch():
            return self._post_once(files, data)

        metrics.start_timer("recognition_batch", correlation_id)
        try:
            response = call_with_backoff(
                recognize_batch,
                max_attempts=self.max_attempts,
                backoff_factor=self.backoff_base,
                retry_on=(TransientRecognitionFailure,),
                cancel_event=cancel_event,
                sleep=self.sleep,
            )
        except TransientRecognitionFailure as e:
            metrics.increment_counter("recognition_transient_failures")
            raise UpstreamTransientError(str(e), attempts=self.max_attempts,
                                         details={"http_status": e.http_status}) from e
        finally:
            duration = metrics.end_timer("recognition_batch", correlation_id)

        logger.info(f"[{correlation_id}] Recognition service answered in {duration:.2f}s")
        result = parse_response(RawResponse(response.content, response.headers.get("Content-Type", "")))
        metrics.increment_counter(f"recognition_shape_{result.shape}")
        return result

    def check_health(self) -> Dict[str, Any]:
        """Probe the service health endpoint. Never raises."""
        if not self.base_url:
            return {"status": "unconfigured"}
        try:
            response = self.http.get(f"{self.base_url}/health", headers=self._headers(),
                                     timeout=Config.RECOGNITION_HEALTH_TIMEOUT_SECONDS)
            data = None
            try:
                data = response.json()
            except ValueError:
                pass
            return {"status": "healthy" if response.ok else "unhealthy", "data": data}
        except requests.RequestException as e:
            logger.warning(f"Recognition service health check failed: {e}")
            return {"status": "unhealthy", "error": str(e)}
