import json
import threading
from unittest.mock import MagicMock

import pytest
import requests

from attendance_engine.exceptions.base import (
    RequestCancelledError,
    ResponseFormatUnrecognizedError,
    UpstreamFatalError,
    UpstreamTransientError,
    ValidationError,
)
from attendance_engine.services import recognition_client as client_module
from attendance_engine.services.recognition_client import RecognitionClient
from attendance_engine.utils.metrics import metrics


def http_response(status=200, payload=None, content=None, content_type="application/json"):
    response = MagicMock()
    response.status_code = status
    response.ok = status < 400
    if content is None:
        content = json.dumps(payload).encode("utf-8") if payload is not None else b""
    response.content = content
    response.text = content.decode("utf-8", errors="replace")
    response.headers = {"Content-Type": content_type}
    if payload is not None:
        response.json.return_value = payload
    else:
        response.json.side_effect = ValueError("no json")
    return response


@pytest.fixture(autouse=True)
def passthrough_images(monkeypatch):
    monkeypatch.setattr(client_module, "normalize_image_bytes", lambda data, name="image": data)


@pytest.fixture
def images(tmp_path):
    paths = []
    for index in range(2):
        path = tmp_path / f"photo_{index}.jpg"
        path.write_bytes(b"jpeg-bytes-%d" % index)
        paths.append(str(path))
    return paths


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(http, sleeps):
    return RecognitionClient(base_url="http://recognizer.local/", token="secret", timeout=300,
                             max_attempts=4, backoff_base=1.0, max_images=6,
                             http=http, sleep=sleeps.append)


CONTEXT = {"section_id": "sec-a", "session_id": "abc"}


class TestSubmitBatch:
    def test_single_multipart_post(self, client, http, images):
        http.post.return_value = http_response(payload={"results": [{"label": "Alice", "confidence": 0.9}]})

        result = client.submit_batch(images, CONTEXT)

        assert [m.identity for m in result.matches] == ["Alice"]
        http.post.assert_called_once()
        args, kwargs = http.post.call_args
        assert args[0] == "http://recognizer.local/recognize_batch"
        assert kwargs["data"] == CONTEXT
        assert kwargs["timeout"] == 300
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert [f[0] for f in kwargs["files"]] == ["images", "images"]
        assert metrics.get_stats()["counters"]["recognition_shape_inline_list"] == 1

    def test_transient_failures_are_retried_with_backoff(self, client, http, images, sleeps):
        http.post.side_effect = [
            requests.Timeout("slow"),
            http_response(status=503),
            requests.ConnectionError("reset"),
            http_response(payload={"recognized_students": ["Bob"]}),
        ]

        result = client.submit_batch(images, CONTEXT)

        assert [m.identity for m in result.matches] == ["Bob"]
        assert http.post.call_count == 4
        assert sleeps == [1.0, 2.0, 4.0]

    def test_exhausted_retries(self, client, http, images, sleeps):
        http.post.return_value = http_response(status=502)

        with pytest.raises(UpstreamTransientError) as exc:
            client.submit_batch(images, CONTEXT)

        assert http.post.call_count == 4
        assert exc.value.status_code == 503
        assert exc.value.details["attempts"] == 4

    def test_rate_limit_is_transient(self, client, http, images):
        http.post.side_effect = [http_response(status=429), http_response(payload=[])]
        assert client.submit_batch(images, CONTEXT).matches == []

    def test_client_errors_are_not_retried(self, client, http, images, sleeps):
        http.post.return_value = http_response(status=422, payload={"detail": "images must be JPEG"})

        with pytest.raises(UpstreamFatalError) as exc:
            client.submit_batch(images, CONTEXT)

        assert http.post.call_count == 1
        assert sleeps == []
        assert "images must be JPEG" in exc.value.message
        assert exc.value.http_status == 422

    def test_unrecognized_response(self, client, http, images):
        http.post.return_value = http_response(payload={"status": "done"})
        with pytest.raises(ResponseFormatUnrecognizedError):
            client.submit_batch(images, CONTEXT)

    def test_too_many_images(self, client, http, images):
        with pytest.raises(ValidationError):
            client.submit_batch(images * 4, CONTEXT)
        http.post.assert_not_called()

    def test_no_images(self, client, http):
        with pytest.raises(ValidationError):
            client.submit_batch([], CONTEXT)

    def test_missing_base_url(self, http, images):
        client = RecognitionClient(base_url="", http=http)
        client.base_url = ""
        with pytest.raises(UpstreamFatalError):
            client.submit_batch(images, CONTEXT)


class TestCancellation:
    def test_cancelled_before_first_attempt(self, client, http, images):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(RequestCancelledError):
            client.submit_batch(images, CONTEXT, cancel_event=cancel)
        http.post.assert_not_called()

    def test_cancel_during_backoff_stops_retrying(self, client, http, images):
        cancel = threading.Event()

        def fail_and_cancel(*args, **kwargs):
            cancel.set()
            return http_response(status=503)

        http.post.side_effect = fail_and_cancel

        with pytest.raises(RequestCancelledError):
            client.submit_batch(images, CONTEXT, cancel_event=cancel)
        assert http.post.call_count == 1


class TestHealth:
    def test_healthy(self, client, http):
        http.get.return_value = http_response(payload={"status": "ok"})
        assert client.check_health() == {"status": "healthy", "data": {"status": "ok"}}

    def test_never_raises(self, client, http):
        http.get.side_effect = requests.ConnectionError("down")
        health = client.check_health()
        assert health["status"] == "unhealthy"
        assert "down" in health["error"]
