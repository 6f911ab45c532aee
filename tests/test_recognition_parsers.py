import base64
import io
import json
import zipfile

import pytest

from attendance_engine.exceptions.base import ResponseFormatUnrecognizedError
from attendance_engine.services.recognition_parsers import RawResponse, extract_name, parse_response


def json_response(payload):
    return RawResponse(json.dumps(payload).encode("utf-8"), "application/json")


def zip_bytes(files):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, payload in files.items():
            archive.writestr(name, json.dumps(payload))
    return buffer.getvalue()


def identities(result):
    return [m.identity for m in result.matches]


class TestShapes:
    def test_inline_results_list(self):
        result = parse_response(json_response({"results": [
            {"label": "Alice", "confidence": 0.93, "bbox": [1, 2, 3, 4]},
            {"name": "Carol", "score": 0.81},
        ]}))

        assert result.shape == "inline_list"
        assert identities(result) == ["Alice", "Carol"]
        assert result.matches[0].bbox == [1, 2, 3, 4]
        assert result.matches[1].confidence == 0.81

    def test_bare_list_of_strings(self):
        result = parse_response(json_response(["Alice", "Bob"]))
        assert identities(result) == ["Alice", "Bob"]

    def test_per_image_results_are_flattened(self):
        result = parse_response(json_response({"results": [
            {"image": 0, "success": True, "matches": [{"student_name": "Alice"}]},
            {"image": 1, "success": False, "matches": [{"student_name": "Mallory"}]},
            {"image": 2, "matches": [{"student_name": "Bob", "matched": False}, {"identity": "Carol"}]},
        ]}))
        assert identities(result) == ["Alice", "Carol"]

    def test_keyed_list_with_summary(self):
        result = parse_response(json_response({
            "recognized_students": [{"name": "Bob", "student_id": "s-bob", "confidence": 0.7}],
            "summary": {"faces_detected": 3},
        }))

        assert result.shape == "keyed_list"
        assert result.matches[0].student_id == "s-bob"
        assert result.summary == {"faces_detected": 3}

    def test_empty_list_is_a_valid_answer(self):
        result = parse_response(json_response({"recognized_students": []}))
        assert result.matches == []

    def test_zip_body(self):
        body = zip_bytes({"out/results.json": {"results": [{"label": "Alice"}]}})
        result = parse_response(RawResponse(body, "application/zip"))

        assert result.shape == "archive"
        assert identities(result) == ["Alice"]

    def test_base64_archive_field(self):
        body = zip_bytes({"results.json": {"recognized_students": ["Carol"]}})
        result = parse_response(json_response({"archive": base64.b64encode(body).decode("ascii")}))
        assert identities(result) == ["Carol"]


class TestUnrecognized:
    @pytest.mark.parametrize("body", [
        b'{"status": "ok"}',
        b"<html>Bad gateway</html>",
        b"",
    ])
    def test_unknown_payloads_raise_with_raw_body(self, body):
        with pytest.raises(ResponseFormatUnrecognizedError) as exc:
            parse_response(RawResponse(body, "text/html"))
        assert exc.value.details["raw_payload"] == body.decode("utf-8")
        assert exc.value.status_code == 502

    def test_archive_without_results_file(self):
        body = zip_bytes({"a.json": {}, "b.json": {}})
        with pytest.raises(ResponseFormatUnrecognizedError):
            parse_response(RawResponse(body, "application/zip"))

    def test_raw_payload_is_truncated(self):
        with pytest.raises(ResponseFormatUnrecognizedError) as exc:
            parse_response(RawResponse(b"x" * 10000))
        assert len(exc.value.details["raw_payload"]) == 2048


@pytest.mark.parametrize("item,expected", [
    ({"label": "A"}, "A"),
    ({"name": "B"}, "B"),
    ({"student_name": "C"}, "C"),
    ({"identity": "D"}, "D"),
    ("E", "E"),
    ({"label": "  ", "name": "F"}, "F"),
    ({"other": 1}, ""),
])
def test_extract_name(item, expected):
    assert extract_name(item) == expected
