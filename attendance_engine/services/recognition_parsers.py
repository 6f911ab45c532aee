"""
Parsers for the response shapes the recognition service has returned over time.

Each parser either claims a payload (returning its matches, possibly none)
or returns None to let the next parser try. Order matters: the first parser
that claims a payload wins.
"""
import base64
import binascii
import io
import json
import logging
import zipfile
from typing import Any, List, Optional

from attendance_engine.config.settings import Config
from attendance_engine.exceptions.base import ResponseFormatUnrecognizedError
from attendance_engine.schemas.models import RecognitionMatch, RecognitionResult

logger = logging.getLogger(__name__)

NAME_FIELDS = ("label", "name", "student_name", "identity")
ZIP_MAGIC = b"PK\x03\x04"


class RawResponse:
    """Body of a recognition response plus its decoded JSON, when it is JSON."""

    def __init__(self, content: bytes, content_type: str = ""):
        self.content = content or b""
        self.content_type = (content_type or "").lower()
        self.json = self._decode_json()

    def _decode_json(self) -> Any:
        if self.content.startswith(ZIP_MAGIC):
            return None
        try:
            return json.loads(self.content.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return None

    @property
    def is_zip(self) -> bool:
        return self.content.startswith(ZIP_MAGIC) or "zip" in self.content_type


def extract_name(item: Any) -> str:
    """Pull the name-like field out of one result, whichever variant it uses."""
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        for field in NAME_FIELDS:
            value = item.get(field)
            if isinstance(value, str) and value.strip():
                return value
    return ""


def _to_match(item: Any) -> Optional[RecognitionMatch]:
    if isinstance(item, dict):
        if item.get("matched") is False or item.get("success") is False:
            return None
        confidence = item.get("confidence", item.get("score", 0.0))
        student_id = item.get("student_id")
        name = extract_name(item)
        if not name and not student_id:
            return None
        try:
            confidence = float(confidence or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0
        return RecognitionMatch(
            identity=name or str(student_id),
            confidence=confidence,
            bbox=item.get("bbox"),
            student_id=str(student_id) if student_id is not None else None,
        )
    name = extract_name(item)
    return RecognitionMatch(identity=name) if name else None


def _collect(items: List[Any]) -> List[RecognitionMatch]:
    """Flatten result items, descending into per-image `matches` lists."""
    matches = []
    for item in items:
        if isinstance(item, dict) and isinstance(item.get("matches"), list):
            if item.get("success") is False:
                continue
            matches.extend(_collect(item["matches"]))
            continue
        match = _to_match(item)
        if match is not None:
            matches.append(match)
    return matches


class InlineListParser:
    """A list of identities inline: a bare list, or under `results` / `matches`."""
    name = "inline_list"

    def parse(self, raw: RawResponse) -> Optional[List[RecognitionMatch]]:
        payload = raw.json
        if isinstance(payload, list):
            return _collect(payload)
        if isinstance(payload, dict):
            for field in ("results", "matches"):
                if isinstance(payload.get(field), list):
                    return _collect(payload[field])
        return None


class KeyedListParser:
    """Newer service versions return the list under `recognized_students`."""
    name = "keyed_list"
    field = "recognized_students"

    def parse(self, raw: RawResponse) -> Optional[List[RecognitionMatch]]:
        payload = raw.json
        if isinstance(payload, dict) and isinstance(payload.get(self.field), list):
            return _collect(payload[self.field])
        return None


class ArchiveParser:
    """
    A zip archive, either as the response body or base64-encoded under
    `archive`, holding a results file in one of the JSON shapes above.
    """
    name = "archive"

    def __init__(self, inner_parsers: List[Any], results_file: Optional[str] = None):
        self.inner_parsers = inner_parsers
        self.results_file = results_file or Config.RECOGNITION_RESULTS_FILE

    def _archive_bytes(self, raw: RawResponse) -> Optional[bytes]:
        if raw.is_zip:
            return raw.content
        if isinstance(raw.json, dict) and isinstance(raw.json.get("archive"), str):
            try:
                return base64.b64decode(raw.json["archive"], validate=True)
            except (binascii.Error, ValueError):
                logger.warning("Archive field is not valid base64")
        return None

    def _results_member(self, archive: zipfile.ZipFile) -> Optional[str]:
        names = [n for n in archive.namelist() if not n.endswith("/")]
        for name in names:
            if name.rsplit("/", 1)[-1] == self.results_file:
                return name
        json_files = [n for n in names if n.lower().endswith(".json")]
        return json_files[0] if len(json_files) == 1 else None

    def parse(self, raw: RawResponse) -> Optional[List[RecognitionMatch]]:
        data = self._archive_bytes(raw)
        if data is None:
            return None
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                member = self._results_member(archive)
                if member is None:
                    logger.warning(f"Archive has no {self.results_file}: {archive.namelist()}")
                    return None
                inner = RawResponse(archive.read(member), "application/json")
        except zipfile.BadZipFile:
            logger.warning("Archive payload is not a valid zip file")
            return None

        for parser in self.inner_parsers:
            matches = parser.parse(inner)
            if matches is not None:
                return matches
        return None


def default_parsers() -> List[Any]:
    inline, keyed = InlineListParser(), KeyedListParser()
    return [inline, keyed, ArchiveParser([inline, keyed])]


def parse_response(raw: RawResponse, parsers: Optional[List[Any]] = None) -> RecognitionResult:
    """
    Run the parser chain over a response.

    Raises:
        ResponseFormatUnrecognizedError: no parser claimed the payload
    """
    for parser in parsers or default_parsers():
        matches = parser.parse(raw)
        if matches is not None:
            summary = raw.json.get("summary") if isinstance(raw.json, dict) else None
            logger.info(f"Recognition response parsed as {parser.name}: {len(matches)} match(es)")
            return RecognitionResult(matches=matches, shape=parser.name,
                                     summary=summary if isinstance(summary, dict) else None)
    raise ResponseFormatUnrecognizedError(raw.content)
