"""
File utility functions for staging uploaded images.
"""
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Tuple, Union

from attendance_engine.config.settings import Config
from attendance_engine.exceptions.base import ValidationError

logger = logging.getLogger(__name__)


def _read_upload(upload) -> Tuple[str, bytes]:
    """Accept a werkzeug FileStorage or a (filename, bytes) pair."""
    if isinstance(upload, tuple):
        filename, data = upload
        return filename or "image", data
    return upload.filename or "image", upload.read()


def safe_filename(index: int, original: str) -> str:
    """Generate a collision-free temp filename keeping only the extension."""
    ext = Path(original).suffix.lower() or ".jpg"
    return f"upload_{index}{ext}"


def validate_upload(filename: str, data: bytes) -> None:
    ext = Path(filename).suffix.lower()
    if ext not in Config.ALLOWED_IMAGE_EXTENSIONS:
        raise ValidationError(f"Only JPG and PNG images are allowed: {filename}")
    if not data:
        raise ValidationError(f"Empty upload: {filename}")
    if len(data) > Config.MAX_UPLOAD_BYTES:
        raise ValidationError(
            f"File too large (max {Config.MAX_UPLOAD_BYTES // (1024 * 1024)}MB): {filename}"
        )


@contextmanager
def staged_uploads(uploads: Iterable[Union[Tuple[str, bytes], object]]) -> Iterator[List[str]]:
    """
    Write uploads into a private temporary directory and yield their paths.

    The directory and everything in it is removed when the block exits,
    whether it completes, raises, or is cancelled.
    """
    with tempfile.TemporaryDirectory(prefix="attendance_upload_") as temp_dir:
        paths = []
        for index, upload in enumerate(uploads):
            filename, data = _read_upload(upload)
            validate_upload(filename, data)
            path = os.path.join(temp_dir, safe_filename(index, filename))
            Path(path).write_bytes(data)
            paths.append(path)
        logger.debug(f"Staged {len(paths)} upload(s) in {temp_dir}")
        yield paths
    logger.debug(f"Removed staged uploads in {temp_dir}")
