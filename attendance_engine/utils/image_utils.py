"""
Image processing utilities for recognition batches.
"""
import logging
from typing import Tuple, Optional
import cv2
import numpy as np
from attendance_engine.config.settings import Config
from attendance_engine.exceptions.base import ValidationError

logger = logging.getLogger(__name__)

def resize_frame(frame: np.ndarray) -> np.ndarray:
    """
    Resize the frame to fit within Config.IMAGE_MAX_WIDTH/HEIGHT
    while maintaining aspect ratio.
    """
    if frame is None or frame.size == 0:
        logger.warning("Invalid frame provided to resize_frame")
        return frame

    max_w = Config.IMAGE_MAX_WIDTH
    max_h = Config.IMAGE_MAX_HEIGHT

    height, width = frame.shape[:2]

    # Calculate scale to fit both dimensions
    scale = min(max_w / width, max_h / height, 1.0)

    if scale < 1.0:
        new_width = max(1, int(width * scale))
        new_height = max(1, int(height * scale))
        return cv2.resize(frame, (new_width, new_height), interpolation=cv2.INTER_AREA)

    return frame

def encode_jpeg(frame: np.ndarray, quality: Optional[int] = None) -> Tuple[bool, Optional[np.ndarray]]:
    """
    Compress frame to JPEG.

    Returns:
        Tuple of (Success, Encoded Buffer)
    """
    if frame is None or frame.size == 0:
        return False, None

    success, buffer = cv2.imencode(
        ".jpg",
        frame,
        [int(cv2.IMWRITE_JPEG_QUALITY), quality or Config.IMAGE_JPEG_QUALITY]
    )
    if not success:
        return False, None
    return True, buffer

def normalize_image_bytes(data: bytes, name: str = "image") -> bytes:
    """
    Decode an uploaded image, downscale it to the configured bounds and
    re-encode it as JPEG so every image in a batch has the same format.

    Raises:
        ValidationError: when the bytes are not a decodable image
    """
    frame = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
    if frame is None or frame.size == 0:
        raise ValidationError(f"Unreadable image: {name}")

    frame = resize_frame(frame)
    success, buffer = encode_jpeg(frame)
    if not success or buffer is None:
        raise ValidationError(f"Failed to encode image: {name}")

    logger.debug(f"Normalized {name}: {len(data) / 1024:.1f}KB -> {buffer.nbytes / 1024:.1f}KB")
    return buffer.tobytes()
