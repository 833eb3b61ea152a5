"""Image decode/encode keyed by file-extension format hints."""

from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from contracts import PixelBuffer
from exceptions import ImageDecodeError, ImageEncodeError

SAMPLE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")
ENCODE_EXTENSIONS = SAMPLE_EXTENSIONS + (".bmp", ".tif", ".tiff")


def normalize_extension(hint: str) -> str:
    """'.JPG', 'jpg' and 'photo.jpg' all become '.jpg'."""
    hint = (hint or "").strip().lower()
    if "." in hint:
        hint = hint[hint.rfind(".") :]
    elif hint:
        hint = "." + hint
    return hint


def decode_image(data: bytes, source: Optional[str] = None) -> PixelBuffer:
    """Decode an encoded image buffer into a BGR array.

    Raises:
        ImageDecodeError: If the buffer is empty or not a supported image
    """
    label = source or "<buffer>"
    if not data:
        raise ImageDecodeError(f"Empty image buffer: {label}", source=source)
    buffer = np.frombuffer(data, dtype=np.uint8)
    try:
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    except cv2.error as e:
        raise ImageDecodeError(f"Failed to decode {label}: {e}", source=source)
    if image is None:
        raise ImageDecodeError(f"Failed to decode {label}", source=source)
    return image


def encode_image(image: PixelBuffer, format_hint: str) -> bytes:
    """Encode an image in the format named by an extension-like hint.

    Raises:
        ImageEncodeError: If the format is unsupported or encoding fails
    """
    ext = normalize_extension(format_hint)
    if ext not in ENCODE_EXTENSIONS:
        raise ImageEncodeError(
            f"Unsupported output format '{format_hint}' (supported: {', '.join(ENCODE_EXTENSIONS)})"
        )
    try:
        ok, encoded = cv2.imencode(ext, image)
    except cv2.error as e:
        raise ImageEncodeError(f"Failed to encode {ext} image: {e}")
    if not ok:
        raise ImageEncodeError(f"Failed to encode {ext} image")
    return encoded.tobytes()
