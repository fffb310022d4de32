"""Photo intake: base64 decoding, size limit, and image sanity checks.

Uploads arrive as base64, optionally as a full data URI
("data:image/png;base64,...."). The prefix is stripped, the payload is
bounded, and Pillow must be able to decode it before it is sent to the model.
"""

from __future__ import annotations

import base64
import binascii
import io
import re

import structlog
from PIL import Image

from lens_inventory.errors import ImageTooLarge, InvalidImage
from lens_inventory.utils.gemini import ImagePayload

logger = structlog.get_logger()

_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w=.-]+)*;base64,", re.IGNORECASE)

_FORMAT_MIME_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "HEIF": "image/heif",
}


def strip_data_uri(data: str) -> str:
    """Drop a ``data:<mime>;base64,`` prefix if present."""
    data = data.strip()
    match = _DATA_URI.match(data)
    if match:
        return data[match.end() :]
    return data


def _estimated_size(b64: str) -> int:
    return len(b64) * 3 // 4


def _too_large(max_bytes: int, detail: str) -> ImageTooLarge:
    if max_bytes >= 1024 * 1024:
        limit = f"{max_bytes // (1024 * 1024)} MB"
    else:
        limit = f"{max_bytes} byte"
    return ImageTooLarge(f"Image is larger than the {limit} limit.", detail=detail)


def decode_image(data: str, *, max_bytes: int | None = None) -> ImagePayload:
    """Decode a base64 (or data URI) photo into a validated ImagePayload.

    Raises ImageTooLarge when the decoded size exceeds ``max_bytes`` and
    InvalidImage when the payload is not base64 or not a decodable image.
    """
    b64 = "".join(strip_data_uri(data).split())
    if not b64:
        raise InvalidImage("No image data was provided.")

    # Check before decoding so oversized uploads are never materialized
    if max_bytes is not None and _estimated_size(b64) > max_bytes + 2:
        raise _too_large(max_bytes, f"approx_bytes={_estimated_size(b64)}")

    try:
        raw = base64.b64decode(b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImage("Image data is not valid base64.") from exc

    if max_bytes is not None and len(raw) > max_bytes:
        raise _too_large(max_bytes, f"bytes={len(raw)}")

    try:
        img = Image.open(io.BytesIO(raw))
        img.load()  # Force full decode to catch truncated files
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
        logger.warning("image_decode_failed", error=str(exc), size_bytes=len(raw))
        raise InvalidImage("Could not open image. Please upload a valid JPEG or PNG.") from exc

    mime_type = _FORMAT_MIME_TYPES.get(img.format or "", "image/jpeg")
    logger.debug("image_decoded", mime_type=mime_type, width=img.width, height=img.height)
    return ImagePayload(data=raw, mime_type=mime_type)
