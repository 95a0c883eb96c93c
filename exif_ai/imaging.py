"""
Image format detection for uploads and provider payloads.
"""

import io
from typing import NamedTuple
from PIL import Image, UnidentifiedImageError


class ImageFormat(NamedTuple):
    extension: str
    mime_type: str


DEFAULT_FORMAT = ImageFormat(".jpg", "image/jpeg")


def sniff_image(data: bytes) -> ImageFormat:
    """Identify an image from its bytes, falling back to JPEG.

    Only the header is parsed; pixel data is never decoded.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            fmt = image.format
    except (UnidentifiedImageError, OSError, ValueError):
        return DEFAULT_FORMAT

    if not fmt:
        return DEFAULT_FORMAT
    mime_type = Image.MIME.get(fmt, DEFAULT_FORMAT.mime_type)
    extension = ".jpg" if fmt == "JPEG" else f".{fmt.lower()}"
    return ImageFormat(extension, mime_type)
