"""
multipart/form-data decoding for uploaded images.

The body is handled as raw bytes from start to finish so that binary file
payloads come out exactly as they were sent. Parsing is permissive: a part
that cannot be understood is dropped and the remaining parts are still
returned. Only a body with no usable part at all is an error.
"""

import re
from typing import Optional, Tuple
from .models import DecodedForm
from .logging import get_logger


logger = get_logger("multipart")

_BOUNDARY_RE = re.compile(r'boundary=(?:"([^"]+)"|([^;\s]+))', re.IGNORECASE)
_NAME_RE = re.compile(r'(?<![\w-])name="([^"]*)"', re.IGNORECASE)
_FILENAME_RE = re.compile(r'(?<![\w-])filename="([^"]*)"', re.IGNORECASE)


class ParseError(Exception):
    """Raised when a request body is not decodable multipart data."""
    pass


def extract_boundary(content_type: Optional[str]) -> str:
    """Return the boundary parameter of a multipart content-type header."""
    match = _BOUNDARY_RE.search(content_type or "")
    if not match:
        raise ParseError("No boundary found in content-type")
    return match.group(1) or match.group(2)


def _split_headers(part: bytes) -> Optional[Tuple[bytes, bytes]]:
    """Split a part at its first blank line, or return None if it has none."""
    for separator in (b"\r\n\r\n", b"\n\n"):
        index = part.find(separator)
        if index != -1:
            return part[:index], part[index + len(separator):]
    return None


def _strip_framing(part: bytes) -> bytes:
    """Drop the line break that follows the delimiter."""
    if part.startswith(b"\r\n"):
        part = part[2:]
    elif part.startswith(b"\n"):
        part = part[1:]
    return part


def _strip_trailing_terminator(body: bytes) -> bytes:
    # Exactly one terminator belongs to the framing; anything before it is payload.
    if body.endswith(b"\r\n"):
        return body[:-2]
    if body.endswith(b"\n"):
        return body[:-1]
    return body


def _content_disposition(headers: bytes) -> Optional[str]:
    for line in headers.decode("latin-1").splitlines():
        name, sep, value = line.partition(":")
        if sep and name.strip().lower() == "content-disposition":
            return value.strip()
    return None


def decode_multipart(body: bytes, content_type: Optional[str]) -> DecodedForm:
    """Decode a multipart/form-data body into text fields and file payloads.

    Raises:
        ParseError: if the content type carries no boundary, or no part of
            the body has a header block.
    """
    boundary = extract_boundary(content_type)
    delimiter = b"--" + boundary.encode("latin-1")

    fields = {}
    files = {}
    saw_headers = False

    for raw_part in body.split(delimiter):
        # Closing delimiter is "--boundary--"
        if raw_part.startswith(b"--"):
            continue

        split = _split_headers(_strip_framing(raw_part))
        if split is None:
            continue
        saw_headers = True
        headers, content = split

        disposition = _content_disposition(headers)
        if disposition is None:
            logger.debug("Skipping multipart part without Content-Disposition")
            continue

        name_match = _NAME_RE.search(disposition)
        if not name_match or not name_match.group(1):
            logger.debug("Skipping unnamed multipart part")
            continue
        field_name = name_match.group(1)
        content = _strip_trailing_terminator(content)

        if _FILENAME_RE.search(disposition):
            fields.pop(field_name, None)
            files[field_name] = content
        else:
            files.pop(field_name, None)
            fields[field_name] = content.decode("utf-8", errors="replace")

    if not saw_headers:
        raise ParseError("No multipart parts with headers found in request body")

    return DecodedForm(fields=fields, files=files)
