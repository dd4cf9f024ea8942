"""Validation and sanitation of signature submissions.

Only the shape of the signature image is checked (data-URL prefix, allowed
image type, size estimate, base64 decodability). The image content itself is
never rendered or inspected.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re

from pay2start.domain.exceptions import MalformedInputError, PayloadTooLargeError

ALLOWED_IMAGE_TYPES = frozenset({"png", "jpeg", "jpg", "webp"})
MAX_NAME_LENGTH = 200
MIN_NAME_LENGTH = 2

_DATA_URL_RE = re.compile(r"^data:image/(?P<kind>[a-zA-Z0-9.+-]+);base64,(?P<payload>.*)$", re.DOTALL)
_JS_SCHEME_RE = re.compile(r"javascript\s*:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"\bon\w+\s*=", re.IGNORECASE)


def sanitize_full_name(raw: str) -> str:
    """Strip markup and script-like fragments from a signer's name.

    Raises:
        MalformedInputError: If fewer than two characters survive.
    """
    name = raw.strip()
    name = name.replace("<", "").replace(">", "")
    name = _JS_SCHEME_RE.sub("", name)
    name = _EVENT_HANDLER_RE.sub("", name)
    name = name.strip()[:MAX_NAME_LENGTH]
    if len(name) < MIN_NAME_LENGTH:
        raise MalformedInputError(
            message="Full name must be at least 2 characters",
            code="NAME_TOO_SHORT",
        )
    return name


def decode_signature_data_url(data_url: str, max_bytes: int) -> bytes:
    """Validate a signature data-URL and return the decoded image bytes.

    Raises:
        MalformedInputError: Wrong shape, disallowed type, or undecodable base64.
        PayloadTooLargeError: Estimated decoded size above max_bytes.
    """
    match = _DATA_URL_RE.match(data_url)
    if match is None or match.group("kind").lower() not in ALLOWED_IMAGE_TYPES:
        raise MalformedInputError(
            message="Signature must be a base64 image data URL (PNG, JPEG, or WebP)",
            code="INVALID_SIGNATURE_FORMAT",
        )

    payload = match.group("payload").strip()
    if not payload:
        raise MalformedInputError(
            message="Signature image data is empty",
            code="INVALID_SIGNATURE_FORMAT",
        )

    estimated_size = len(payload) * 3 // 4
    if estimated_size > max_bytes:
        raise PayloadTooLargeError("Signature image too large")

    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as err:
        raise MalformedInputError(
            message="Signature image is not valid base64",
            code="INVALID_SIGNATURE_ENCODING",
        ) from err


def contract_content_hash(content: str) -> str:
    """SHA-256 of the contract text as signed, for later integrity checks."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
