"""
Input Validation for Speech Jobs.

Validation runs before normalization so that a bad request never costs an
upstream handshake.

Validation Rules:
    - Text: Required, must contain a non-whitespace character
    - Voice: Optional, max 100 characters, letters/digits/dashes only
    - Style, role: Optional, max 50 characters, letters/digits/dashes/underscores
    - Concurrency, max chunk length: Optional positive integers

Voice, style and role end up inside markup attributes unescaped, hence the
restricted character sets.

Error Handling:
    All validation functions raise ValidationError with:
        - message: Human-readable error description
        - code: Machine-readable error code (e.g., "TEXT_REQUIRED")

    Error codes follow a consistent naming pattern:
        - {FIELD}_REQUIRED: Missing required field
        - {FIELD}_TOO_LONG: Exceeds max length
        - {FIELD}_INVALID: Format/content invalid

Usage:
    from edge_tts_proxy.services.validators import validate_text, ValidationError

    try:
        text = validate_text(request.text)
    except ValidationError as e:
        raise InvalidInputError(e.message, {"field_code": e.code})
"""
from __future__ import annotations

import re
from typing import Optional

from edge_tts_proxy.core.logging import debug, get_logger

_LOG = get_logger("edge-tts-proxy.validators")

_VOICE_RE = re.compile(r"^[A-Za-z0-9-]+$")
_STYLE_RE = re.compile(r"^[A-Za-z0-9_-]+$")

MAX_VOICE_CHARS = 100
MAX_STYLE_CHARS = 50


class ValidationError(Exception):
    """
    Exception raised when input validation fails.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for programmatic handling.

    Example:
        >>> raise ValidationError("Text is required", "TEXT_REQUIRED")
    """

    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


def validate_text(text: Optional[str]) -> str:
    """
    Validate request text.

    The text is returned unchanged; trimming is the normalizer's job.

    Raises:
        ValidationError: If the text is missing or blank.
    """
    if not text or not text.strip():
        raise ValidationError("'input' is a required parameter.", "TEXT_REQUIRED")
    return text


def validate_voice(voice: Optional[str]) -> Optional[str]:
    """
    Validate an upstream voice name.

    Returns:
        The voice, or None if not given.

    Raises:
        ValidationError: If too long or containing other characters.
    """
    if not voice:
        return None
    if len(voice) > MAX_VOICE_CHARS:
        raise ValidationError(
            f"Voice exceeds maximum length ({len(voice)} > {MAX_VOICE_CHARS})",
            "VOICE_TOO_LONG",
        )
    if not _VOICE_RE.match(voice):
        debug(_LOG, "voice_rejected", voice=voice)
        raise ValidationError(f"Invalid voice name: {voice!r}", "VOICE_INVALID")
    return voice


def validate_style(value: Optional[str], field: str = "style") -> str:
    """Validate a style or role name; empty means unset."""
    if not value:
        return ""
    upper = field.upper()
    if len(value) > MAX_STYLE_CHARS:
        raise ValidationError(
            f"{field} exceeds maximum length ({len(value)} > {MAX_STYLE_CHARS})",
            f"{upper}_TOO_LONG",
        )
    if not _STYLE_RE.match(value):
        raise ValidationError(f"Invalid {field}: {value!r}", f"{upper}_INVALID")
    return value


def validate_positive(value: Optional[int], field: str) -> Optional[int]:
    """Validate an optional positive integer override."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer, got {value!r}", f"{field.upper()}_INVALID")
    return value
