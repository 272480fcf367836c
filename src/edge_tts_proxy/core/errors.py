"""
Error Codes and Exceptions.

Every failure that can end a speech job is a ProxyError carrying a code
from ErrorCode. The pipeline components in `tts/` raise them, the service
layer passes them through, and the API layer maps them onto HTTP status
codes and the OpenAI error envelope.

Taxonomy:
    - InvalidInputError: empty or malformed request, rejected before any
      upstream call
    - TokenAcquisitionError: session token handshake failed on every attempt
      and no cached token was available
    - UpstreamSynthesisError: a chunk's synthesis call returned non-2xx or
      failed in transport; aborts the whole job
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ErrorCode:
    """
    Standardized error codes for API responses.

    Returned as the `code` field of the OpenAI-style error envelope.
    """
    INVALID_INPUT = "INVALID_INPUT"                         # Bad request data
    TOKEN_ACQUISITION_FAILED = "TOKEN_ACQUISITION_FAILED"   # Handshake exhausted
    UPSTREAM_SYNTHESIS_FAILED = "UPSTREAM_SYNTHESIS_FAILED" # Chunk synthesis error
    INTERNAL_ERROR = "INTERNAL_ERROR"                       # Unexpected error


class ProxyError(Exception):
    """
    Base exception for speech job errors.

    Attributes:
        message: Human-readable error message.
        code: Error code from ErrorCode class.
        details: Optional dictionary with additional context.
    """
    def __init__(self, message: str, code: str = ErrorCode.INTERNAL_ERROR, details: Optional[Dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to standardized error dict."""
        result: Dict[str, Any] = {
            "ok": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class InvalidInputError(ProxyError):
    """Raised when request input is missing or invalid."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.INVALID_INPUT, details)


class TokenAcquisitionError(ProxyError):
    """Raised when no session token could be obtained."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.TOKEN_ACQUISITION_FAILED, details)


class UpstreamSynthesisError(ProxyError):
    """
    Raised when the upstream synthesis endpoint rejects a chunk.

    Attributes:
        status: Upstream HTTP status, or None for transport failures.
        body: Upstream response text (error description for transport failures).
    """
    def __init__(self, status: Optional[int], body: str, details: Optional[Dict] = None):
        self.status = status
        self.body = body
        merged = {"upstream_status": status, "upstream_body": body}
        merged.update(details or {})
        label = status if status is not None else "transport"
        super().__init__(f"Upstream synthesis error: {label} {body}".rstrip(), ErrorCode.UPSTREAM_SYNTHESIS_FAILED, merged)
