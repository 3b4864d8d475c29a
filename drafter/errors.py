"""
Error types for the Financial Statements Drafter.

Every failure that reaches an HTTP caller is one of these, carrying the
status code and the upstream detail needed for debugging.
"""

from typing import Any, Optional


class DrafterError(Exception):
    """Base class: a message for the caller, optional details and an HTTP status."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


# =============================================================================
# INPUT ERRORS (400)
# =============================================================================

class ValidationError(DrafterError):
    status_code = 400


class CorruptPayloadError(ValidationError):
    """Base64 payload that is truncated or cannot be decoded."""


class UnsupportedFileTypeError(ValidationError):
    pass


class PayloadTooLargeError(ValidationError):
    pass


class ExtractionError(DrafterError):
    """A document was present but could not be read."""

    status_code = 400


# =============================================================================
# UPSTREAM ERRORS
# =============================================================================

class UpstreamAuthError(DrafterError):
    """A credential needed for an upstream call is not configured."""

    status_code = 500


class UpstreamAPIError(DrafterError):
    status_code = 502


class RegistryError(UpstreamAPIError):
    """Non-success response from the company registry, status passed through."""

    def __init__(self, status: int, body: str, message: Optional[str] = None):
        super().__init__(
            message or f"Companies House API error: {status}",
            details=body,
            status_code=status,
        )
        self.status = status
        self.body = body


class NoTextGeneratedError(UpstreamAPIError):
    """The model answered but returned no text (e.g. safety filtering)."""

    def __init__(self, model: str, finish_reason: Optional[str] = None, diagnostics: Optional[dict] = None):
        details = {"modelTried": model}
        if finish_reason:
            details["finishReason"] = finish_reason
        if diagnostics:
            details.update(diagnostics)
        super().__init__("No text generated by Gemini", details=details)
        self.model = model
        self.finish_reason = finish_reason


class GenerationTimeoutError(DrafterError):
    status_code = 504


class ModelUnavailableError(DrafterError):
    """Every candidate model was rejected as not found / not supported."""

    status_code = 500

    def __init__(self, tried: list[str], available: Optional[list[str]] = None):
        details = {"tried": tried}
        if available is not None:
            details["available"] = available
        super().__init__(
            f"No usable Gemini model among: {', '.join(tried)}",
            details=details,
        )
        self.tried = tried
        self.available = available
