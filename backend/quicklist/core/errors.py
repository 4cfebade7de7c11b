"""
Exception hierarchy for the listing pipeline.

Only NoUsablePhotos and PipelineCancelled ever reach a route from the
pipeline itself; every stage converts the rest into its own empty/default
record. The direct endpoints (pricing, photo checks) may still surface
UpstreamError to the client.
"""

from typing import Any, Dict, Optional


class QuickListError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(
        self,
        message: str,
        code: str = "QUICKLIST_ERROR",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message


class ExtractionFailure(QuickListError):
    """No parseable JSON object in model output."""

    def __init__(self, message: str = "No JSON object found in model output", **kwargs: Any):
        super().__init__(message, code="EXTRACTION_FAILURE", **kwargs)


class NoUsablePhotos(QuickListError):
    """The request carried no photo with usable bytes."""

    def __init__(self, message: str = "At least one photo is required", **kwargs: Any):
        super().__init__(message, code="NO_USABLE_PHOTOS", **kwargs)


# ============================================================
# Upstream (external collaborator) errors
# ============================================================

class UpstreamError(QuickListError):
    """An external call failed."""

    def __init__(
        self,
        message: str,
        code: str = "UPSTREAM_ERROR",
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, code=code, **kwargs)
        self.status_code = status_code
        self.body = body


class UpstreamTimeout(UpstreamError):
    """An external call exceeded its deadline."""

    def __init__(self, message: str = "Upstream call timed out", **kwargs: Any):
        super().__init__(message, code="UPSTREAM_TIMEOUT", **kwargs)


class GeminiRequestError(UpstreamError):
    def __init__(self, message: str, **kwargs: Any):
        super().__init__(message, code="GEMINI_ERROR", **kwargs)


class GeminiRateLimitError(GeminiRequestError):
    def __init__(self, message: str, retry_after_seconds: Optional[float] = None, **kwargs: Any):
        super().__init__(message, status_code=429, **kwargs)
        self.code = "RATE_LIMITED"
        self.retry_after_seconds = retry_after_seconds


class SerpApiError(UpstreamError):
    def __init__(self, message: str, **kwargs: Any):
        super().__init__(message, code="SERPAPI_ERROR", **kwargs)


class PipelineCancelled(QuickListError):
    """
    Caller-initiated cancellation. Stages re-raise it ahead of their
    fail-open handlers so no partial result is returned.
    """

    def __init__(self, message: str = "Request cancelled", **kwargs: Any):
        super().__init__(message, code="CANCELLED", **kwargs)
