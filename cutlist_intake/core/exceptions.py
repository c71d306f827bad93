"""Custom exception hierarchy.

Every error carries a stable ``code`` that the API layer returns to callers,
so clients can branch on it without parsing messages.
"""

from typing import List, Optional


class AppError(Exception):
    """Base exception for application errors."""

    code = "PARSE_ERROR"

    def __init__(self, message: str, original_error: Exception = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        if code:
            self.code = code


# Input errors

class ValidationError(AppError):
    """Raised when input validation fails."""
    code = "INVALID_INPUT"


class FileTooLargeError(ValidationError):
    """Raised when an upload exceeds the size ceiling."""
    code = "FILE_TOO_LARGE"


class EmptyFileError(ValidationError):
    """Raised when an upload has no content."""
    code = "EMPTY_FILE"


class UnsupportedFileTypeError(ValidationError):
    """Raised when an upload is not an image or PDF."""
    code = "UNSUPPORTED_FILE_TYPE"


# Configuration errors

class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    code = "CONFIGURATION_ERROR"


class ProviderNotConfiguredError(ConfigurationError):
    """Raised when no vision provider has credentials."""
    code = "AI_NOT_CONFIGURED"


# Provider errors

class APIClientError(AppError):
    """Raised when an external API call fails."""
    code = "API_ERROR"


class TransientAPIError(APIClientError):
    """Provider failure that may succeed when retried."""
    pass


class APITimeoutError(TransientAPIError):
    """Raised when an external API call times out."""
    code = "TIMEOUT"


class ProviderServerError(TransientAPIError):
    """Raised on 5xx responses and connection failures."""
    code = "NETWORK_ERROR"


class RateLimitExceededError(TransientAPIError):
    """Raised when the provider answers with an explicit rate limit."""
    code = "RATE_LIMIT"

    def __init__(
        self,
        message: str,
        original_error: Exception = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, original_error=original_error)
        self.retry_after = retry_after


class ProviderRequestError(APIClientError):
    """Raised on 4xx responses other than rate limiting."""
    code = "BAD_REQUEST"


class ProviderAuthError(ProviderRequestError):
    """Raised when the provider rejects the credentials."""
    code = "AUTH_FAILED"


# Pipeline errors

class PipelineError(AppError):
    """Base exception for pipeline errors."""
    pass


class OCRExtractionError(PipelineError):
    """Raised when the OCR microservice returns an unusable result."""
    code = "OCR_FAILED"


class ResponseFormatError(PipelineError):
    """Raised when a model response cannot be turned into parts."""
    code = "AI_PARSE_FAILED"

    def __init__(self, message: str, raw_response: str = "", remediation: Optional[List[str]] = None):
        super().__init__(message)
        self.raw_response = raw_response
        self.remediation = remediation or []


class PDFConversionError(PipelineError):
    """Raised when no renderer could rasterize a PDF."""
    code = "PDF_CONVERSION_FAILED"


class TemplateDetectionError(PipelineError):
    """Raised when template recognition fails unexpectedly."""
    code = "TEMPLATE_DETECTION_FAILED"


class SessionNotFoundError(AppError):
    """Raised when a parse session id is unknown."""
    code = "SESSION_NOT_FOUND"


class DatabaseError(AppError):
    """Raised when a database operation fails."""
    code = "DATABASE_ERROR"
