"""Unit tests for truncation detection and error classification."""

import httpx

from cutlist_intake.core.exceptions import (
    ProviderRequestError,
    RateLimitExceededError,
    ResponseFormatError,
)
from cutlist_intake.services.resilience.truncation import (
    ErrorCategory,
    classify_error,
    detect_truncation,
    strip_code_fences,
)


class TestDetectTruncation:
    """Structural truncation checks."""

    def test_complete_payload(self):
        assert detect_truncation('{"parts": [{"length": 720}]}').truncated is False

    def test_unclosed_brackets(self):
        report = detect_truncation('{"parts": [{"length": 720}, {"length": 6')

        assert report.truncated is True
        assert "unclosed" in report.reason

    def test_unterminated_string(self):
        report = detect_truncation('{"parts": [{"label": "Side pan')

        assert report.truncated is True
        assert "unterminated string" in report.reason

    def test_brackets_inside_strings_are_ignored(self):
        assert detect_truncation('{"notes": "cut [approx] {see drawing}"}').truncated is False

    def test_length_stop_reason(self):
        report = detect_truncation('{"parts": []}', stop_reason="MAX_TOKENS")

        assert report.truncated is True
        assert "MAX_TOKENS" in report.reason

    def test_code_fences_are_ignored(self):
        fenced = '```json\n{"parts": []}\n```'

        assert strip_code_fences(fenced) == '{"parts": []}'
        assert detect_truncation(fenced).truncated is False


class TestClassifyError:
    """Error categories for logging and retry decisions."""

    def test_rate_limit(self):
        result = classify_error(RateLimitExceededError("too many requests"))

        assert result.category == ErrorCategory.RATE_LIMIT
        assert result.retryable is True

    def test_timeout(self):
        result = classify_error(httpx.ConnectTimeout("connect timeout"))

        assert result.category == ErrorCategory.TIMEOUT
        assert result.retryable is True

    def test_bad_request_is_not_retryable(self):
        result = classify_error(ProviderRequestError("API Client Error 400"))

        assert result.category == ErrorCategory.API_ERROR
        assert result.retryable is False

    def test_unreadable_response(self):
        result = classify_error(ResponseFormatError("no parts found"))

        assert result.category == ErrorCategory.INVALID_RESPONSE

    def test_content_filter(self):
        result = classify_error(ValueError("response blocked by safety settings"))

        assert result.category == ErrorCategory.CONTENT_FILTER
