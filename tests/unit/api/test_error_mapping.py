"""Unit tests for application error to HTTP status mapping."""

import pytest

from cutlist_intake.api.errors import http_error, status_for
from cutlist_intake.core.exceptions import (
    APITimeoutError,
    AppError,
    EmptyFileError,
    FileTooLargeError,
    ProviderNotConfiguredError,
    ProviderServerError,
    RateLimitExceededError,
    ResponseFormatError,
    SessionNotFoundError,
    UnsupportedFileTypeError,
)


@pytest.mark.parametrize(
    "error,expected",
    [
        (FileTooLargeError("too big"), 413),
        (UnsupportedFileTypeError("nope"), 415),
        (UnsupportedFileTypeError("sheet", code="SPREADSHEET_USE_CLIENT_PARSER"), 415),
        (ResponseFormatError("prose"), 422),
        (EmptyFileError("empty"), 400),
        (SessionNotFoundError("gone"), 404),
        (ProviderNotConfiguredError("no key"), 503),
        (RateLimitExceededError("slow down"), 429),
        (APITimeoutError("timeout"), 504),
        (ProviderServerError("upstream 500"), 502),
        (AppError("boom"), 500),
    ],
)
def test_status_for(error, expected):
    assert status_for(error) == expected


def test_http_error_detail():
    exception = http_error(FileTooLargeError("File exceeds the 20MB limit"))

    assert exception.status_code == 413
    assert exception.detail == {
        "error": "FILE_TOO_LARGE",
        "message": "File exceeds the 20MB limit",
        "detail": "FileTooLargeError",
    }
