"""Truncation detection and error classification for model responses."""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

from cutlist_intake.core.exceptions import (
    APIClientError,
    APITimeoutError,
    ProviderServerError,
    RateLimitExceededError,
    ResponseFormatError,
    TransientAPIError,
)

LENGTH_STOP_REASONS = frozenset({"length", "max_tokens", "max_output_tokens", "finish_reason_max_tokens"})
CLOSERS = {"{": "}", "[": "]"}


@dataclass(frozen=True)
class TruncationReport:
    truncated: bool
    reason: Optional[str] = None


def strip_code_fences(payload: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    cleaned = (payload or "").strip()
    if cleaned.startswith("```"):
        newline = cleaned.find("\n")
        cleaned = cleaned[newline + 1:] if newline != -1 else cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def detect_truncation(payload: Optional[str], stop_reason: Optional[str] = None) -> TruncationReport:
    """Flag a response that stopped mid-structure.

    Args:
        payload: Raw model output
        stop_reason: Provider finish reason, if reported

    Returns:
        TruncationReport: Whether the output looks cut off, and why
    """
    if stop_reason and str(stop_reason).lower() in LENGTH_STOP_REASONS:
        return TruncationReport(True, f"provider stop reason: {stop_reason}")

    text = strip_code_fences(payload or "")
    if not text:
        return TruncationReport(False)

    stack = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in CLOSERS:
            stack.append(CLOSERS[char])
        elif char in ("}", "]") and stack and stack[-1] == char:
            stack.pop()

    if in_string:
        return TruncationReport(True, "unterminated string at end of payload")
    if stack:
        return TruncationReport(True, f"{len(stack)} unclosed bracket(s) at end of payload")
    return TruncationReport(False)


class ErrorCategory(str, Enum):
    NETWORK_ERROR = "NETWORK_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    TRUNCATION = "TRUNCATION"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    TIMEOUT = "TIMEOUT"
    CONTENT_FILTER = "CONTENT_FILTER"
    API_ERROR = "API_ERROR"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ErrorClassification:
    category: ErrorCategory
    retryable: bool
    message: str


def classify_error(error: BaseException) -> ErrorClassification:
    """Map any exception raised around a provider call to a category."""
    message = str(error) or type(error).__name__
    lowered = message.lower()

    if isinstance(error, (APITimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorClassification(ErrorCategory.TIMEOUT, True, message)
    if isinstance(error, RateLimitExceededError) or "rate limit" in lowered or "429" in lowered:
        return ErrorClassification(ErrorCategory.RATE_LIMIT, True, message)
    if isinstance(error, (ProviderServerError, httpx.TransportError, ConnectionError)):
        return ErrorClassification(ErrorCategory.NETWORK_ERROR, True, message)
    if "truncat" in lowered:
        return ErrorClassification(ErrorCategory.TRUNCATION, False, message)
    if any(word in lowered for word in ("safety", "content filter", "blocked", "refus")):
        return ErrorClassification(ErrorCategory.CONTENT_FILTER, False, message)
    if isinstance(error, ResponseFormatError) or "json" in lowered:
        return ErrorClassification(ErrorCategory.INVALID_RESPONSE, False, message)
    if isinstance(error, APIClientError):
        return ErrorClassification(ErrorCategory.API_ERROR, isinstance(error, TransientAPIError), message)
    return ErrorClassification(ErrorCategory.UNKNOWN, False, message)
