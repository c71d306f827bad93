from typing import Any, Dict, Optional

import httpx
from httpx import HTTPStatusError, TimeoutException

from cutlist_intake.core.exceptions import (
    APIClientError,
    APITimeoutError,
    ProviderAuthError,
    ProviderRequestError,
    ProviderServerError,
    RateLimitExceededError,
)
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


class BaseLLMClient:
    """Base client for HTTP JSON APIs (model providers, OCR service).

    Performs a single request and translates failures into the application
    error taxonomy; retries and admission control are applied by the caller
    through ``ProviderRateLimiter``.
    """

    def __init__(self, api_key: str, base_url: str, timeout: float = 60):
        """Initialize the client.

        Args:
            api_key: API key for authentication (may be empty)
            base_url: Base URL for the API
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/") if base_url else ""
        self.timeout = timeout
        self.logger = LOGGER

    def _headers(self, headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        default_headers = {"Content-Type": "application/json"}
        if self.api_key:
            default_headers["Authorization"] = f"Bearer {self.api_key}"
        if headers:
            default_headers.update(headers)
        return default_headers

    async def call_api(
        self,
        endpoint: str = "",
        method: str = "POST",
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Call the API once.

        Args:
            endpoint: API endpoint (appended to base_url)
            method: HTTP method (POST, GET, etc.)
            payload: JSON payload, or query params for GET
            headers: Additional headers
            timeout: Override of the client timeout

        Returns:
            Parsed JSON response

        Raises:
            APITimeoutError: On timeouts
            RateLimitExceededError: On 429 responses
            ProviderServerError: On 5xx responses and transport failures
            ProviderAuthError: On 401/403 responses
            ProviderRequestError: On other 4xx responses
            APIClientError: If the body is not JSON
        """
        url = f"{self.base_url}{endpoint}" if endpoint else self.base_url
        request_timeout = timeout or self.timeout

        self.logger.debug(f"Calling API: {url}", extra={"method": method, "timeout": request_timeout})

        try:
            async with httpx.AsyncClient(timeout=request_timeout) as client:
                if method.upper() == "GET":
                    response = await client.get(url, headers=self._headers(headers), params=payload)
                else:
                    response = await client.post(url, headers=self._headers(headers), json=payload)
                response.raise_for_status()
                return response.json()

        except HTTPStatusError as e:
            raise self._map_http_error(e, url) from e

        except TimeoutException as e:
            self.logger.warning("API Timeout", extra={"url": url, "timeout": request_timeout})
            raise APITimeoutError(f"API Timeout after {request_timeout}s: {url}", original_error=e) from e

        except httpx.TransportError as e:
            self.logger.warning("API transport error", extra={"url": url, "error": str(e)})
            raise ProviderServerError(f"Could not reach {url}: {e}", original_error=e) from e

        except ValueError as e:
            raise APIClientError(f"Invalid JSON from {url}", original_error=e) from e

    def _map_http_error(self, error: HTTPStatusError, url: str) -> APIClientError:
        """Translate an HTTP status error into the application taxonomy."""
        status_code = error.response.status_code
        try:
            error_body = error.response.text
        except Exception:
            error_body = "Could not read response body"

        self.logger.warning(
            "API HTTP error",
            extra={"url": url, "status_code": status_code, "error_body": error_body[:500]},
        )

        if status_code == 429:
            retry_after = error.response.headers.get("retry-after")
            try:
                retry_seconds = float(retry_after) if retry_after else None
            except ValueError:
                retry_seconds = None
            return RateLimitExceededError(
                f"Rate limited by {url}", original_error=error, retry_after=retry_seconds
            )
        if status_code in (401, 403):
            return ProviderAuthError(f"API authentication failed ({status_code})", original_error=error)
        if 400 <= status_code < 500:
            return ProviderRequestError(
                f"API Client Error {status_code}: {error_body[:200]}", original_error=error
            )
        return ProviderServerError(f"API HTTP Error {status_code}", original_error=error)
