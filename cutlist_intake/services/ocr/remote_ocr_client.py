"""Client for the remote OCR microservice."""

import base64
import mimetypes
import time
from typing import Any, Callable, Dict, List, Optional

from cutlist_intake.core.base_llm_client import BaseLLMClient
from cutlist_intake.core.exceptions import APIClientError, OCRExtractionError, PDFConversionError
from cutlist_intake.models.page_data import PageData
from cutlist_intake.services.ocr.ocr_base import OCRResult, RemoteOCRService, RenderedPages
from cutlist_intake.services.resilience.rate_limiter import ProviderRateLimiter
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

EXTRACT_ENDPOINT = "/api/ocr/extract"
PDF_TO_IMAGES_ENDPOINT = "/api/ocr/pdf-to-images"
HEALTH_ENDPOINT = "/health"
PROVIDER_NAME = "ocr"

DEFAULT_OCR_OPTIONS = {"denoise": True, "enhance_contrast": True}


class RemoteOCRClient(BaseLLMClient, RemoteOCRService):
    """HTTP client for the OCR microservice.

    The health result is cached: a healthy answer for ``health_cache_seconds``,
    an unhealthy one for ``health_failure_cache_seconds`` so a recovering
    service is picked up quickly. Extraction calls share the process rate
    limiter under the "ocr" key and are retried on transient errors; the
    health check takes a slot but is never retried.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 90.0,
        health_timeout: float = 10.0,
        health_cache_seconds: float = 60.0,
        health_failure_cache_seconds: float = 5.0,
        enabled: bool = True,
        rate_limiter: Optional[ProviderRateLimiter] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(api_key=api_key, base_url=base_url, timeout=timeout)
        self.enabled = enabled
        self.rate_limiter = rate_limiter or ProviderRateLimiter()
        self.health_timeout = health_timeout
        self.health_cache_seconds = health_cache_seconds
        self.health_failure_cache_seconds = health_failure_cache_seconds
        self._clock = clock
        self._health_cache: Optional[Dict[str, Any]] = None

    @classmethod
    def from_settings(
        cls, ocr_settings, rate_limiter: Optional[ProviderRateLimiter] = None
    ) -> "RemoteOCRClient":
        return cls(
            base_url=ocr_settings.url,
            api_key=ocr_settings.api_key,
            timeout=ocr_settings.timeout,
            health_timeout=ocr_settings.health_timeout,
            health_cache_seconds=ocr_settings.health_cache_seconds,
            health_failure_cache_seconds=ocr_settings.health_failure_cache_seconds,
            enabled=ocr_settings.enabled,
            rate_limiter=rate_limiter,
        )

    def is_configured(self) -> bool:
        return self.enabled and bool(self.base_url)

    async def health_check(self) -> bool:
        """Check service health, using the cached answer while it is fresh."""
        if not self.is_configured():
            return False

        now = self._clock()
        if self._health_cache is not None:
            ttl = self.health_cache_seconds if self._health_cache["healthy"] else self.health_failure_cache_seconds
            if now - self._health_cache["timestamp"] < ttl:
                return self._health_cache["healthy"]

        try:
            async with self.rate_limiter.slot(PROVIDER_NAME):
                await self.call_api(HEALTH_ENDPOINT, method="GET", timeout=self.health_timeout)
            healthy = True
        except APIClientError as e:
            LOGGER.warning("OCR service health check failed", extra={"base_url": self.base_url, "error": str(e)})
            healthy = False

        self._health_cache = {"healthy": healthy, "timestamp": self._clock()}
        return healthy

    async def extract_by_page(self, content: bytes, filename: str) -> OCRResult:
        """OCR a document and return its text per page.

        Args:
            content: Raw file bytes
            filename: Original filename, used for the MIME type

        Returns:
            OCRResult with page texts and detected tables appended as text

        Raises:
            OCRExtractionError: If the service reports a failure
            APIClientError: On transport or HTTP failures
        """
        start_time = time.time()
        payload = {
            "fileData": base64.b64encode(content).decode("ascii"),
            "fileName": filename,
            "fileType": mimetypes.guess_type(filename)[0] or "application/pdf",
            "options": DEFAULT_OCR_OPTIONS,
        }
        response = await self.rate_limiter.run(
            PROVIDER_NAME,
            lambda: self.call_api(EXTRACT_ENDPOINT, payload=payload),
            description="OCR extract",
        )

        if response.get("success") is False:
            raise OCRExtractionError(f"OCR service failed: {response.get('error') or 'unknown error'}")

        metadata = response.get("metadata") or {}
        result = OCRResult(
            text=response.get("text") or "",
            pages=self._pages_from_response(response),
            confidence=float(response.get("confidence") or 0.0),
            method=response.get("method"),
            tables=response.get("tables") or [],
            metadata=metadata,
        )

        tables_text = result.tables_as_text()
        if tables_text:
            result.text = f"{result.text}\n\n{tables_text}" if result.text else tables_text

        LOGGER.info(
            "Remote OCR completed",
            extra={
                "file_name": filename,
                "confidence": result.confidence,
                "method": result.method,
                "page_count": result.page_count,
                "table_count": len(result.tables),
                "duration_seconds": round(time.time() - start_time, 3),
            },
        )
        return result

    async def extract_as_images(self, content: bytes, filename: str) -> RenderedPages:
        """Ask the service to rasterize a PDF.

        Raises:
            PDFConversionError: If the service returns no images
        """
        payload = {
            "fileData": base64.b64encode(content).decode("ascii"),
            "fileName": filename,
        }
        response = await self.rate_limiter.run(
            PROVIDER_NAME,
            lambda: self.call_api(PDF_TO_IMAGES_ENDPOINT, payload=payload),
            description="OCR pdf-to-images",
        )

        encoded_images = response.get("images") or []
        if response.get("success") is False or not encoded_images:
            raise PDFConversionError(f"OCR service could not render PDF: {response.get('error') or 'no images'}")

        images = [base64.b64decode(self._strip_data_url(image)) for image in encoded_images]
        LOGGER.info("Remote PDF rendering completed", extra={"file_name": filename, "page_count": len(images)})
        return RenderedPages(images=images, mime_type=response.get("mimeType") or "image/png", source="remote")

    @staticmethod
    def _strip_data_url(value: str) -> str:
        return value.split(",", 1)[1] if value.startswith("data:") else value

    @staticmethod
    def _pages_from_response(response: Dict[str, Any]) -> List[PageData]:
        raw_pages = response.get("pages")
        if not isinstance(raw_pages, list):
            return [PageData(page_number=1, text=response.get("text") or "", confidence=response.get("confidence"))]

        pages = []
        for index, raw_page in enumerate(raw_pages, start=1):
            if isinstance(raw_page, str):
                pages.append(PageData(page_number=index, text=raw_page))
                continue
            pages.append(
                PageData(
                    page_number=int(raw_page.get("page") or raw_page.get("page_number") or index),
                    text=raw_page.get("text") or "",
                    confidence=raw_page.get("confidence"),
                )
            )
        return pages
