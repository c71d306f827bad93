"""pdfplumber-backed text extraction and page rendering."""

import asyncio
import time
from io import BytesIO
from typing import List

import pdfplumber

from cutlist_intake.core.exceptions import OCRExtractionError, PDFConversionError
from cutlist_intake.models.page_data import PageData
from cutlist_intake.services.ocr.ocr_base import (
    LocalTextExtractor,
    LocalTextResult,
    PdfRenderer,
    RenderedPages,
)
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

POINTS_PER_INCH = 72


class PdfPlumberTextExtractor(LocalTextExtractor):
    """Reads the PDF text layer; no network, fails fast on broken files."""

    async def extract(self, content: bytes) -> LocalTextResult:
        return await asyncio.to_thread(self._extract_sync, content)

    def _extract_sync(self, content: bytes) -> LocalTextResult:
        start_time = time.time()
        pages: List[PageData] = []
        try:
            with pdfplumber.open(BytesIO(content)) as pdf:
                for page_num, page in enumerate(pdf.pages, start=1):
                    text = page.extract_text() or ""
                    pages.append(
                        PageData(
                            page_number=page_num,
                            text=text,
                            metadata={"width_points": page.width, "height_points": page.height},
                        )
                    )
        except Exception as e:
            raise OCRExtractionError(f"Could not read PDF text layer: {e}", original_error=e) from e

        combined = "\n\n".join(page.text for page in pages if not page.is_empty)
        LOGGER.info(
            f"Local text extraction read {len(pages)} pages",
            extra={
                "text_length": len(combined),
                "empty_pages": sum(1 for page in pages if page.is_empty),
                "duration_seconds": round(time.time() - start_time, 3),
            },
        )
        return LocalTextResult(text=combined, page_count=len(pages), pages=pages)


class PdfPlumberRenderer(PdfRenderer):
    """Rasterizes PDF pages to PNG with pdfplumber's page images."""

    async def render(self, content: bytes, scale: float = 2.0, max_pages: int = 5) -> RenderedPages:
        return await asyncio.to_thread(self._render_sync, content, scale, max_pages)

    def _render_sync(self, content: bytes, scale: float, max_pages: int) -> RenderedPages:
        resolution = int(POINTS_PER_INCH * scale)
        images: List[bytes] = []
        try:
            with pdfplumber.open(BytesIO(content)) as pdf:
                for page in pdf.pages[:max_pages]:
                    buffer = BytesIO()
                    page.to_image(resolution=resolution).original.save(buffer, format="PNG")
                    images.append(buffer.getvalue())
        except Exception as e:
            raise PDFConversionError(f"Local PDF rendering failed: {e}", original_error=e) from e

        if not images:
            raise PDFConversionError("No pages found in PDF")

        LOGGER.info("PDF converted to images", extra={"page_count": len(images), "resolution": resolution})
        return RenderedPages(images=images, mime_type="image/png", source="local")
