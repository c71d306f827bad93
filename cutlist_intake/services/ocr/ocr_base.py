"""Interfaces for the text and raster collaborators of the orchestrator."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from cutlist_intake.models.page_data import PageData


@dataclass
class LocalTextResult:
    """Text pulled straight out of a PDF's text layer."""
    text: str
    page_count: int
    pages: List[PageData] = field(default_factory=list)


class OCRResult:
    """Remote OCR extraction result container.

    Attributes:
        text: Combined text of every page
        pages: Per-page text
        confidence: Service-reported confidence (0.0 to 1.0)
        method: Engine used by the service (e.g. "paddle", "tesseract")
        tables: Table cells detected by the service
        metadata: Additional metadata (processing time, ...)
    """

    def __init__(
        self,
        text: str,
        pages: Optional[List[PageData]] = None,
        confidence: Optional[float] = None,
        method: Optional[str] = None,
        tables: Optional[List[List[List[str]]]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.text = text
        self.pages = pages or []
        self.method = method
        self.tables = tables or []
        self.metadata = metadata or {}
        self.confidence = confidence if confidence is not None else self.metadata.get("confidence", 0.0)

    @property
    def page_count(self) -> int:
        return len(self.pages) or int(self.metadata.get("pages", 0) or 0)

    def tables_as_text(self) -> str:
        """Render detected tables as pipe-separated text blocks."""
        blocks = []
        for number, table in enumerate(self.tables, start=1):
            rows = [" | ".join(str(cell or "").strip() for cell in row) for row in table]
            blocks.append(f"=== Table {number} ===\n" + "\n".join(rows))
        return "\n\n".join(blocks)

    def to_dict(self) -> Dict[str, Any]:
        """Convert OCR result to dictionary."""
        return {
            "text": self.text,
            "confidence": self.confidence,
            "method": self.method,
            "page_count": self.page_count,
            "tables": len(self.tables),
            "metadata": self.metadata,
        }


@dataclass
class RenderedPages:
    """PDF pages rasterized to images."""
    images: List[bytes]
    mime_type: str = "image/png"
    source: str = "local"


class LocalTextExtractor(ABC):
    """Fast, offline text extraction."""

    @abstractmethod
    async def extract(self, content: bytes) -> LocalTextResult:
        """Extract the text layer of a PDF.

        Raises:
            OCRExtractionError: If the PDF cannot be opened
        """


class RemoteOCRService(ABC):
    """The OCR microservice, reached over the network."""

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether a service URL is configured."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True when the service is up; must finish within a short timeout."""

    @abstractmethod
    async def extract_by_page(self, content: bytes, filename: str) -> OCRResult:
        """OCR every page of a document."""

    @abstractmethod
    async def extract_as_images(self, content: bytes, filename: str) -> RenderedPages:
        """Rasterize a PDF on the service side."""


class PdfRenderer(ABC):
    """Local PDF to image rendering."""

    @abstractmethod
    async def render(self, content: bytes, scale: float = 2.0, max_pages: int = 5) -> RenderedPages:
        """Render up to ``max_pages`` pages at ``scale`` times 72 dpi."""
