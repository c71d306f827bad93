"""Data model for page-specific text extraction results."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class PageData:
    """Text recovered from a single page of a document.

    Attributes:
        page_number: Page number (1-indexed)
        text: Plain text content from the page
        confidence: Optional per-page confidence reported by the extractor
        metadata: Additional metadata about the page
    """

    page_number: int
    text: str
    confidence: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        """Whether the page produced no usable text."""
        return not self.text or not self.text.strip()

    def __len__(self) -> int:
        """Return length of stripped text content."""
        return len(self.text.strip()) if self.text else 0

    def __str__(self) -> str:
        """Return string representation."""
        return f"PageData(page={self.page_number}, length={len(self)})"
