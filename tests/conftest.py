"""Pytest configuration and shared fixtures."""

import asyncio
import json
from typing import Callable, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from cutlist_intake.core.exceptions import PDFConversionError
from cutlist_intake.main import app
from cutlist_intake.models.page_data import PageData
from cutlist_intake.models.parts import ExtractedPart, Provenance
from cutlist_intake.models.templates import ShortcodeEntry, TemplateDescriptor
from cutlist_intake.services.ocr.ocr_base import LocalTextExtractor, LocalTextResult, PdfRenderer, RenderedPages
from cutlist_intake.services.resilience.rate_limiter import ProviderRateLimiter
from cutlist_intake.services.resilience.retry_policy import RetryPolicy
from cutlist_intake.services.templates.qr_decoder import QRDecoder
from cutlist_intake.services.vision.base_provider import Attachment, GenerationResponse, VisionProvider

Responder = Callable[[str, Optional[Attachment]], str]


async def no_sleep(_: float) -> None:
    return None


class ScriptedVisionProvider(VisionProvider):
    """Vision provider whose model answers come from a test callback.

    Attributes:
        calls: (prompt, attachment) for every model call, in order
    """

    name = "scripted"

    def __init__(self, responder: Responder, configured: bool = True, supports_documents: bool = False, **kwargs):
        kwargs.setdefault(
            "rate_limiter",
            ProviderRateLimiter(max_concurrent=4, retry_policy=RetryPolicy(max_attempts=1, sleep=no_sleep)),
        )
        super().__init__(**kwargs)
        self.responder = responder
        self.configured = configured
        self.supports_documents = supports_documents
        self.calls: List[Tuple[str, Optional[Attachment]]] = []

    def is_configured(self) -> bool:
        return self.configured

    async def _generate(self, prompt, attachment, max_output_tokens) -> GenerationResponse:
        self.calls.append((prompt, attachment))
        return GenerationResponse(text=self.responder(prompt, attachment))


class StaticTextExtractor(LocalTextExtractor):
    """Local extractor returning fixed page texts."""

    def __init__(self, page_texts: List[str]):
        self.page_texts = page_texts

    async def extract(self, content: bytes) -> LocalTextResult:
        pages = [PageData(page_number=i, text=text) for i, text in enumerate(self.page_texts, start=1)]
        combined = "\n\n".join(page.text for page in pages if not page.is_empty)
        return LocalTextResult(text=combined, page_count=len(pages), pages=pages)


class FixedQRDecoder(QRDecoder):
    """QR decoder returning a fixed payload, optionally after a delay or with an error."""

    def __init__(self, payload=None, error=None, delay=0.0):
        self.payload = payload
        self.error = error
        self.delay = delay

    async def decode(self, image_bytes):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.payload


class FakeRenderer(PdfRenderer):
    """Renderer returning one placeholder image per page, or failing."""

    def __init__(self, pages: int = 1, fail: bool = False):
        self.pages = pages
        self.fail = fail

    async def render(self, content, scale=2.0, max_pages=5):
        if self.fail:
            raise PDFConversionError("renderer unavailable")
        images = [f"page-{i}".encode() for i in range(1, min(self.pages, max_pages) + 1)]
        return RenderedPages(images=images, mime_type="image/png")


def parts_json(*rows, project_info: Optional[dict] = None) -> str:
    """Model answer holding the given (label, length, width, quantity) rows."""
    parts = [
        {"label": label, "length": length, "width": width, "quantity": quantity, "confidence": 0.96}
        for label, length, width, quantity in rows
    ]
    payload = {"parts": parts}
    if project_info is not None:
        payload = {"projectInfo": project_info, "parts": parts}
    return json.dumps(payload)


def make_part(label: str = "Side", length: float = 720, width: float = 560, confidence: float = 0.96, **kwargs):
    return ExtractedPart(
        label=label,
        length=length,
        width=width,
        confidence=confidence,
        provenance=Provenance(strategy="test"),
        **kwargs,
    )


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client.

    Returns:
        TestClient: FastAPI test client instance
    """
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest.fixture
def acme_descriptor() -> TemplateDescriptor:
    """Template layout configured for organization "acme".

    Returns:
        TemplateDescriptor: Version 1.0 layout with edgebanding codes
    """
    return TemplateDescriptor(
        template_id="CAI-acme-v1.0",
        organization_id="acme",
        version="1.0",
        organization_name="Acme Joinery",
        shortcodes={
            "edgebanding": [
                ShortcodeEntry(code="2L", name="Both long edges"),
                ShortcodeEntry(code="2L2W", name="All edges", description="full wrap"),
            ]
        },
    )


@pytest.fixture
def sample_pdf_content() -> bytes:
    """Sample PDF content for testing.

    Returns:
        bytes: Sample PDF content
    """
    # Minimal valid PDF header
    return b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n1 0 obj\n<<\n/Type /Catalog\n/Pages 2 0 R\n>>\nendobj\n"
