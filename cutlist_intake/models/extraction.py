"""Extraction pipeline models."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from cutlist_intake.models.page_data import PageData
from cutlist_intake.models.parts import ExtractedPart, ProjectInfo
from cutlist_intake.models.sessions import (
    AutoAcceptDecision,
    MultiPageMergeResult,
    RegistrationResult,
)
from cutlist_intake.models.templates import TemplateDescriptor, TemplateDetection

_WHITESPACE = re.compile(r"\s+")


class Strategy(str, Enum):
    LOCAL_TEXT = "local_text"
    REMOTE_OCR = "remote_ocr"
    VISION_TEXT = "vision_text"
    VISION_IMAGE = "vision_image"
    NATIVE_DOCUMENT = "native_document"
    RASTER_VISION = "raster_vision"


OCR_CLASS_STRATEGIES = frozenset({Strategy.REMOTE_OCR.value})


class FileKind(str, Enum):
    IMAGE = "image"
    PDF = "pdf"
    SPREADSHEET = "spreadsheet"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ExtractionAttempt:
    """Result of one strategy invocation.

    Attributes:
        strategy: Strategy id (see ``Strategy``)
        text: Raw text recovered by the strategy
        pages: Per-page text when the strategy provides it
        page_count: Number of pages the strategy saw
        confidence: Derived confidence (0.0 to 1.0)
        duration_ms: Wall time of the invocation
        success: Whether the strategy completed without error
        error: Error message when the strategy failed
        metadata: Strategy specific details (method, tables, ...)
    """

    strategy: str
    text: str = ""
    pages: Tuple[PageData, ...] = ()
    page_count: int = 0
    confidence: float = 0.0
    duration_ms: float = 0.0
    success: bool = True
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, strategy: str, error: str, duration_ms: float = 0.0) -> "ExtractionAttempt":
        return cls(strategy=strategy, success=False, error=error, duration_ms=duration_ms)

    @property
    def text_length(self) -> int:
        """Length of the text with whitespace runs collapsed."""
        return len(_WHITESPACE.sub(" ", self.text or "").strip())

    @property
    def has_page_text(self) -> bool:
        return len(self.pages) > 1

    def to_diagnostic(self) -> "AttemptDiagnostic":
        return AttemptDiagnostic(
            strategy=self.strategy,
            success=self.success,
            duration_ms=round(self.duration_ms, 1),
            text_length=self.text_length,
            page_count=self.page_count,
            confidence=round(self.confidence, 3),
            error=self.error,
        )


class AttemptDiagnostic(BaseModel):
    """Timing and outcome of an attempt, retained for audit."""

    strategy: str
    success: bool
    duration_ms: float = 0.0
    text_length: int = 0
    page_count: int = 0
    confidence: float = 0.0
    error: Optional[str] = None
    accepted: Optional[bool] = None
    reason: Optional[str] = None


class ParseOptions(BaseModel):
    """Options understood by every vision provider."""

    extract_metadata: bool = False
    template_id: Optional[str] = None
    template_config: Optional[TemplateDescriptor] = None
    deterministic_prompt: Optional[str] = None
    default_material_id: Optional[str] = "MAT-WHITE-18"
    default_thickness_mm: float = 18.0
    skip_chunking: bool = False
    page_number: Optional[int] = None
    total_pages: Optional[int] = None
    allow_truncation_retry: bool = False
    is_messy_data: Optional[bool] = None
    source: Optional[str] = None

    def for_page(self, page_number: int, total_pages: int) -> "ParseOptions":
        return self.model_copy(
            update={"page_number": page_number, "total_pages": total_pages, "skip_chunking": True}
        )


class ProviderParseResult(BaseModel):
    """Parts returned by a vision provider for one input."""

    parts: List[ExtractedPart] = Field(default_factory=list)
    confidence: float = 0.0
    raw_response: str = ""
    truncated: bool = False
    warnings: List[str] = Field(default_factory=list)
    project_info: Optional[ProjectInfo] = None
    chunk_count: int = 1


class QualityMetrics(BaseModel):
    """Quality figures reported alongside a candidate."""

    strategy: str
    text_length: int = 0
    page_count: int = 0
    parts_count: int = 0
    average_confidence: float = 0.0
    parts_needing_review: int = 0
    escalated: bool = False
    chunk_count: int = 0


class DocumentCandidate(BaseModel):
    """Best result chosen for one file."""

    model_config = ConfigDict(use_enum_values=True)

    file_name: str
    strategy: str
    parts: List[ExtractedPart] = Field(default_factory=list)
    confidence: float = 0.0
    metrics: QualityMetrics
    warnings: List[str] = Field(default_factory=list)
    diagnostics: List[AttemptDiagnostic] = Field(default_factory=list)
    project_info: Optional[ProjectInfo] = None
    template: Optional[TemplateDetection] = None
    auto_accept: Optional[AutoAcceptDecision] = None
    raw_response: Optional[str] = None
    processing_time_ms: float = 0.0


class ExtractionFailure(BaseModel):
    """Terminal failure with remediation the user can act on."""

    code: str
    message: str
    remediation: List[str] = Field(default_factory=list)
    diagnostics: List[AttemptDiagnostic] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ExtractionOutcome(BaseModel):
    """What the orchestrator hands back for one upload."""

    success: bool
    candidate: Optional[DocumentCandidate] = None
    failure: Optional[ExtractionFailure] = None
    session: Optional[RegistrationResult] = None
    merge: Optional[MultiPageMergeResult] = None


@dataclass(frozen=True)
class UploadedDocument:
    """An uploaded file plus the caller's identity."""

    filename: str
    content: bytes
    mime_type: Optional[str] = None
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    file_id: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)
