"""Multi-page parse session models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from cutlist_intake.models.parts import ExtractedPart


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    COLLECTING = "collecting"
    COMPLETE = "complete"
    MERGED = "merged"
    ERROR = "error"


class PageRegistration(BaseModel):
    """One physical page's parse result inside a session."""

    page_number: int
    file_id: str
    parts: List[ExtractedPart] = Field(default_factory=list)
    confidence: float = 0.0
    total_pages: Optional[int] = None
    processing_time_ms: float = 0.0
    file_name: Optional[str] = None
    registered_at: datetime = Field(default_factory=utcnow)


class AutoAcceptDecision(BaseModel):
    """Whether a result may skip human review, and why not."""

    auto_accept: bool
    confidence: float
    threshold: float
    reasons: List[str] = Field(default_factory=list)
    low_confidence_parts: int = 0


class MultiPageMergeResult(BaseModel):
    """Merged view of every page collected for a project."""

    success: bool
    session_id: str
    project_code: Optional[str] = None
    parts: List[ExtractedPart] = Field(default_factory=list)
    page_count: int = 0
    total_expected_pages: Optional[int] = None
    average_confidence: float = 0.0
    auto_accept: bool = False
    auto_accept_reasons: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class ParseSession(BaseModel):
    """Pages collected for one (organization, project code)."""

    session_id: str
    session_key: str
    organization_id: str
    project_code: str
    user_id: Optional[str] = None
    template_id: Optional[str] = None
    pages: Dict[int, PageRegistration] = Field(default_factory=dict)
    total_expected_pages: Optional[int] = None
    status: SessionStatus = SessionStatus.COLLECTING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    merged_result: Optional[MultiPageMergeResult] = None

    @property
    def is_multi_page(self) -> bool:
        return (self.total_expected_pages or 0) > 1 or len(self.pages) > 1

    @property
    def ready_to_merge(self) -> bool:
        if not self.total_expected_pages:
            return False
        return len(self.pages) >= self.total_expected_pages

    def sorted_pages(self) -> List[PageRegistration]:
        return [self.pages[number] for number in sorted(self.pages)]

    def missing_pages(self) -> List[int]:
        if not self.pages:
            return []
        last = max(self.total_expected_pages or 0, max(self.pages))
        return [number for number in range(1, last + 1) if number not in self.pages]


class RegistrationResult(BaseModel):
    """Returned to the caller after a page is registered."""

    session_id: str
    is_multi_page: bool
    current_page: int
    total_expected_pages: Optional[int] = None
    ready_to_merge: bool = False
    collected_pages: List[int] = Field(default_factory=list)
