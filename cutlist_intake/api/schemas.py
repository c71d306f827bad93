"""Pydantic response models for the API endpoints."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from cutlist_intake.models.sessions import MultiPageMergeResult, ParseSession


class ErrorResponse(BaseModel):
    """Error body returned for rejected requests.

    Attributes:
        error: Stable error code clients branch on
        message: Human readable message
        detail: Extra context (remediation steps, ...)
    """

    error: str = Field(..., description="Stable error code", examples=["FILE_TOO_LARGE"])
    message: str = Field(..., description="Human readable message")
    detail: Optional[Any] = Field(default=None, description="Additional context")


class HealthResponse(BaseModel):
    status: str = Field(default="healthy")
    service: str
    version: str
    llm_provider: str
    llm_configured: bool
    ocr_service_configured: bool


class SessionSummaryResponse(BaseModel):
    """State of a multi-page session."""

    session_id: str
    project_code: str
    organization_id: str
    template_id: Optional[str] = None
    status: str
    collected_pages: List[int] = Field(default_factory=list)
    missing_pages: List[int] = Field(default_factory=list)
    total_expected_pages: Optional[int] = None
    is_multi_page: bool = False
    ready_to_merge: bool = False
    parts_by_page: Dict[int, int] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    merged_result: Optional[MultiPageMergeResult] = None

    @classmethod
    def from_session(cls, session: ParseSession) -> "SessionSummaryResponse":
        return cls(
            session_id=session.session_id,
            project_code=session.project_code,
            organization_id=session.organization_id,
            template_id=session.template_id,
            status=session.status.value,
            collected_pages=sorted(session.pages),
            missing_pages=session.missing_pages(),
            total_expected_pages=session.total_expected_pages,
            is_multi_page=session.is_multi_page,
            ready_to_merge=session.ready_to_merge,
            parts_by_page={number: len(page.parts) for number, page in session.pages.items()},
            created_at=session.created_at,
            updated_at=session.updated_at,
            merged_result=session.merged_result,
        )
