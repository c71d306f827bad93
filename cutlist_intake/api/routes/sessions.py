"""Multi-page template session endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from cutlist_intake.api.errors import http_error
from cutlist_intake.api.schemas import ErrorResponse, SessionSummaryResponse
from cutlist_intake.core.exceptions import SessionNotFoundError
from cutlist_intake.dependencies import get_session_merger
from cutlist_intake.models.sessions import MultiPageMergeResult
from cutlist_intake.services.sessions.session_merger import MultiPageSessionMerger
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

router = APIRouter(prefix="/template-sessions")


@router.get(
    "/{session_id}",
    response_model=SessionSummaryResponse,
    responses={404: {"description": "Unknown session", "model": ErrorResponse}},
    summary="Get a multi-page session",
)
async def get_session(
    session_id: str,
    merger: Annotated[MultiPageSessionMerger, Depends(get_session_merger)],
) -> SessionSummaryResponse:
    try:
        session = await merger.get_session(session_id)
    except SessionNotFoundError as e:
        raise http_error(e) from e
    return SessionSummaryResponse.from_session(session)


@router.post(
    "/{session_id}/merge",
    response_model=MultiPageMergeResult,
    responses={404: {"description": "Unknown session", "model": ErrorResponse}},
    summary="Merge the pages collected for a project",
)
async def merge_session(
    session_id: str,
    merger: Annotated[MultiPageSessionMerger, Depends(get_session_merger)],
) -> MultiPageMergeResult:
    """Merge every page collected so far.

    Missing pages are reported as warnings; merging twice returns the same result.
    """
    result = await merger.merge_session(session_id)
    if not result.success and "Session not found" in result.errors:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": SessionNotFoundError.code, "message": "Session not found", "detail": session_id},
        )
    LOGGER.info("Session merge requested", extra={"session_id": session_id, "parts": len(result.parts)})
    return result
