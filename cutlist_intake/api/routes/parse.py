"""File parsing API endpoints."""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import JSONResponse

from cutlist_intake.api.errors import http_error
from cutlist_intake.api.schemas import ErrorResponse
from cutlist_intake.core.exceptions import AppError
from cutlist_intake.dependencies import get_orchestrator
from cutlist_intake.models.extraction import ExtractionOutcome, UploadedDocument
from cutlist_intake.services.orchestrator import ExtractionOrchestrator
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

router = APIRouter()


@router.post(
    "/parse-file",
    response_model=ExtractionOutcome,
    status_code=status.HTTP_200_OK,
    responses={
        200: {"description": "Parts extracted", "model": ExtractionOutcome},
        400: {"description": "Empty or invalid upload", "model": ErrorResponse},
        413: {"description": "File too large", "model": ErrorResponse},
        415: {"description": "Unsupported file type", "model": ErrorResponse},
        422: {"description": "No parts could be extracted", "model": ExtractionOutcome},
        503: {"description": "AI provider not configured", "model": ErrorResponse},
    },
    summary="Extract cutlist parts from an image or PDF",
)
async def parse_file(
    orchestrator: Annotated[ExtractionOrchestrator, Depends(get_orchestrator)],
    file: UploadFile = File(..., description="Cutlist photo, scan or PDF"),
    organization_id: Optional[str] = Form(default=None),
    user_id: Optional[str] = Form(default=None),
    file_id: Optional[str] = Form(default=None),
):
    """Extract parts from an uploaded cutlist.

    Args:
        orchestrator: Injected extraction orchestrator
        file: The uploaded file
        organization_id: Organization the upload belongs to
        user_id: Uploading user
        file_id: Caller-assigned file id

    Returns:
        ExtractionOutcome: Candidate with parts, or a structured failure (422)

    Raises:
        HTTPException: If the upload is rejected or the provider is unavailable
    """
    content = await file.read()
    document = UploadedDocument(
        filename=file.filename or "upload",
        content=content,
        mime_type=file.content_type,
        organization_id=organization_id,
        user_id=user_id,
        file_id=file_id,
    )
    LOGGER.info(
        "Received parse request",
        extra={"file_name": document.filename, "size_bytes": document.size, "organization_id": organization_id},
    )

    try:
        outcome = await orchestrator.execute(document)
    except AppError as e:
        raise http_error(e) from e

    if not outcome.success:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=outcome.model_dump(mode="json"),
        )
    return outcome
