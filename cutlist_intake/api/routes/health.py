"""Health check endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends

from cutlist_intake.api.schemas import HealthResponse
from cutlist_intake.core.config import settings
from cutlist_intake.dependencies import get_remote_ocr_client, get_vision_provider
from cutlist_intake.services.ocr.remote_ocr_client import RemoteOCRClient
from cutlist_intake.services.vision.base_provider import VisionProvider

router = APIRouter()


@router.get("/health", response_model=HealthResponse, summary="Service health")
async def health(
    provider: Annotated[VisionProvider, Depends(get_vision_provider)],
    remote_ocr: Annotated[RemoteOCRClient, Depends(get_remote_ocr_client)],
) -> HealthResponse:
    return HealthResponse(
        service=settings.app_name,
        version=settings.app_version,
        llm_provider=provider.name,
        llm_configured=provider.is_configured(),
        ocr_service_configured=remote_ocr.is_configured(),
    )
