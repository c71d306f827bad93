"""Centralized dependency injection for the FastAPI application.

Long-lived collaborators (rate limiter, provider, OCR client, session
store) are process singletons; the orchestrator is assembled per request
from them.
"""

from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends

from cutlist_intake.core.config import settings
from cutlist_intake.core.exceptions import ConfigurationError
from cutlist_intake.database.base import create_session_factory
from cutlist_intake.services.chunking.text_chunker import TextChunker
from cutlist_intake.services.ocr.pdfplumber_backend import PdfPlumberRenderer, PdfPlumberTextExtractor
from cutlist_intake.services.ocr.remote_ocr_client import RemoteOCRClient
from cutlist_intake.services.operations.shortcode_resolver import CatalogShortcodeResolver, ShortcodeResolver
from cutlist_intake.services.orchestrator import ExtractionOrchestrator
from cutlist_intake.services.quality.auto_accept import AutoAcceptPolicy
from cutlist_intake.services.resilience.rate_limiter import ProviderRateLimiter
from cutlist_intake.services.sessions.session_merger import MultiPageSessionMerger, SessionSweeper
from cutlist_intake.services.sessions.session_store import InMemorySessionStore, SessionStore
from cutlist_intake.services.sessions.sql_session_store import SQLSessionStore
from cutlist_intake.services.side_effects import (
    DetachedTaskGroup,
    FileSystemArchive,
    LoggingAuditRecorder,
    UploadArchive,
)
from cutlist_intake.services.templates.qr_decoder import OpenCVQRDecoder
from cutlist_intake.services.templates.template_detector import TemplateDetector
from cutlist_intake.services.templates.template_repository import InMemoryTemplateRepository, TemplateRepository
from cutlist_intake.services.vision.base_provider import VisionProvider
from cutlist_intake.services.vision.failover_provider import FailoverVisionProvider
from cutlist_intake.services.vision.gemini_provider import GeminiVisionProvider
from cutlist_intake.services.vision.openrouter_provider import OpenRouterVisionProvider
from cutlist_intake.services.vision.result_cache import ParseResultCache
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


@lru_cache
def get_rate_limiter() -> ProviderRateLimiter:
    """Shared per-process admission control for every provider call."""
    return ProviderRateLimiter.from_settings(settings.rate_limit)


def _build_provider(name: str, result_cache: Optional[ParseResultCache] = None) -> VisionProvider:
    """Build one provider by name.

    Raises:
        ConfigurationError: If the provider name is unknown
    """
    common = dict(
        rate_limiter=get_rate_limiter(),
        chunker=TextChunker(
            rows_per_chunk=settings.extraction.rows_per_chunk,
            window_chars=settings.extraction.chunk_window_chars,
        ),
        max_output_tokens=settings.llm.max_output_tokens,
        chunk_row_threshold=settings.extraction.chunk_row_threshold,
        chunk_batch_size=settings.extraction.chunk_batch_size,
        retry_on_truncation=settings.llm.retry_on_truncation,
        result_cache=result_cache,
    )
    if name == "gemini":
        return GeminiVisionProvider(
            api_key=settings.llm.gemini_api_key,
            model=settings.llm.gemini_model,
            timeout=settings.llm.request_timeout,
            **common,
        )
    if name == "openrouter":
        return OpenRouterVisionProvider(
            api_key=settings.llm.openrouter_api_key,
            model=settings.llm.openrouter_model,
            base_url=settings.llm.openrouter_api_url,
            timeout=settings.llm.request_timeout,
            **common,
        )
    raise ConfigurationError(f"Unsupported LLM provider: {name}")


def get_result_cache() -> Optional[ParseResultCache]:
    if settings.llm.result_cache_size <= 0:
        return None
    return ParseResultCache(
        max_entries=settings.llm.result_cache_size,
        ttl_seconds=settings.llm.result_cache_ttl_seconds,
        min_confidence=settings.llm.result_cache_min_confidence,
    )


@lru_cache
def get_vision_provider() -> VisionProvider:
    """Get the configured vision provider.

    With ``LLM_FALLBACK_PROVIDER`` set, the primary is wrapped so calls fail
    over to the fallback when the primary is unavailable.

    Returns:
        VisionProvider: Gemini or OpenRouter per ``LLM_PROVIDER``, or a failover pair

    Raises:
        ConfigurationError: If a provider name is unknown
    """
    fallback = settings.llm.fallback_provider
    if not fallback or fallback == settings.llm.provider:
        return _build_provider(settings.llm.provider, result_cache=get_result_cache())
    return FailoverVisionProvider(
        primary=_build_provider(settings.llm.provider),
        secondary=_build_provider(fallback),
        result_cache=get_result_cache(),
    )


@lru_cache
def get_remote_ocr_client() -> RemoteOCRClient:
    """OCR service client; one instance so the health cache is shared."""
    return RemoteOCRClient.from_settings(settings.ocr, rate_limiter=get_rate_limiter())


@lru_cache
def get_database():
    """Engine and session factory for ``DATABASE_URL``."""
    return create_session_factory(settings.database_url, echo=settings.db.echo)


def uses_sql_sessions() -> bool:
    return settings.sessions.backend == "sql"


@lru_cache
def get_session_store() -> SessionStore:
    """Get the session store selected by ``SESSION_STORE_BACKEND``."""
    if uses_sql_sessions():
        _, session_maker = get_database()
        LOGGER.info("Using SQL session store")
        return SQLSessionStore(session_maker)
    return InMemorySessionStore()


@lru_cache
def get_session_merger() -> MultiPageSessionMerger:
    return MultiPageSessionMerger(
        store=get_session_store(),
        auto_accept_policy=get_auto_accept_policy(),
        ttl_seconds=settings.sessions.ttl_seconds,
    )


@lru_cache
def get_session_sweeper() -> SessionSweeper:
    return SessionSweeper(get_session_merger(), interval_seconds=settings.sessions.sweep_interval_seconds)


@lru_cache
def get_template_repository() -> TemplateRepository:
    return InMemoryTemplateRepository()


@lru_cache
def get_shortcode_resolver() -> ShortcodeResolver:
    return CatalogShortcodeResolver()


@lru_cache
def get_side_effects() -> DetachedTaskGroup:
    return DetachedTaskGroup()


def get_auto_accept_policy() -> AutoAcceptPolicy:
    return AutoAcceptPolicy(
        threshold=settings.sessions.auto_accept_threshold,
        part_floor=settings.sessions.part_confidence_floor,
        review_threshold=settings.sessions.part_review_threshold,
    )


def get_upload_archive() -> Optional[UploadArchive]:
    if not settings.extraction.archive_dir:
        return None
    return FileSystemArchive(settings.extraction.archive_dir)


def get_template_detector(
    repository: Annotated[TemplateRepository, Depends(get_template_repository)],
) -> TemplateDetector:
    """Get template detector instance.

    Args:
        repository: Organization template layouts

    Returns:
        TemplateDetector: QR and text marker detector
    """
    return TemplateDetector(
        repository=repository,
        qr_decoder=OpenCVQRDecoder(),
        timeout=settings.extraction.template_detection_timeout,
    )


def get_orchestrator(
    provider: Annotated[VisionProvider, Depends(get_vision_provider)],
    remote_ocr: Annotated[RemoteOCRClient, Depends(get_remote_ocr_client)],
    template_detector: Annotated[TemplateDetector, Depends(get_template_detector)],
    session_merger: Annotated[MultiPageSessionMerger, Depends(get_session_merger)],
    shortcode_resolver: Annotated[ShortcodeResolver, Depends(get_shortcode_resolver)],
    side_effects: Annotated[DetachedTaskGroup, Depends(get_side_effects)],
) -> ExtractionOrchestrator:
    """Get extraction orchestrator instance.

    Returns:
        ExtractionOrchestrator: Orchestrator wired to the shared collaborators
    """
    return ExtractionOrchestrator(
        provider=provider,
        local_extractor=PdfPlumberTextExtractor(),
        remote_ocr=remote_ocr,
        renderer=PdfPlumberRenderer(),
        template_detector=template_detector,
        session_merger=session_merger,
        shortcode_resolver=shortcode_resolver,
        archive=get_upload_archive(),
        audit=LoggingAuditRecorder(),
        side_effects=side_effects,
        auto_accept_policy=get_auto_accept_policy(),
        config=settings.extraction,
    )
