"""Collects per-page template results and merges them per project.

Pages of one printed project arrive as separate uploads. They are grouped
by ``"{organization_id}:{project_code}"`` and merged into one part list
once every expected page is present (or on explicit request).
"""

import asyncio
import secrets
import time
from typing import List, Optional

from cutlist_intake.core.exceptions import SessionNotFoundError
from cutlist_intake.models.extraction import ProviderParseResult
from cutlist_intake.models.sessions import (
    MultiPageMergeResult,
    PageRegistration,
    ParseSession,
    RegistrationResult,
    SessionStatus,
    utcnow,
)
from cutlist_intake.services.quality.auto_accept import AutoAcceptPolicy
from cutlist_intake.services.sessions.session_store import SessionStore
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


def session_key(organization_id: str, project_code: str) -> str:
    return f"{organization_id}:{project_code}"


def new_session_id() -> str:
    return f"tps_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class MultiPageSessionMerger:
    """Registers pages into sessions and merges them."""

    def __init__(
        self,
        store: SessionStore,
        auto_accept_policy: Optional[AutoAcceptPolicy] = None,
        ttl_seconds: float = 60.0,
    ):
        self.store = store
        self.auto_accept_policy = auto_accept_policy or AutoAcceptPolicy()
        self.ttl_seconds = ttl_seconds

    async def register_page(
        self,
        organization_id: str,
        user_id: Optional[str],
        template_id: Optional[str],
        file_id: str,
        parse_result: ProviderParseResult,
        processing_time_ms: float = 0.0,
        file_name: Optional[str] = None,
    ) -> RegistrationResult:
        """Add one page's result to its project session.

        Args:
            organization_id: Owning organization
            user_id: Uploading user
            template_id: Recognized template id
            file_id: Id of the uploaded file
            parse_result: Parts and project info read from the page
            processing_time_ms: Time spent on the page
            file_name: Original filename

        Returns:
            RegistrationResult: Session id and whether the project is ready to merge
        """
        info = parse_result.project_info
        project_code = (info.project_code if info and info.project_code else None) or f"single_{file_id}"
        page_number = (info.page_number if info and info.page_number else None) or 1
        total_pages = info.total_pages if info and info.total_pages else None
        key = session_key(organization_id, project_code)

        async with self.store.locked(key):
            session = await self.store.get(key)
            if session is None:
                session = ParseSession(
                    session_id=new_session_id(),
                    session_key=key,
                    organization_id=organization_id,
                    project_code=project_code,
                    user_id=user_id,
                    template_id=template_id,
                )
                LOGGER.info(
                    "Created parse session",
                    extra={"session_id": session.session_id, "project_code": project_code},
                )
            elif session.status == SessionStatus.MERGED:
                # A late or corrected page reopens the project
                LOGGER.info("Reopening merged session", extra={"session_id": session.session_id})
                session.merged_result = None
                session.status = SessionStatus.COLLECTING

            if page_number in session.pages:
                LOGGER.info(
                    "Page re-registered, replacing previous result",
                    extra={"session_id": session.session_id, "page": page_number},
                )
            session.pages[page_number] = PageRegistration(
                page_number=page_number,
                file_id=file_id,
                parts=list(parse_result.parts),
                confidence=parse_result.confidence,
                total_pages=total_pages,
                processing_time_ms=processing_time_ms,
                file_name=file_name,
            )
            if session.total_expected_pages is None and total_pages:
                session.total_expected_pages = total_pages

            session.template_id = session.template_id or template_id
            if session.ready_to_merge:
                session.status = SessionStatus.COMPLETE
            session.updated_at = utcnow()
            await self.store.save(session)

        LOGGER.info(
            "Page registered",
            extra={
                "session_id": session.session_id,
                "page": page_number,
                "collected": len(session.pages),
                "expected": session.total_expected_pages,
                "ready_to_merge": session.ready_to_merge,
            },
        )
        return RegistrationResult(
            session_id=session.session_id,
            is_multi_page=session.is_multi_page,
            current_page=page_number,
            total_expected_pages=session.total_expected_pages,
            ready_to_merge=session.ready_to_merge,
            collected_pages=sorted(session.pages),
        )

    async def get_session(self, session_id: str) -> ParseSession:
        """Return a session.

        Raises:
            SessionNotFoundError: If no such session exists
        """
        session = await self.store.get_by_id(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    async def merge_session(self, session_id: str) -> MultiPageMergeResult:
        """Merge every collected page of a session.

        Merging an already merged session returns the stored result.
        """
        session = await self.store.get_by_id(session_id)
        if session is None:
            return MultiPageMergeResult(success=False, session_id=session_id, errors=["Session not found"])

        async with self.store.locked(session.session_key):
            session = await self.store.get_by_id(session_id)
            if session is None:
                return MultiPageMergeResult(success=False, session_id=session_id, errors=["Session not found"])
            if session.status == SessionStatus.MERGED and session.merged_result is not None:
                return session.merged_result

            result = self._merge(session)
            session.merged_result = result
            session.status = SessionStatus.MERGED
            session.updated_at = utcnow()
            await self.store.save(session)

        LOGGER.info(
            "Session merged",
            extra={
                "session_id": session_id,
                "pages": result.page_count,
                "parts": len(result.parts),
                "auto_accept": result.auto_accept,
            },
        )
        return result

    def _merge(self, session: ParseSession) -> MultiPageMergeResult:
        warnings: List[str] = []
        missing = session.missing_pages()
        if missing:
            warnings.append(f"Missing pages: {', '.join(str(number) for number in missing)}")

        pages = session.sorted_pages()
        parts = []
        for page in pages:
            for part in page.parts:
                parts.append(part.model_copy(update={"row_number": len(parts) + 1}))

        average = sum(page.confidence for page in pages) / len(pages) if pages else 0.0
        decision = self.auto_accept_policy.evaluate(parts, average_confidence=average)

        return MultiPageMergeResult(
            success=True,
            session_id=session.session_id,
            project_code=session.project_code,
            parts=parts,
            page_count=len(pages),
            total_expected_pages=session.total_expected_pages,
            average_confidence=round(average, 4),
            auto_accept=decision.auto_accept,
            auto_accept_reasons=decision.reasons,
            warnings=warnings,
        )

    async def cleanup_expired(self) -> int:
        """Remove unmerged sessions idle for longer than the TTL."""
        return await self.store.sweep_expired(self.ttl_seconds)


class SessionSweeper:
    """Background task that periodically expires idle sessions."""

    def __init__(self, merger: MultiPageSessionMerger, interval_seconds: float = 30.0):
        self.merger = merger
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        LOGGER.info("Session sweeper started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        LOGGER.info("Session sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.merger.cleanup_expired()
            except Exception as e:
                LOGGER.error(f"Session sweep failed: {e}", exc_info=True)
