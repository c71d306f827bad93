"""Unit tests for multi-page session registration and merging."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest
from conftest import make_part

from cutlist_intake.core.exceptions import SessionNotFoundError
from cutlist_intake.models.extraction import ProviderParseResult
from cutlist_intake.models.parts import ProjectInfo
from cutlist_intake.models.sessions import SessionStatus, utcnow
from cutlist_intake.services.sessions.session_merger import MultiPageSessionMerger, SessionSweeper
from cutlist_intake.services.sessions.session_store import InMemorySessionStore


def page_result(page, total=None, project_code="K-12", labels=("Side",), confidence=0.97):
    return ProviderParseResult(
        parts=[make_part(label=label, confidence=confidence) for label in labels],
        confidence=confidence,
        project_info=ProjectInfo(project_code=project_code, page_number=page, total_pages=total),
    )


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def merger(store) -> MultiPageSessionMerger:
    return MultiPageSessionMerger(store, ttl_seconds=60)


async def register(merger, page, total=None, file_id=None, **kwargs):
    return await merger.register_page(
        organization_id="acme",
        user_id="u1",
        template_id="CAI-acme-v1.0",
        file_id=file_id or f"file-{page}",
        parse_result=page_result(page, total, **kwargs),
    )


class TestSessionRegistration:
    """Grouping pages by organization and project code."""

    @pytest.mark.asyncio
    async def test_pages_of_one_project_share_a_session(self, merger, store):
        first = await register(merger, 1, total=2)
        second = await register(merger, 2)

        assert first.session_id == second.session_id
        assert first.session_id.startswith("tps_")
        assert first.ready_to_merge is False
        assert second.ready_to_merge is True
        assert second.is_multi_page is True
        assert second.collected_pages == [1, 2]
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_first_known_total_is_kept(self, merger):
        await register(merger, 1, total=3)
        result = await register(merger, 2, total=5)

        assert result.total_expected_pages == 3

    @pytest.mark.asyncio
    async def test_page_without_project_code_gets_its_own_session(self, merger):
        first = await register(merger, None, project_code=None, file_id="a")
        second = await register(merger, None, project_code=None, file_id="b")

        assert first.session_id != second.session_id
        assert first.current_page == 1
        assert first.is_multi_page is False

    @pytest.mark.asyncio
    async def test_other_organization_is_a_different_session(self, merger):
        first = await register(merger, 1, total=2)
        other = await merger.register_page(
            organization_id="globex",
            user_id=None,
            template_id=None,
            file_id="g1",
            parse_result=page_result(1, total=2),
        )

        assert first.session_id != other.session_id

    @pytest.mark.asyncio
    async def test_concurrent_pages_land_in_one_session(self, merger, store):
        results = await asyncio.gather(*(register(merger, page, total=5) for page in range(1, 6)))

        assert len({result.session_id for result in results}) == 1
        session = await merger.get_session(results[0].session_id)
        assert sorted(session.pages) == [1, 2, 3, 4, 5]
        assert session.status == SessionStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_unknown_session(self, merger):
        with pytest.raises(SessionNotFoundError):
            await merger.get_session("tps_0_missing")


class TestSessionMerge:
    """Merging collected pages."""

    @pytest.mark.asyncio
    async def test_parts_are_ordered_by_page_and_renumbered(self, merger):
        await register(merger, 2, total=2, labels=("Door", "Shelf"))
        registration = await register(merger, 1, labels=("Side",))

        result = await merger.merge_session(registration.session_id)

        assert result.success is True
        assert [part.label for part in result.parts] == ["Side", "Door", "Shelf"]
        assert [part.row_number for part in result.parts] == [1, 2, 3]
        assert result.page_count == 2
        assert result.project_code == "K-12"
        assert result.auto_accept is True

    @pytest.mark.asyncio
    async def test_missing_pages_are_reported(self, merger):
        await register(merger, 1, total=3)
        registration = await register(merger, 3)

        result = await merger.merge_session(registration.session_id)

        assert result.success is True
        assert "Missing pages: 2" in result.warnings

    @pytest.mark.asyncio
    async def test_merge_is_idempotent(self, merger):
        registration = await register(merger, 1, total=1)

        first = await merger.merge_session(registration.session_id)
        second = await merger.merge_session(registration.session_id)

        assert first == second
        session = await merger.get_session(registration.session_id)
        assert session.status == SessionStatus.MERGED

    @pytest.mark.asyncio
    async def test_low_confidence_page_blocks_auto_accept(self, merger):
        await register(merger, 1, total=2)
        registration = await register(merger, 2, confidence=0.6)

        result = await merger.merge_session(registration.session_id)

        assert result.auto_accept is False
        assert result.auto_accept_reasons

    @pytest.mark.asyncio
    async def test_unknown_session_merge(self, merger):
        result = await merger.merge_session("tps_0_missing")

        assert result.success is False
        assert result.errors == ["Session not found"]

    @pytest.mark.asyncio
    async def test_late_page_reopens_merged_session(self, merger):
        registration = await register(merger, 1, total=2)
        await merger.merge_session(registration.session_id)

        again = await register(merger, 2)

        session = await merger.get_session(again.session_id)
        assert again.session_id == registration.session_id
        assert session.merged_result is None
        assert session.status == SessionStatus.COMPLETE
        merged = await merger.merge_session(again.session_id)
        assert merged.page_count == 2

    @pytest.mark.asyncio
    async def test_locks_are_released_after_merge(self, merger, store):
        for code in ("K-1", "K-2", "K-3"):
            registration = await register(merger, 1, total=1, project_code=code)
            await merger.merge_session(registration.session_id)

        assert len(store) == 3
        assert store.lock_count == 0

    @pytest.mark.asyncio
    async def test_waiting_caller_keeps_the_key_lock(self, store):
        order = []

        async def hold(name):
            async with store.locked("acme:K-12"):
                order.append(f"{name} in")
                await asyncio.sleep(0.01)
                order.append(f"{name} out")

        await asyncio.gather(hold("a"), hold("b"))

        assert order == ["a in", "a out", "b in", "b out"]
        assert store.lock_count == 0


class TestSessionExpiry:
    """Idle sessions are removed after the TTL."""

    @pytest.mark.asyncio
    async def test_idle_sessions_expire(self, merger, store):
        registration = await register(merger, 1, total=2)

        removed = await store.sweep_expired(60, now=utcnow() + timedelta(seconds=120))

        assert removed == 1
        assert await store.get_by_id(registration.session_id) is None

    @pytest.mark.asyncio
    async def test_fresh_and_merged_sessions_survive(self, merger, store):
        fresh = await register(merger, 1, total=2)
        merged = await register(merger, 1, total=1, project_code="K-99")
        await merger.merge_session(merged.session_id)

        assert await store.sweep_expired(60) == 0
        assert await store.sweep_expired(60, now=utcnow() + timedelta(seconds=120)) == 1
        assert await store.get_by_id(fresh.session_id) is None
        assert await store.get_by_id(merged.session_id) is not None

    @pytest.mark.asyncio
    async def test_sweeper_runs_cleanup_periodically(self):
        merger = Mock(spec=MultiPageSessionMerger)
        merger.cleanup_expired = AsyncMock(return_value=0)
        sweeper = SessionSweeper(merger, interval_seconds=0.01)

        sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert merger.cleanup_expired.await_count >= 1
        assert sweeper.running is False
