"""Unit tests for the SQLAlchemy session store."""

from datetime import timedelta

import pytest
import pytest_asyncio
from conftest import make_part

from cutlist_intake.database import close_database, create_session_factory, init_database
from cutlist_intake.models.extraction import ProviderParseResult
from cutlist_intake.models.parts import ProjectInfo
from cutlist_intake.models.sessions import PageRegistration, ParseSession, SessionStatus, utcnow
from cutlist_intake.services.sessions.session_merger import MultiPageSessionMerger
from cutlist_intake.services.sessions.sql_session_store import SQLSessionStore


@pytest_asyncio.fixture
async def store(tmp_path):
    engine, session_maker = create_session_factory(f"sqlite+aiosqlite:///{tmp_path}/sessions.db")
    await init_database(engine)
    yield SQLSessionStore(session_maker)
    await close_database(engine)


def make_session(session_id="tps_1_aaaa0000", key="acme:K-12", **kwargs) -> ParseSession:
    return ParseSession(
        session_id=session_id,
        session_key=key,
        organization_id="acme",
        project_code=key.split(":", 1)[1],
        **kwargs,
    )


class TestSQLSessionStore:
    """Persistence of parse sessions."""

    @pytest.mark.asyncio
    async def test_session_round_trip(self, store):
        session = make_session(total_expected_pages=2)
        session.pages[1] = PageRegistration(page_number=1, file_id="f1", parts=[make_part()], confidence=0.9)

        await store.save(session)

        by_key = await store.get("acme:K-12")
        by_id = await store.get_by_id("tps_1_aaaa0000")
        assert by_key == by_id
        assert by_id.total_expected_pages == 2
        assert by_id.pages[1].parts[0].label == "Side"

    @pytest.mark.asyncio
    async def test_save_replaces_existing_row(self, store):
        session = make_session()
        await store.save(session)

        session.status = SessionStatus.COMPLETE
        await store.save(session)

        assert (await store.get_by_id(session.session_id)).status == SessionStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_unknown_session(self, store):
        assert await store.get("acme:nope") is None
        assert await store.get_by_id("tps_0_missing") is None

    @pytest.mark.asyncio
    async def test_idle_sessions_are_swept(self, store):
        stale = make_session(updated_at=utcnow() - timedelta(minutes=10))
        merged = make_session(
            session_id="tps_2_bbbb0000",
            key="acme:K-13",
            status=SessionStatus.MERGED,
            updated_at=utcnow() - timedelta(minutes=10),
        )
        fresh = make_session(session_id="tps_3_cccc0000", key="acme:K-14")
        for session in (stale, merged, fresh):
            await store.save(session)

        removed = await store.sweep_expired(60)

        assert removed == 1
        assert await store.get_by_id(stale.session_id) is None
        assert await store.get_by_id(merged.session_id) is not None
        assert await store.get_by_id(fresh.session_id) is not None

    @pytest.mark.asyncio
    async def test_merger_over_sql_store(self, store):
        merger = MultiPageSessionMerger(store)
        for page, label in ((2, "Door"), (1, "Side")):
            registration = await merger.register_page(
                organization_id="acme",
                user_id=None,
                template_id="CAI-acme-v1.0",
                file_id=f"file-{page}",
                parse_result=ProviderParseResult(
                    parts=[make_part(label=label)],
                    confidence=0.96,
                    project_info=ProjectInfo(project_code="K-12", page_number=page, total_pages=2),
                ),
            )

        assert registration.ready_to_merge is True
        result = await merger.merge_session(registration.session_id)

        assert [part.label for part in result.parts] == ["Side", "Door"]
        stored = await store.get_by_id(registration.session_id)
        assert stored.status == SessionStatus.MERGED
        assert stored.merged_result.page_count == 2
