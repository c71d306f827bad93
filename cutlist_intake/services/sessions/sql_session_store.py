"""SQLAlchemy-backed session store."""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cutlist_intake.core.exceptions import DatabaseError
from cutlist_intake.database.models import ParseSessionRecord
from cutlist_intake.models.sessions import ParseSession, SessionStatus
from cutlist_intake.services.sessions.session_store import SessionStore
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class SQLSessionStore(SessionStore):
    """Stores each session as one row with a JSON payload.

    Locks are per key within the process, like the in-memory store.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        super().__init__()
        self.session_maker = session_maker

    @staticmethod
    def _to_session(record: Optional[ParseSessionRecord]) -> Optional[ParseSession]:
        if record is None:
            return None
        return ParseSession.model_validate(record.payload)

    async def get(self, session_key: str) -> Optional[ParseSession]:
        async with self.session_maker() as db:
            result = await db.execute(select(ParseSessionRecord).where(ParseSessionRecord.session_key == session_key))
            return self._to_session(result.scalar_one_or_none())

    async def get_by_id(self, session_id: str) -> Optional[ParseSession]:
        async with self.session_maker() as db:
            return self._to_session(await db.get(ParseSessionRecord, session_id))

    async def save(self, session: ParseSession) -> None:
        try:
            async with self.session_maker() as db:
                record = await db.get(ParseSessionRecord, session.session_id)
                payload = session.model_dump(mode="json")
                if record is None:
                    record = ParseSessionRecord(
                        session_id=session.session_id,
                        session_key=session.session_key,
                        organization_id=session.organization_id,
                        created_at=session.created_at,
                    )
                    db.add(record)
                record.status = session.status.value
                record.payload = payload
                record.updated_at = session.updated_at
                await db.commit()
        except Exception as e:
            LOGGER.error("Failed to save parse session", extra={"session_id": session.session_id, "error": str(e)})
            raise DatabaseError(f"Failed to save session {session.session_id}", original_error=e) from e

    async def delete(self, session_id: str) -> None:
        async with self.session_maker() as db:
            await db.execute(delete(ParseSessionRecord).where(ParseSessionRecord.session_id == session_id))
            await db.commit()

    async def expired(self, cutoff: datetime) -> List[ParseSession]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(ParseSessionRecord).where(
                    ParseSessionRecord.status != SessionStatus.MERGED.value,
                    ParseSessionRecord.updated_at < cutoff,
                )
            )
            sessions = [self._to_session(record) for record in result.scalars().all()]
        return [session for session in sessions if _as_utc(session.updated_at) < cutoff]
