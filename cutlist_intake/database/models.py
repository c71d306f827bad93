"""SQLAlchemy models."""

from datetime import datetime

from sqlalchemy import JSON, TIMESTAMP, String
from sqlalchemy.orm import Mapped, mapped_column

from cutlist_intake.database.base import Base


class ParseSessionRecord(Base):
    """A multi-page parse session; the full session is kept in ``payload``."""

    __tablename__ = "parse_sessions"

    session_id: Mapped[str] = mapped_column(String, primary_key=True)
    session_key: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    organization_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="collecting")
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), index=True, nullable=False)
