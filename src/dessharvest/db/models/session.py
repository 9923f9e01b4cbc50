"""Stored authentication session ORM model."""

from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dessharvest.db.base import Base

SESSION_ROW_ID = 1


class StoredSession(Base):
    """The single active credential set (always row id 1)."""

    __tablename__ = "dess_session"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SESSION_ROW_ID)
    mode: Mapped[str] = mapped_column(String(10), nullable=False)  # token, legacy
    params: Mapped[dict] = mapped_column(JSON, nullable=False)
    base_url: Mapped[str] = mapped_column(String(255), nullable=False)
    captured_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (CheckConstraint(f"id = {SESSION_ROW_ID}", name="ck_single_session"),)

    def __repr__(self) -> str:
        return f"<StoredSession(mode={self.mode}, updated={self.updated_at})>"
