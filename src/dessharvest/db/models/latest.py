"""Latest snapshot ORM model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from dessharvest.db.base import Base


class LatestSnapshot(Base):
    """Most recent full parameter dump for a device. One row per (pn, sn)."""

    __tablename__ = "dess_latest_snapshots"

    pn: Mapped[str] = mapped_column(String(64), primary_key=True)
    # Empty string when the account does not report a serial number
    sn: Mapped[str] = mapped_column(String(64), primary_key=True, default="", server_default="")
    # Categorized readings keyed by prefix (gd_, sy_, pv_, bt_, bc_)
    pars: Mapped[dict] = mapped_column(JSON, nullable=False)
    gts: Mapped[str | None] = mapped_column(String(32), nullable=True)
    generated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<LatestSnapshot(pn={self.pn}, sn={self.sn}, gts={self.gts})>"
