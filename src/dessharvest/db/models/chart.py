"""Chart field time series ORM model."""

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dessharvest.db.base import Base


class ChartPoint(Base):
    """High-frequency (5-minute) sample of one chart field."""

    __tablename__ = "dess_chart_points"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pn: Mapped[str] = mapped_column(String(64), nullable=False)
    sn: Mapped[str] = mapped_column(String(64), nullable=False, default="", server_default="")
    field: Mapped[str] = mapped_column(String(64), nullable=False)
    # Remote local time as reported by the API
    ts: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    val: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (UniqueConstraint("pn", "sn", "field", "ts", name="uq_chart_point"),)

    def __repr__(self) -> str:
        return f"<ChartPoint(pn={self.pn}, sn={self.sn}, field={self.field}, ts={self.ts}, val={self.val})>"
