"""Key parameter time series ORM model."""

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dessharvest.db.base import Base


class KeyParamPoint(Base):
    """Sample of a daily key parameter. Accumulates, never pruned."""

    __tablename__ = "dess_key_param_points"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pn: Mapped[str] = mapped_column(String(64), nullable=False)
    sn: Mapped[str] = mapped_column(String(64), nullable=False, default="", server_default="")
    parameter: Mapped[str] = mapped_column(String(64), nullable=False)
    ts: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    val: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint("pn", "sn", "parameter", "ts", name="uq_key_param_point"),
    )

    def __repr__(self) -> str:
        return (
            f"<KeyParamPoint(pn={self.pn}, sn={self.sn}, parameter={self.parameter}, "
            f"ts={self.ts}, val={self.val})>"
        )
