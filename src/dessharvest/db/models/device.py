"""Tracked device ORM model."""

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dessharvest.db.base import Base, TimestampMixin


class Device(Base, TimestampMixin):
    """Inverter (data logger) registered on the DESS Monitor account."""

    __tablename__ = "dess_devices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pn: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    sn: Mapped[str] = mapped_column(String(64), nullable=False)
    devcode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    devaddr: Mapped[str | None] = mapped_column(String(20), nullable=True)
    alias: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (UniqueConstraint("pn", "sn", name="uq_device"),)

    def __repr__(self) -> str:
        return f"<Device(pn={self.pn}, sn={self.sn})>"
