"""Chart point repository."""

from datetime import datetime

from sqlalchemy import delete, func, select

from dessharvest.db.models.chart import ChartPoint
from dessharvest.db.repositories.base import BaseRepository


class ChartPointRepository(BaseRepository[ChartPoint]):
    """Repository for ChartPoint operations."""

    model = ChartPoint

    def _device_filter(self, stmt, pn: str, sn: str | None):
        stmt = stmt.where(ChartPoint.pn == pn)
        if sn is not None:
            stmt = stmt.where(ChartPoint.sn == sn)
        return stmt

    def get_range(
        self,
        pn: str,
        field: str,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        sn: str | None = None,
    ) -> list[ChartPoint]:
        """Get chart points for a device and field.

        Args:
            pn: Device product number.
            field: Chart field name.
            start_time: Optional inclusive start.
            end_time: Optional inclusive end.
            sn: Device serial number. None matches every serial under pn.

        Returns:
            Points ordered by timestamp.
        """
        stmt = self._device_filter(select(ChartPoint), pn, sn).where(ChartPoint.field == field)

        if start_time:
            stmt = stmt.where(ChartPoint.ts >= start_time)
        if end_time:
            stmt = stmt.where(ChartPoint.ts <= end_time)

        stmt = stmt.order_by(ChartPoint.ts)
        return list(self.session.scalars(stmt).all())

    def count(self, pn: str | None = None, field: str | None = None, sn: str | None = None) -> int:
        """Count stored points, optionally filtered by device and field."""
        stmt = select(func.count()).select_from(ChartPoint)
        if pn:
            stmt = stmt.where(ChartPoint.pn == pn)
        if sn is not None:
            stmt = stmt.where(ChartPoint.sn == sn)
        if field:
            stmt = stmt.where(ChartPoint.field == field)
        return self.session.scalar(stmt) or 0

    def span(
        self, pn: str, field: str, sn: str | None = None
    ) -> tuple[datetime | None, datetime | None]:
        """Earliest and latest stored timestamp of a device and field."""
        stmt = select(func.min(ChartPoint.ts), func.max(ChartPoint.ts)).where(ChartPoint.field == field)
        row = self.session.execute(self._device_filter(stmt, pn, sn)).one()
        return row[0], row[1]

    def upsert_batch(self, points: list[dict]) -> int:
        """Insert or update multiple chart points.

        Args:
            points: Dictionaries with pn, sn, field, ts and val. A missing
                sn is stored as the empty string.

        Returns:
            Number of records affected.
        """
        return self.upsert_rows(
            [{"sn": "", **point} for point in points],
            index_elements=["pn", "sn", "field", "ts"],
            constraint="uq_chart_point",
            update_columns=["val"],
        )

    def prune_before(self, pn: str, field: str, cutoff: datetime, sn: str | None = None) -> int:
        """Delete points of a device and field older than cutoff.

        Returns:
            Number of rows deleted.
        """
        stmt = delete(ChartPoint).where(ChartPoint.field == field, ChartPoint.ts < cutoff)
        result = self.session.execute(self._device_filter(stmt, pn, sn))
        self.session.flush()
        return result.rowcount or 0
