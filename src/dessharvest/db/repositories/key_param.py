"""Key parameter point repository."""

from datetime import datetime

from sqlalchemy import select

from dessharvest.db.models.key_param import KeyParamPoint
from dessharvest.db.repositories.base import BaseRepository


class KeyParamRepository(BaseRepository[KeyParamPoint]):
    """Repository for KeyParamPoint operations."""

    model = KeyParamPoint

    def get_range(
        self,
        pn: str,
        parameter: str,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        sn: str | None = None,
    ) -> list[KeyParamPoint]:
        """Get key parameter points for a device.

        Args:
            pn: Device product number.
            parameter: Key parameter name.
            start_time: Optional inclusive start.
            end_time: Optional inclusive end.
            sn: Device serial number. None matches every serial under pn.

        Returns:
            Points ordered by timestamp.
        """
        stmt = select(KeyParamPoint).where(
            KeyParamPoint.pn == pn,
            KeyParamPoint.parameter == parameter,
        )

        if sn is not None:
            stmt = stmt.where(KeyParamPoint.sn == sn)
        if start_time:
            stmt = stmt.where(KeyParamPoint.ts >= start_time)
        if end_time:
            stmt = stmt.where(KeyParamPoint.ts <= end_time)

        stmt = stmt.order_by(KeyParamPoint.ts)
        return list(self.session.scalars(stmt).all())

    def upsert_batch(self, points: list[dict]) -> int:
        """Insert or update multiple key parameter points.

        Args:
            points: Dictionaries with pn, sn, parameter, ts and val. A
                missing sn is stored as the empty string.

        Returns:
            Number of records affected.
        """
        return self.upsert_rows(
            [{"sn": "", **point} for point in points],
            index_elements=["pn", "sn", "parameter", "ts"],
            constraint="uq_key_param_point",
            update_columns=["val"],
        )
