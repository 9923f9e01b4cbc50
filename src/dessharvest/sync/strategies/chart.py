"""Chart field fetch strategy."""

from datetime import datetime

import structlog
from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from dessharvest.api.client import DessClient
from dessharvest.auth.session import AuthSession, DeviceRef
from dessharvest.config.settings import Settings
from dessharvest.db.engine import get_session
from dessharvest.db.repositories.chart import ChartPointRepository
from dessharvest.sync.strategies.base import BaseFetchStrategy, parse_timestamp, parse_value
from dessharvest.utils.exceptions import DatabaseError

logger = structlog.get_logger(__name__)


class ChartFieldStrategy(BaseFetchStrategy):
    """Fetch one chart field over one date range in a single request."""

    category = "chart"

    def __init__(
        self,
        client: DessClient,
        engine: Engine,
        settings: Settings,
        device: DeviceRef,
        field: str,
        sdate: datetime,
        edate: datetime,
    ) -> None:
        super().__init__(client, engine, settings, device)
        self.field = field
        self.sdate = sdate
        self.edate = edate

    @property
    def label(self) -> str:
        return f"chart {self.field} {self.sdate:%Y-%m-%d}..{self.edate:%Y-%m-%d}"

    async def attempt(self, session: AuthSession) -> int:
        points = await self.client.query_chart_field(
            session, self.device, self.field, self.sdate, self.edate
        )

        rows = []
        for point in points:
            ts = parse_timestamp(point.key)
            if ts is None:
                logger.warning("Invalid timestamp format", field=self.field, timestamp=point.key)
                continue
            rows.append(
                {
                    "pn": self.device.pn,
                    "sn": self.device.storage_sn,
                    "field": self.field,
                    "ts": ts,
                    "val": parse_value(point.val),
                }
            )

        try:
            with get_session(self.engine) as db:
                count = ChartPointRepository(db).upsert_batch(rows)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to store chart points: {e}") from e

        logger.debug("Chart points stored", pn=self.device.pn, field=self.field, count=count)
        return count
