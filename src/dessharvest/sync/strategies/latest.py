"""Latest snapshot fetch strategy."""

from datetime import datetime, timezone

import structlog
from sqlalchemy.exc import SQLAlchemyError

from dessharvest.auth.session import AuthSession
from dessharvest.db.engine import get_session
from dessharvest.db.repositories.latest import LatestSnapshotRepository
from dessharvest.sync.strategies.base import BaseFetchStrategy, parse_timestamp
from dessharvest.utils.exceptions import DatabaseError

logger = structlog.get_logger(__name__)


class LatestSnapshotStrategy(BaseFetchStrategy):
    """Fetch the full parameter dump of a device and overwrite its snapshot."""

    category = "latest"

    async def attempt(self, session: AuthSession) -> int:
        data = await self.client.query_latest(session, self.device)

        pars = {
            category: [reading.model_dump(exclude_none=True) for reading in readings]
            for category, readings in (data.pars or {}).items()
        }

        try:
            with get_session(self.engine) as db:
                LatestSnapshotRepository(db).upsert(
                    {
                        "pn": self.device.pn,
                        "sn": self.device.storage_sn,
                        "pars": pars,
                        "gts": data.gts,
                        "generated_at": parse_timestamp(data.gts),
                        "fetched_at": datetime.now(timezone.utc),
                    }
                )
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to store latest snapshot: {e}") from e

        logger.info("Latest snapshot stored", pn=self.device.pn, sn=self.device.sn, gts=data.gts)
        return 1
