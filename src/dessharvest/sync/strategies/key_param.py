"""Key parameter fetch strategy."""

from datetime import date

import structlog
from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from dessharvest.api.client import DessClient
from dessharvest.auth.session import AuthSession, DeviceRef
from dessharvest.config.settings import Settings
from dessharvest.db.engine import get_session
from dessharvest.db.repositories.key_param import KeyParamRepository
from dessharvest.sync.strategies.base import BaseFetchStrategy, parse_timestamp, parse_value
from dessharvest.utils.exceptions import DatabaseError

logger = structlog.get_logger(__name__)


class KeyParameterStrategy(BaseFetchStrategy):
    """Fetch one day of one key parameter."""

    category = "key_param"

    def __init__(
        self,
        client: DessClient,
        engine: Engine,
        settings: Settings,
        device: DeviceRef,
        parameter: str,
        day: date,
    ) -> None:
        super().__init__(client, engine, settings, device)
        self.parameter = parameter
        self.day = day

    @property
    def label(self) -> str:
        return f"key_param {self.parameter} {self.day:%Y-%m-%d}"

    async def attempt(self, session: AuthSession) -> int:
        points = await self.client.query_key_parameter(
            session, self.device, self.parameter, self.day
        )

        rows = []
        for point in points:
            ts = parse_timestamp(point.ts)
            if ts is None:
                logger.warning(
                    "Invalid timestamp format", parameter=self.parameter, timestamp=point.ts
                )
                continue
            rows.append(
                {
                    "pn": self.device.pn,
                    "sn": self.device.storage_sn,
                    "parameter": self.parameter,
                    "ts": ts,
                    "val": parse_value(point.val),
                }
            )

        try:
            with get_session(self.engine) as db:
                count = KeyParamRepository(db).upsert_batch(rows)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to store key parameter points: {e}") from e

        logger.debug(
            "Key parameter points stored",
            pn=self.device.pn,
            parameter=self.parameter,
            count=count,
        )
        return count
