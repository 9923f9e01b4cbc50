"""Base fetch strategy."""

import math
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import Engine

from dessharvest.api.client import DessClient
from dessharvest.auth.session import AuthSession, DeviceRef
from dessharvest.config.settings import Settings
from dessharvest.utils.exceptions import DataError

logger = structlog.get_logger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_value(raw: Any) -> float:
    """Parse a remote sample value, coercing anything unparseable to 0.0.

    One bad sample never fails the whole batch.
    """
    try:
        return _to_float(raw)
    except DataError as e:
        logger.debug("Coercing unparseable value to 0", value=raw, error=str(e))
        return 0.0


def _to_float(raw: Any) -> float:
    if raw is None or isinstance(raw, bool):
        raise DataError(f"not a number: {raw!r}")
    try:
        value = float(str(raw).strip())
    except ValueError as e:
        raise DataError(f"not a number: {raw!r}") from e
    if not math.isfinite(value):
        raise DataError(f"not finite: {raw!r}")
    return value


def parse_timestamp(raw: str | None) -> datetime | None:
    """Parse a remote ``YYYY-MM-DD HH:MM:SS`` timestamp.

    Returns:
        Naive datetime in the device's local time, or None if unparseable.
    """
    if not raw:
        return None
    try:
        return datetime.strptime(raw.strip(), TIMESTAMP_FORMAT)
    except ValueError:
        try:
            return datetime.fromisoformat(raw.strip())
        except ValueError:
            return None


class BaseFetchStrategy(ABC):
    """One remote fetch for one device, persisted on success.

    Strategies perform a single attempt; retries and re-authentication are
    handled by the IngestionService.
    """

    category: str

    def __init__(
        self,
        client: DessClient,
        engine: Engine,
        settings: Settings,
        device: DeviceRef,
    ) -> None:
        """Initialize the strategy.

        Args:
            client: DESS Monitor API client.
            engine: SQLAlchemy engine.
            settings: Application settings.
            device: Target device.
        """
        self.client = client
        self.engine = engine
        self.settings = settings
        self.device = device

    @property
    def label(self) -> str:
        """Short description used in logs."""
        return self.category

    @abstractmethod
    async def attempt(self, session: AuthSession) -> int:
        """Fetch once with the given session and persist the result.

        Args:
            session: Session to sign the request with.

        Returns:
            Number of records written.

        Raises:
            DessHarvestError: On any remote or storage failure.
        """
        pass
