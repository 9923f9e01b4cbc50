"""Ingestion service: one logical fetch with transparent re-authentication."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum

import structlog
from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from dessharvest.api.client import DessClient
from dessharvest.auth.session import DeviceRef
from dessharvest.auth.session_store import SessionStore
from dessharvest.config.logging import CycleStats, OperationTimer
from dessharvest.config.settings import Settings
from dessharvest.db.engine import get_session
from dessharvest.db.repositories.chart import ChartPointRepository
from dessharvest.sync.strategies import (
    BaseFetchStrategy,
    ChartFieldStrategy,
    KeyParameterStrategy,
    LatestSnapshotStrategy,
)
from dessharvest.utils.exceptions import ConfigurationError, DatabaseError, DessHarvestError

logger = structlog.get_logger(__name__)


class FetchState(str, Enum):
    """States of a single fetch operation."""

    ATTEMPT = "attempt"
    CHECK_FALLBACK = "check_fallback"
    REAUTHENTICATE = "reauthenticate"
    RETRY = "retry"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = frozenset({FetchState.DONE, FetchState.FAILED})


@dataclass
class FetchOutcome:
    """Result of one logical fetch."""

    operation: str
    device_pn: str
    state: FetchState = FetchState.ATTEMPT
    records: int = 0
    attempts: int = 0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.state == FetchState.DONE


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """First and last second of a calendar day."""
    return datetime.combine(day, time.min), datetime.combine(day, time(23, 59, 59))


def retention_cutoff(now: datetime, retention_days: int) -> datetime:
    """Local midnight of ``now - retention_days``."""
    return datetime.combine(now.date() - timedelta(days=retention_days), time.min)


class IngestionService:
    """Runs fetch strategies against the remote API and stores the results.

    Every operation makes at most two remote calls: the first attempt and,
    after a successful re-authentication from fallback credentials, one
    retry. There is no backoff.
    """

    def __init__(
        self,
        client: DessClient,
        session_store: SessionStore,
        engine: Engine,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the service.

        Args:
            client: DESS Monitor API client.
            session_store: Store holding the active session.
            engine: SQLAlchemy engine.
            settings: Application settings.
            sleep: Coroutine used for pacing between requests.
        """
        self.client = client
        self.session_store = session_store
        self.engine = engine
        self.settings = settings
        self._sleep = sleep

    async def pace(self) -> None:
        """Wait the configured delay between two remote requests."""
        if self.settings.request_delay > 0:
            await self._sleep(self.settings.request_delay)

    async def _attempt(self, strategy: BaseFetchStrategy) -> int:
        session = self.session_store.get()
        if session is None:
            raise ConfigurationError("No session stored; log in or capture a URL first")
        return await strategy.attempt(session)

    async def execute(self, strategy: BaseFetchStrategy) -> FetchOutcome:
        """Run a strategy through the fetch state machine.

        Args:
            strategy: Strategy performing the remote call and the write.

        Returns:
            Outcome in a terminal state (DONE or FAILED).
        """
        outcome = FetchOutcome(operation=strategy.label, device_pn=strategy.device.pn)

        while outcome.state not in TERMINAL_STATES:
            if outcome.state in (FetchState.ATTEMPT, FetchState.RETRY):
                retrying = outcome.state == FetchState.RETRY
                outcome.attempts += 1
                try:
                    outcome.records = await self._attempt(strategy)
                    outcome.error = None
                    outcome.state = FetchState.DONE
                except DessHarvestError as e:
                    outcome.error = str(e)
                    logger.warning(
                        "Fetch attempt failed",
                        operation=outcome.operation,
                        pn=outcome.device_pn,
                        attempt=outcome.attempts,
                        error=str(e),
                    )
                    outcome.state = FetchState.FAILED if retrying else FetchState.CHECK_FALLBACK

            elif outcome.state == FetchState.CHECK_FALLBACK:
                if self.session_store.has_fallback_credentials():
                    outcome.state = FetchState.REAUTHENTICATE
                else:
                    outcome.state = FetchState.FAILED

            elif outcome.state == FetchState.REAUTHENTICATE:
                if await self.session_store.reauthenticate_from_fallback():
                    outcome.state = FetchState.RETRY
                else:
                    outcome.state = FetchState.FAILED

        if outcome.success:
            logger.debug(
                "Fetch complete",
                operation=outcome.operation,
                pn=outcome.device_pn,
                records=outcome.records,
                attempts=outcome.attempts,
            )
        else:
            logger.error(
                "Fetch failed",
                operation=outcome.operation,
                pn=outcome.device_pn,
                attempts=outcome.attempts,
                error=outcome.error,
            )
        return outcome

    # Operations

    async def fetch_latest_snapshot(self, device: DeviceRef) -> FetchOutcome:
        """Fetch and store the latest parameter dump of a device."""
        return await self.execute(
            LatestSnapshotStrategy(self.client, self.engine, self.settings, device)
        )

    def splits_by_day(self, field: str, start_date: date, end_date: date) -> bool:
        """Check whether a chart field range has to be fetched one day at a time."""
        return field in self.settings.get_single_day_fields() and end_date > start_date

    async def fetch_chart_field(
        self,
        device: DeviceRef,
        field: str,
        start_date: date,
        end_date: date,
    ) -> FetchOutcome:
        """Fetch one chart field over an inclusive date range.

        Single-day fields are fetched with one paced request per calendar
        day; the operation succeeds when at least one day succeeded.

        Raises:
            ValueError: If end_date is before start_date.
        """
        if end_date < start_date:
            raise ValueError(f"end_date {end_date} is before start_date {start_date}")

        if not self.splits_by_day(field, start_date, end_date):
            sdate, _ = day_bounds(start_date)
            _, edate = day_bounds(end_date)
            return await self.execute(
                ChartFieldStrategy(
                    self.client, self.engine, self.settings, device, field, sdate, edate
                )
            )

        combined = FetchOutcome(
            operation=f"chart {field} {start_date:%Y-%m-%d}..{end_date:%Y-%m-%d}",
            device_pn=device.pn,
        )
        day = start_date
        while day <= end_date:
            sdate, edate = day_bounds(day)
            outcome = await self.execute(
                ChartFieldStrategy(
                    self.client, self.engine, self.settings, device, field, sdate, edate
                )
            )
            combined.attempts += outcome.attempts
            if outcome.success:
                combined.records += outcome.records
                combined.state = FetchState.DONE
            else:
                combined.error = outcome.error
            await self.pace()
            day += timedelta(days=1)

        if combined.state != FetchState.DONE:
            combined.state = FetchState.FAILED
        return combined

    async def fetch_key_parameter(
        self,
        device: DeviceRef,
        parameter: str,
        day: date,
    ) -> FetchOutcome:
        """Fetch and store one day of a key parameter."""
        return await self.execute(
            KeyParameterStrategy(self.client, self.engine, self.settings, device, parameter, day)
        )

    def prune_chart_field(
        self,
        device: DeviceRef,
        field: str,
        now: datetime | None = None,
    ) -> int:
        """Delete chart points of a device and field older than the retention window.

        Returns:
            Number of deleted points.

        Raises:
            DatabaseError: If the delete fails.
        """
        cutoff = retention_cutoff(now or datetime.now(), self.settings.chart_retention_days)
        try:
            with get_session(self.engine) as db:
                deleted = ChartPointRepository(db).prune_before(
                    device.pn, field, cutoff, sn=device.storage_sn
                )
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to prune chart points: {e}") from e

        if deleted:
            logger.info(
                "Pruned old chart points",
                pn=device.pn,
                field=field,
                cutoff=cutoff.isoformat(),
                deleted=deleted,
            )
        return deleted

    # Cycles

    async def run_latest_cycle(self, device: DeviceRef) -> CycleStats:
        """Fetch the latest snapshot of a device."""
        stats = CycleStats(category="latest", device_pn=device.pn)
        outcome = await self.fetch_latest_snapshot(device)
        stats.record(outcome.success, outcome.records, outcome.error)
        stats.finish()
        return stats

    async def run_chart_cycle(
        self,
        device: DeviceRef,
        start_date: date,
        end_date: date,
        now: datetime | None = None,
    ) -> CycleStats:
        """Fetch all configured chart fields of a device, pruning each after success.

        Fields are fetched one after another with the pacing delay between
        requests.
        """
        stats = CycleStats(category="chart", device_pn=device.pn)

        with OperationTimer("chart cycle", logger, pn=device.pn):
            for field in self.settings.get_chart_fields_list():
                outcome = await self.fetch_chart_field(device, field, start_date, end_date)
                stats.record(outcome.success, outcome.records, outcome.error)

                if outcome.success:
                    try:
                        self.prune_chart_field(device, field, now=now)
                    except DatabaseError as e:
                        logger.error("Chart pruning failed", pn=device.pn, field=field, error=str(e))
                        stats.errors.append(str(e))

                # Split fields already paced after every day
                if not self.splits_by_day(field, start_date, end_date):
                    await self.pace()

        stats.finish()
        logger.info("Chart cycle finished", **stats.to_dict())
        return stats

    async def run_key_param_cycle(self, device: DeviceRef, day: date) -> CycleStats:
        """Fetch all configured key parameters of a device for one day."""
        stats = CycleStats(category="key_param", device_pn=device.pn)

        with OperationTimer("key parameter cycle", logger, pn=device.pn, day=day.isoformat()):
            for parameter in self.settings.get_key_parameters_list():
                outcome = await self.fetch_key_parameter(device, parameter, day)
                stats.record(outcome.success, outcome.records, outcome.error)
                await self.pace()

        stats.finish()
        logger.info("Key parameter cycle finished", day=day.isoformat(), **stats.to_dict())
        return stats
