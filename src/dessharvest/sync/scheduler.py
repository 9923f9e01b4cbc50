"""Polling scheduler built from independent periodic asyncio tasks."""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from datetime import date, datetime, time, timedelta

import structlog

from dessharvest.auth.session import DeviceRef
from dessharvest.auth.session_store import SessionStore
from dessharvest.config.settings import Settings
from dessharvest.sync.ingestion import IngestionService

logger = structlog.get_logger(__name__)


def seconds_until(run_time: time, now: datetime) -> float:
    """Seconds from now until the next occurrence of a local time of day."""
    target = datetime.combine(now.date(), run_time)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class PeriodicTask:
    """Runs a job repeatedly until a shutdown event is set.

    The job is awaited after each delay; an exception in one run is logged
    and does not stop the task.
    """

    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable[object]],
        next_delay: Callable[[], float],
    ) -> None:
        """Initialize the task.

        Args:
            name: Task name used in logs.
            job: Coroutine function executed on every tick.
            next_delay: Returns the seconds to wait before the next tick.
        """
        self.name = name
        self.job = job
        self.next_delay = next_delay
        self.runs = 0

    @classmethod
    def every(
        cls, name: str, job: Callable[[], Awaitable[object]], seconds: float
    ) -> "PeriodicTask":
        """Task that runs at a fixed interval."""
        return cls(name, job, lambda: seconds)

    @classmethod
    def daily_at(
        cls,
        name: str,
        job: Callable[[], Awaitable[object]],
        run_time: time,
        clock: Callable[[], datetime] = datetime.now,
    ) -> "PeriodicTask":
        """Task that runs once a day at a local time."""
        return cls(name, job, lambda: seconds_until(run_time, clock()))

    async def run_once(self) -> None:
        """Run the job once, logging instead of raising."""
        self.runs += 1
        try:
            await self.job()
        except Exception:
            logger.error("Scheduled task error", task=self.name, exc_info=True)

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Run until shutdown_event is set."""
        logger.info("Scheduled task started", task=self.name)
        while not shutdown_event.is_set():
            # Use wait with timeout so we can check shutdown between sleeps
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(shutdown_event.wait(), timeout=self.next_delay())
            if shutdown_event.is_set():
                break
            await self.run_once()
        logger.info("Scheduled task stopped", task=self.name)


class HarvestScheduler:
    """Drives the IngestionService for every tracked device."""

    def __init__(
        self,
        ingestion: IngestionService,
        session_store: SessionStore,
        settings: Settings,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize the scheduler.

        Args:
            ingestion: Service performing the fetches.
            session_store: Store with the session and device list.
            settings: Application settings (intervals, run time).
            clock: Local time source.
        """
        self.ingestion = ingestion
        self.session_store = session_store
        self.settings = settings
        self.clock = clock

    def _today(self) -> date:
        return self.clock().date()

    async def _devices_for_tick(self, task: str) -> list[DeviceRef]:
        # A lost or never-stored session is recovered here when fallback credentials exist
        if not await self.session_store.ensure_from_fallback():
            logger.warning("No session stored, skipping tick", task=task)
            return []
        devices = self.session_store.tracked_devices()
        if not devices:
            logger.warning("No tracked devices, skipping tick", task=task)
        return devices

    async def _for_each_device(
        self,
        task: str,
        work: Callable[[DeviceRef], Awaitable[object]],
    ) -> None:
        devices = await self._devices_for_tick(task)
        if devices:
            await asyncio.gather(*(self._isolated(task, device, work) for device in devices))

    @staticmethod
    async def _isolated(
        task: str,
        device: DeviceRef,
        work: Callable[[DeviceRef], Awaitable[object]],
    ) -> None:
        try:
            await work(device)
        except Exception:
            logger.error("Device cycle error", task=task, pn=device.pn, exc_info=True)

    # Ticks

    async def latest_tick(self) -> None:
        """Fetch the latest snapshot of every tracked device."""
        await self._for_each_device("latest", self.ingestion.run_latest_cycle)

    async def chart_tick(self) -> None:
        """Fetch chart fields for yesterday and today for every tracked device."""
        today = self._today()
        yesterday = today - timedelta(days=1)

        async def work(device: DeviceRef) -> None:
            await self.ingestion.run_chart_cycle(device, yesterday, today, now=self.clock())

        await self._for_each_device("chart", work)

    async def key_param_tick(self) -> None:
        """Fetch key parameters for today and yesterday for every tracked device."""
        today = self._today()

        async def work(device: DeviceRef) -> None:
            for day in (today, today - timedelta(days=1)):
                await self.ingestion.run_key_param_cycle(device, day)

        await self._for_each_device("key_param", work)

    # Lifecycle

    async def startup(self) -> None:
        """Seed a missing session from fallback credentials and fetch once."""
        try:
            await self.session_store.ensure_from_fallback()
        except Exception:
            logger.error("Seeding session from fallback credentials failed", exc_info=True)

        for name, tick in (("latest", self.latest_tick), ("chart", self.chart_tick)):
            try:
                await tick()
            except Exception:
                logger.error("Initial fetch failed", task=name, exc_info=True)

    def tasks(self) -> list[PeriodicTask]:
        """The periodic tasks of the scheduler."""
        return [
            PeriodicTask.every(
                "latest", self.latest_tick, self.settings.latest_interval_minutes * 60
            ),
            PeriodicTask.every(
                "chart", self.chart_tick, self.settings.chart_interval_minutes * 60
            ),
            PeriodicTask.daily_at(
                "key_param",
                self.key_param_tick,
                self.settings.get_key_param_run_time(),
                clock=self.clock,
            ),
        ]

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Run the startup fetch, then all periodic tasks until shutdown."""
        logger.info(
            "Scheduler starting",
            latest_interval_minutes=self.settings.latest_interval_minutes,
            chart_interval_minutes=self.settings.chart_interval_minutes,
            key_param_run_time=self.settings.key_param_run_time,
        )
        await self.startup()
        await asyncio.gather(*(task.run(shutdown_event) for task in self.tasks()))
        logger.info("Scheduler stopped")
