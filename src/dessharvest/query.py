"""Read-only query API over the stored data."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, select

from dessharvest.config.settings import Settings
from dessharvest.db.engine import get_session
from dessharvest.db.models.chart import ChartPoint
from dessharvest.db.repositories.chart import ChartPointRepository
from dessharvest.db.repositories.key_param import KeyParamRepository
from dessharvest.db.repositories.latest import LatestSnapshotRepository
from dessharvest.utils.exceptions import QueryError, UnsupportedFieldError


@dataclass(frozen=True)
class TimePoint:
    """One stored sample."""

    ts: datetime
    val: float

    def to_dict(self) -> dict[str, Any]:
        return {"ts": self.ts.strftime("%Y-%m-%d %H:%M:%S"), "val": self.val}


@dataclass(frozen=True)
class SnapshotView:
    """Latest stored parameter dump of a device."""

    pn: str
    sn: str
    pars: dict[str, Any]
    gts: str | None
    generated_at: datetime | None
    fetched_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "pn": self.pn,
            "sn": self.sn,
            "pars": self.pars,
            "gts": self.gts or "",
            "fetched_at": self.fetched_at.isoformat(),
        }


def _check_range(start: datetime | None, end: datetime | None) -> None:
    if start and end and end < start:
        raise QueryError(f"Range end {end} is before start {start}")


class DataQueryService:
    """Serves stored snapshots and time series; never calls the remote API."""

    def __init__(self, engine: Engine, settings: Settings) -> None:
        self.engine = engine
        self.settings = settings

    def list_chart_fields(self) -> list[str]:
        """Chart fields that are fetched and can be queried."""
        return self.settings.get_chart_fields_list()

    def get_latest(self, pn: str, sn: str | None = None) -> SnapshotView | None:
        """Get the latest snapshot of a device, or None if never fetched.

        Without sn, the most recently fetched snapshot under pn is returned.
        """
        with get_session(self.engine) as db:
            row = LatestSnapshotRepository(db).get_by_pn(pn, sn)
            if row is None:
                return None
            return SnapshotView(
                pn=row.pn,
                sn=row.sn,
                pars=dict(row.pars or {}),
                gts=row.gts,
                generated_at=row.generated_at,
                fetched_at=row.fetched_at,
            )

    def get_chart_points(
        self,
        pn: str,
        field: str,
        start: datetime | None = None,
        end: datetime | None = None,
        sn: str | None = None,
    ) -> list[TimePoint]:
        """Get chart points of a device and field, ordered by timestamp.

        Args:
            pn: Device product number.
            field: Chart field name.
            start: Optional inclusive start.
            end: Optional inclusive end.
            sn: Device serial number. None matches every serial under pn.

        Raises:
            UnsupportedFieldError: If the field is not a fetched chart field.
            QueryError: If end is before start.
        """
        supported = self.list_chart_fields()
        if field not in supported:
            raise UnsupportedFieldError(field, supported)
        _check_range(start, end)

        with get_session(self.engine) as db:
            rows = ChartPointRepository(db).get_range(pn, field, start, end, sn=sn)
            return [TimePoint(ts=r.ts, val=r.val) for r in rows]

    def get_key_param_points(
        self,
        pn: str,
        parameter: str,
        start: datetime | None = None,
        end: datetime | None = None,
        sn: str | None = None,
    ) -> list[TimePoint]:
        """Get key parameter points of a device, ordered by timestamp.

        Raises:
            QueryError: If end is before start.
        """
        _check_range(start, end)
        with get_session(self.engine) as db:
            rows = KeyParamRepository(db).get_range(pn, parameter, start, end, sn=sn)
            return [TimePoint(ts=r.ts, val=r.val) for r in rows]

    def chart_summary(self) -> list[dict[str, Any]]:
        """Point count and time span per device and chart field."""
        with get_session(self.engine) as db:
            repo = ChartPointRepository(db)
            keys = db.execute(
                select(ChartPoint.pn, ChartPoint.sn, ChartPoint.field).distinct().order_by(
                    ChartPoint.pn, ChartPoint.sn, ChartPoint.field
                )
            ).all()
            summary = []
            for pn, sn, field in keys:
                first, last = repo.span(pn, field, sn=sn)
                summary.append(
                    {
                        "pn": pn,
                        "sn": sn,
                        "field": field,
                        "points": repo.count(pn, field, sn=sn),
                        "first": first,
                        "last": last,
                    }
                )
            return summary
