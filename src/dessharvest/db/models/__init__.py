"""ORM models for DESS Monitor data."""

from dessharvest.db.models.chart import ChartPoint
from dessharvest.db.models.device import Device
from dessharvest.db.models.key_param import KeyParamPoint
from dessharvest.db.models.latest import LatestSnapshot
from dessharvest.db.models.session import StoredSession

__all__ = [
    "ChartPoint",
    "Device",
    "KeyParamPoint",
    "LatestSnapshot",
    "StoredSession",
]
