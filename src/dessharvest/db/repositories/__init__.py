"""Repository classes for database operations."""

from dessharvest.db.repositories.chart import ChartPointRepository
from dessharvest.db.repositories.device import DeviceRepository
from dessharvest.db.repositories.key_param import KeyParamRepository
from dessharvest.db.repositories.latest import LatestSnapshotRepository
from dessharvest.db.repositories.session import SessionRepository

__all__ = [
    "ChartPointRepository",
    "DeviceRepository",
    "KeyParamRepository",
    "LatestSnapshotRepository",
    "SessionRepository",
]
