"""Fetch strategies for the different DESS Monitor endpoints."""

from dessharvest.sync.strategies.base import BaseFetchStrategy
from dessharvest.sync.strategies.chart import ChartFieldStrategy
from dessharvest.sync.strategies.key_param import KeyParameterStrategy
from dessharvest.sync.strategies.latest import LatestSnapshotStrategy

__all__ = [
    "BaseFetchStrategy",
    "ChartFieldStrategy",
    "KeyParameterStrategy",
    "LatestSnapshotStrategy",
]
