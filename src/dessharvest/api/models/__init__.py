"""Pydantic models for DESS Monitor API responses."""

from dessharvest.api.models.responses import (
    ChartDataPoint,
    DeviceItem,
    DeviceListData,
    Envelope,
    KeyParamData,
    KeyParamDataPoint,
    LatestData,
    LoginData,
    ParameterReading,
    RawLatestData,
)

__all__ = [
    "ChartDataPoint",
    "DeviceItem",
    "DeviceListData",
    "Envelope",
    "KeyParamData",
    "KeyParamDataPoint",
    "LatestData",
    "LoginData",
    "ParameterReading",
    "RawLatestData",
]
