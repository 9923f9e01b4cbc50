"""Pydantic models for DESS Monitor API responses."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

class Envelope(BaseModel):
    """Uniform response wrapper: ``{err, desc, dat}``. ``err == 0`` is success."""

    model_config = ConfigDict(extra="ignore")

    err: int
    desc: str | None = None
    dat: Any = None

    @property
    def ok(self) -> bool:
        return self.err == 0


class LoginData(BaseModel):
    """``authSource`` payload."""

    token: str = Field(min_length=1)
    secret: str = Field(min_length=1)
    expire: int | None = None


class DeviceItem(BaseModel):
    """One entry of the ``webQueryDeviceEs`` device directory."""

    pn: str | None = None
    sn: str | None = None
    devcode: int | str | None = None
    devaddr: int | str | None = None
    devalias: str | None = None
    status: int | None = None


class DeviceListData(BaseModel):
    """``webQueryDeviceEs`` payload."""

    total: int | None = None
    device: list[DeviceItem] = []


class ParameterReading(BaseModel):
    """One instrument reading inside a latest-data category."""

    id: str
    par: str | None = None
    # Usually a numeric string; anything else is coerced to 0.0 on storage
    val: Any = None
    unit: str | None = None


class LatestData(BaseModel):
    """``querySPDeviceLastData`` payload.

    ``pars`` maps category prefixes (``gd_``, ``sy_``, ``pv_``, ``bt_``,
    ``bc_``) to lists of readings.
    """

    gts: str | None = None
    pars: dict[str, list[ParameterReading]] | None = None


class RawLatestData(BaseModel):
    """``querySPDeviceLastData`` payload before per-reading validation."""

    gts: str | None = None
    pars: dict[str, list[Any]] | None = None


class ChartDataPoint(BaseModel):
    """One ``queryDeviceChartFieldDetailData`` sample; ``key`` is the timestamp."""

    key: str
    val: Any = None


class KeyParamDataPoint(BaseModel):
    """One ``querySPDeviceKeyParameterOneDay`` sample."""

    ts: str
    val: Any = None


class KeyParamData(BaseModel):
    """``querySPDeviceKeyParameterOneDay`` payload.

    Samples stay raw here and are validated one at a time by the client.
    """

    detail: list[Any]
