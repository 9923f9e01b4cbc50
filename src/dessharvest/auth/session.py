"""Immutable authentication session and device identifier types."""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType

DEVICE_PARAM_KEYS = ("pn", "sn", "devcode", "devaddr")


class SessionMode(str, Enum):
    """How the session's signing material was obtained."""

    TOKEN = "token"  # token + secret issued by a login
    LEGACY = "legacy"  # sign/salt/token captured from a browser URL


@dataclass(frozen=True)
class DeviceRef:
    """Identifiers the data endpoints need to address one inverter."""

    pn: str
    sn: str | None = None
    devcode: str | None = None
    devaddr: str | None = None
    alias: str | None = None

    @property
    def storage_sn(self) -> str:
        """Serial number as stored in the time series keys."""
        return self.sn or ""

    def as_params(self) -> dict[str, str]:
        """Request parameters for this device, empty values dropped."""
        params = {
            "pn": self.pn,
            "devcode": self.devcode,
            "sn": self.sn,
            "devaddr": self.devaddr,
        }
        return {k: str(v) for k, v in params.items() if v not in (None, "")}

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> "DeviceRef | None":
        """Build from session params; None when no pn is present."""
        pn = params.get("pn")
        if not pn:
            return None
        return cls(
            pn=pn,
            sn=params.get("sn") or None,
            devcode=params.get("devcode") or None,
            devaddr=params.get("devaddr") or None,
        )


@dataclass(frozen=True)
class AuthSession:
    """One complete credential set. Never mutated; replaced as a whole."""

    mode: SessionMode
    params: Mapping[str, str]
    base_url: str
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    captured_url: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "params", MappingProxyType({k: str(v) for k, v in self.params.items()})
        )

    @property
    def token(self) -> str | None:
        return self.params.get("token")

    @property
    def secret(self) -> str | None:
        return self.params.get("secret")

    @property
    def can_sign(self) -> bool:
        """True when new signatures can be minted (token mode with a secret)."""
        return self.mode == SessionMode.TOKEN and bool(self.token and self.secret)

    def device_params(self) -> dict[str, str]:
        """Device-identifying fields carried by this session."""
        return {k: self.params[k] for k in DEVICE_PARAM_KEYS if self.params.get(k)}

    def device(self) -> DeviceRef | None:
        """The single device embedded in the session, if any."""
        return DeviceRef.from_params(self.params)

    def with_device_params(self, device_params: Mapping[str, str | None]) -> "AuthSession":
        """Return a copy with non-empty device fields merged in."""
        merged = dict(self.params)
        for key in DEVICE_PARAM_KEYS:
            value = device_params.get(key)
            if value:
                merged[key] = str(value)
        return replace(self, params=merged, updated_at=datetime.now(timezone.utc))
