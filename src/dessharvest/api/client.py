"""DESS Monitor API client."""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, TypeVar
from urllib.parse import parse_qs, urlsplit

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from dessharvest.api.models.responses import (
    ChartDataPoint,
    DeviceListData,
    Envelope,
    KeyParamData,
    KeyParamDataPoint,
    LatestData,
    LoginData,
    ParameterReading,
    RawLatestData,
)
from dessharvest.api.signing import SignedRequestBuilder
from dessharvest.auth.session import AuthSession, DeviceRef
from dessharvest.config.settings import Settings
from dessharvest.utils.exceptions import (
    TransientRemoteError,
    classify_error_code,
)

logger = structlog.get_logger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)
ItemT = TypeVar("ItemT", bound=BaseModel)

# API action names
ACTION_DEVICE_LIST = "webQueryDeviceEs"
ACTION_LATEST = "querySPDeviceLastData"
ACTION_CHART_FIELD = "queryDeviceChartFieldDetailData"
ACTION_KEY_PARAMETER = "querySPDeviceKeyParameterOneDay"

# Device type filter the web portal uses for energy storage inverters
DEVICE_TYPE_STORAGE = "2304"


@dataclass(frozen=True)
class LoginResult:
    """Token and secret issued by ``authSource``."""

    token: str
    secret: str
    base_url: str


def _action_of(url: str) -> str | None:
    values = parse_qs(urlsplit(url).query).get("action")
    return values[0] if values else None


class DessClient:
    """Async client for the DESS Monitor public API."""

    def __init__(
        self,
        settings: Settings,
        builder: SignedRequestBuilder | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Application settings.
            builder: Request signer; one bound to the configured base URL by default.
            transport: Optional httpx transport (used by tests).
        """
        self._settings = settings
        self._base_url = settings.api_base_url
        self._timeout = settings.api_timeout
        self._chart_timeout = settings.api_chart_timeout
        self._language = settings.language
        self._precision = str(settings.chart_precision)
        self.builder = builder or SignedRequestBuilder(base_url=settings.api_base_url)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "DessClient":
        """Context manager entry."""
        self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def format_date(d: date | datetime) -> str:
        """Format a date the way the API expects it.

        Args:
            d: Date or datetime.

        Returns:
            ``YYYY-MM-DD HH:MM:SS`` for datetimes, ``YYYY-MM-DD`` for dates.
        """
        if isinstance(d, datetime):
            return d.strftime("%Y-%m-%d %H:%M:%S")
        return d.strftime("%Y-%m-%d")

    async def call(self, url: str, timeout: float | None = None) -> Envelope:
        """Perform a GET and decode the response envelope.

        Args:
            url: Fully built (signed) URL.
            timeout: Per-call timeout in seconds; client default when omitted.

        Returns:
            Successful envelope (``err == 0``).

        Raises:
            AuthError: If the API rejected the token or signature.
            TransientRemoteError: On transport failure, timeout, malformed
                body, or any other non-zero error code.
        """
        if not self._client:
            raise TransientRemoteError(
                "Client not initialized. Use 'async with' context manager."
            )

        action = _action_of(url)
        logger.debug("API request", action=action)

        try:
            response = await self._client.get(
                url, timeout=timeout if timeout is not None else self._timeout
            )
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            logger.warning("Request timed out", action=action, timeout=timeout)
            raise TransientRemoteError(f"Request timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            logger.error(
                "API HTTP error",
                action=action,
                status_code=e.response.status_code,
                response=e.response.text[:200],
            )
            raise TransientRemoteError(
                f"API request failed with HTTP {e.response.status_code}",
                code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logger.error("Request error", action=action, error=str(e))
            raise TransientRemoteError(f"Request failed: {e}") from e
        except ValueError as e:
            raise TransientRemoteError(f"Malformed response body: {e}") from e

        try:
            envelope = Envelope.model_validate(body)
        except ValidationError as e:
            raise TransientRemoteError(f"Malformed response envelope: {e}") from e

        if not envelope.ok:
            error = classify_error_code(envelope.err, envelope.desc)
            logger.debug("API error response", action=action, err=envelope.err, desc=envelope.desc)
            raise error

        return envelope

    @staticmethod
    def _payload(envelope: Envelope, model: type[PayloadT]) -> PayloadT:
        """Parse the ``dat`` member into a typed payload."""
        if envelope.dat is None:
            raise TransientRemoteError(
                f"Response missing payload (desc={envelope.desc or '(none)'})"
            )
        try:
            return model.model_validate(envelope.dat)
        except ValidationError as e:
            raise TransientRemoteError(f"Malformed {model.__name__} payload: {e}") from e

    @staticmethod
    def _valid_items(items: list[Any], model: type[ItemT], action: str) -> list[ItemT]:
        """Validate samples one by one, dropping those that do not fit the model."""
        valid = []
        for item in items:
            try:
                valid.append(model.model_validate(item))
            except ValidationError as e:
                logger.warning(
                    "Dropping malformed sample",
                    action=action,
                    item=repr(item)[:200],
                    errors=e.error_count(),
                )
        return valid

    def _device_params(self, device: DeviceRef, **params: str) -> dict[str, str]:
        return {**device.as_params(), **params, "i18n": self._language}

    # Authentication

    async def login(
        self,
        usr: str,
        password: str,
        company_key: str,
        base_url: str | None = None,
    ) -> LoginResult:
        """Log in with account credentials.

        Args:
            usr: Account name (email).
            password: Account password.
            company_key: Company key.
            base_url: API base URL; configured default when omitted.

        Returns:
            Token and secret for signing subsequent requests.
        """
        resolved_base = base_url or self._base_url
        url = self.builder.build_login_url(usr, password, company_key, base_url=resolved_base)
        envelope = await self.call(url)
        data = self._payload(envelope, LoginData)
        logger.info("Login successful")
        return LoginResult(token=data.token, secret=data.secret, base_url=resolved_base)

    # Device directory

    async def query_devices(self, session: AuthSession) -> list[DeviceRef]:
        """Get the devices registered on the account.

        Args:
            session: Token-mode session.

        Returns:
            Devices that have both pn and sn.
        """
        url = self.builder.build_url(
            ACTION_DEVICE_LIST,
            session,
            {"devtype": DEVICE_TYPE_STORAGE, "page": "0", "pagesize": "15"},
        )
        envelope = await self.call(url)
        data = self._payload(envelope, DeviceListData)

        devices = []
        for item in data.device:
            if not item.pn or not item.sn:
                continue
            devices.append(
                DeviceRef(
                    pn=str(item.pn),
                    sn=str(item.sn),
                    devcode=str(item.devcode) if item.devcode is not None else None,
                    devaddr=str(item.devaddr) if item.devaddr is not None else None,
                    alias=item.devalias,
                )
            )
        return devices

    # Data endpoints

    async def query_latest(self, session: AuthSession, device: DeviceRef) -> LatestData:
        """Get the latest parameter dump of a device."""
        url = self.builder.build_url(ACTION_LATEST, session, self._device_params(device))
        envelope = await self.call(url)
        raw = self._payload(envelope, RawLatestData)
        return LatestData(
            gts=raw.gts,
            pars={
                category: self._valid_items(readings, ParameterReading, ACTION_LATEST)
                for category, readings in (raw.pars or {}).items()
            },
        )

    async def query_chart_field(
        self,
        session: AuthSession,
        device: DeviceRef,
        field: str,
        sdate: datetime,
        edate: datetime,
    ) -> list[ChartDataPoint]:
        """Get 5-minute samples of one chart field.

        Args:
            session: Active session.
            device: Target device.
            field: Chart field name (e.g. ``bt_battery_voltage``).
            sdate: Range start.
            edate: Range end.

        Returns:
            Samples as returned by the API.
        """
        url = self.builder.build_url(
            ACTION_CHART_FIELD,
            session,
            self._device_params(
                device,
                field=field,
                precision=self._precision,
                sdate=self.format_date(sdate),
                edate=self.format_date(edate),
                chartStatus="false",
            ),
        )
        envelope = await self.call(url, timeout=self._chart_timeout)
        if not isinstance(envelope.dat, list):
            raise TransientRemoteError(
                f"Chart response is not a list (desc={envelope.desc or '(none)'})"
            )
        return self._valid_items(envelope.dat, ChartDataPoint, ACTION_CHART_FIELD)

    async def query_key_parameter(
        self,
        session: AuthSession,
        device: DeviceRef,
        parameter: str,
        day: date,
    ) -> list[KeyParamDataPoint]:
        """Get one day of a key parameter (e.g. ``BATTERY_SOC``)."""
        url = self.builder.build_url(
            ACTION_KEY_PARAMETER,
            session,
            self._device_params(
                device,
                parameter=parameter,
                date=self.format_date(day),
                chartStatus="false",
            ),
        )
        envelope = await self.call(url)
        detail = self._payload(envelope, KeyParamData).detail
        return self._valid_items(detail, KeyParamDataPoint, ACTION_KEY_PARAMETER)
