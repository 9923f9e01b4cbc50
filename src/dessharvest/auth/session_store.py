"""Persistent store for the active session and the tracked device list."""

import asyncio
from urllib.parse import parse_qsl, urlsplit

import structlog
from sqlalchemy import Engine

from dessharvest.api.client import DessClient
from dessharvest.auth.session import DEVICE_PARAM_KEYS, AuthSession, DeviceRef, SessionMode
from dessharvest.config.settings import DEFAULT_BASE_URL, Settings
from dessharvest.db.engine import get_session
from dessharvest.db.repositories.device import DeviceRepository
from dessharvest.db.repositories.session import SessionRepository
from dessharvest.utils.exceptions import ConfigurationError, RemoteError

logger = structlog.get_logger(__name__)

# Query parameters worth keeping from a captured browser URL
CAPTURED_PARAMS = frozenset(
    {"sign", "salt", "token", "pn", "sn", "source", "devcode", "devaddr", "i18n"}
)


class SessionStore:
    """Holds the single active AuthSession and the device directory.

    Every write replaces the stored session in one transaction, so readers
    always get a complete old or new session.
    """

    def __init__(self, engine: Engine, settings: Settings, client: DessClient) -> None:
        """Initialize the store.

        Args:
            engine: SQLAlchemy engine.
            settings: Application settings (fallback credentials, fixed device).
            client: API client used for logins and device listing.
        """
        self.engine = engine
        self.settings = settings
        self.client = client
        self._login_lock = asyncio.Lock()

    # Session

    def get(self) -> AuthSession | None:
        """Get the active session, or None if no credentials are stored."""
        with get_session(self.engine) as db:
            row = SessionRepository(db).get()
            if row is None:
                return None
            return AuthSession(
                mode=SessionMode(row.mode),
                params=row.params or {},
                base_url=row.base_url,
                updated_at=row.updated_at,
                captured_url=row.captured_url,
            )

    def put(self, session: AuthSession) -> AuthSession:
        """Replace the stored session with the given one."""
        with get_session(self.engine) as db:
            SessionRepository(db).replace(
                mode=session.mode.value,
                params=dict(session.params),
                base_url=session.base_url,
                updated_at=session.updated_at,
                captured_url=session.captured_url,
            )
        logger.info("Session stored", mode=session.mode.value)
        return session

    def clear(self) -> None:
        """Delete the session and forget all tracked devices."""
        with get_session(self.engine) as db:
            SessionRepository(db).delete()
            DeviceRepository(db).delete_all()
        logger.info("Session and devices cleared")

    # Devices

    def list_devices(self) -> list[DeviceRef]:
        """Get the stored device directory."""
        with get_session(self.engine) as db:
            return [
                DeviceRef(
                    pn=d.pn,
                    sn=d.sn,
                    devcode=d.devcode,
                    devaddr=d.devaddr,
                    alias=d.alias,
                )
                for d in DeviceRepository(db).get_all()
            ]

    def save_devices(self, devices: list[DeviceRef]) -> int:
        """Replace the whole device directory in one transaction.

        Returns:
            Number of devices stored.
        """
        rows = [
            {
                "pn": d.pn,
                "sn": d.sn or "",
                "devcode": d.devcode,
                "devaddr": d.devaddr,
                "alias": d.alias,
            }
            for d in devices
        ]
        with get_session(self.engine) as db:
            count = DeviceRepository(db).replace_all(rows)
        logger.info("Device list saved", devices=count)
        return count

    def tracked_devices(self) -> list[DeviceRef]:
        """Devices to fetch for, derived fresh on every call.

        The stored directory wins; otherwise the single device embedded in
        the session; otherwise nothing.
        """
        devices = self.list_devices()
        if devices:
            return devices
        session = self.get()
        if session is None:
            return []
        device = session.device()
        return [device] if device else []

    async def refresh_devices(self) -> list[DeviceRef]:
        """Fetch the device directory from the API and store it.

        Raises:
            ConfigurationError: If there is no token-mode session.
        """
        session = self.get()
        if session is None or not session.can_sign:
            raise ConfigurationError("Device listing needs a login session (token + secret)")
        devices = await self.client.query_devices(session)
        self.save_devices(devices)
        return devices

    # Fallback credentials

    def has_fallback_credentials(self) -> bool:
        """Check whether fallback login credentials are configured."""
        return self.settings.has_fallback_credentials()

    async def reauthenticate_from_fallback(self) -> bool:
        """Log in again with the configured fallback credentials.

        Device fields of the previous session are carried over. The stored
        session is only replaced when the login succeeds.

        Returns:
            True if a new session was stored.
        """
        if not self.has_fallback_credentials():
            return False

        async with self._login_lock:
            previous = self.get()
            try:
                result = await self.client.login(
                    self.settings.username,  # type: ignore[arg-type]
                    self.settings.password.get_secret_value(),  # type: ignore[union-attr]
                    self.settings.company_key.get_secret_value(),  # type: ignore[union-attr]
                    base_url=previous.base_url if previous else self.settings.api_base_url,
                )
            except RemoteError as e:
                logger.warning("Re-authentication failed", error=str(e))
                return False

            device_params = self.settings.get_fixed_device_params() or {}
            if previous is not None:
                device_params = {**device_params, **previous.device_params()}

            self.put(
                AuthSession(
                    mode=SessionMode.TOKEN,
                    params={
                        "token": result.token,
                        "secret": result.secret,
                        "source": "1",
                        **device_params,
                    },
                    base_url=result.base_url,
                )
            )
            logger.info("Re-authenticated from fallback credentials")
            return True

    async def ensure_from_fallback(self) -> bool:
        """Seed a missing session (and device list) from fallback credentials.

        Returns:
            True if a session exists afterwards.
        """
        if self.get() is not None:
            return True
        if not self.has_fallback_credentials():
            logger.warning("No session stored and no fallback credentials configured")
            return False
        if not await self.reauthenticate_from_fallback():
            return False
        if self.settings.get_fixed_device_params() is None:
            try:
                await self.refresh_devices()
            except RemoteError as e:
                logger.warning("Device listing failed after login", error=str(e))
        return True

    # Credential intake

    async def login(
        self,
        username: str,
        password: str,
        company_key: str,
        base_url: str | None = None,
        device: DeviceRef | None = None,
    ) -> AuthSession:
        """Log in with explicit credentials and store the resulting session.

        The device directory is fetched and stored unless a device is given or
        configured. The session's device fields come from the explicit device,
        the configured fixed device, or the first listed device.

        Raises:
            RemoteError: If the login itself fails.
        """
        async with self._login_lock:
            result = await self.client.login(
                username, password, company_key, base_url=base_url or self.settings.api_base_url
            )

        params: dict[str, str] = {"token": result.token, "secret": result.secret, "source": "1"}
        device_params = device.as_params() if device else self.settings.get_fixed_device_params()

        session = AuthSession(mode=SessionMode.TOKEN, params=params, base_url=result.base_url)
        if not device_params:
            try:
                devices = await self.client.query_devices(session)
                self.save_devices(devices)
                if devices:
                    device_params = devices[0].as_params()
            except RemoteError as e:
                logger.warning("Device listing failed after login", error=str(e))

        if device_params:
            session = session.with_device_params(device_params)
        return self.put(session)

    def store_from_url(
        self,
        url: str,
        query_params: dict[str, str] | None = None,
    ) -> AuthSession:
        """Store a legacy session captured from an already signed URL.

        Args:
            url: URL copied from the browser's network tab.
            query_params: Extra parameters overriding those in the URL.

        Returns:
            The stored session.
        """
        params: dict[str, str] = {}
        base_url = DEFAULT_BASE_URL

        if url and url.startswith("http"):
            parts = urlsplit(url)
            if parts.scheme and parts.netloc:
                base_url = f"{parts.scheme}://{parts.netloc}{parts.path}"
                for key, value in parse_qsl(parts.query, keep_blank_values=False):
                    if key in CAPTURED_PARAMS:
                        params[key] = value

        for key, value in (query_params or {}).items():
            if value not in (None, "") and key in CAPTURED_PARAMS:
                params[key] = str(value)

        if not params.get("sign") or not params.get("token"):
            raise ConfigurationError("Captured URL must contain sign and token parameters")

        session = AuthSession(
            mode=SessionMode.LEGACY,
            params=params,
            base_url=base_url,
            captured_url=url or None,
        )
        return self.put(session)

    def update_device_params(self, **device_params: str | None) -> AuthSession | None:
        """Merge device identifiers into the stored session.

        Returns:
            The updated session, or None when no session exists.
        """
        session = self.get()
        if session is None:
            return None
        unknown = set(device_params) - set(DEVICE_PARAM_KEYS)
        if unknown:
            raise ConfigurationError(f"Unknown device parameters: {', '.join(sorted(unknown))}")
        return self.put(session.with_device_params(device_params))
