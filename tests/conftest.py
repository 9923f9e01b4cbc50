"""Shared test fixtures."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.orm import Session

from dessharvest.api.client import LoginResult
from dessharvest.api.models.responses import (
    ChartDataPoint,
    KeyParamDataPoint,
    LatestData,
    ParameterReading,
)
from dessharvest.auth.session import AuthSession, DeviceRef, SessionMode
from dessharvest.auth.session_store import SessionStore
from dessharvest.config.settings import Settings
from dessharvest.db.engine import create_engine, create_tables, drop_tables, get_session


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with in-memory SQLite and no fallback credentials."""
    return Settings(
        _env_file=None,
        username=None,
        password=None,
        company_key=None,
        database_url="sqlite:///:memory:",
        log_level="DEBUG",
        device_pn=None,
        request_delay=0.5,
    )


@pytest.fixture
def fallback_settings() -> Settings:
    """Create test settings with fallback credentials configured."""
    return Settings(
        _env_file=None,
        username="user@example.com",
        password="hunter2",
        company_key="company-key",
        database_url="sqlite:///:memory:",
        log_level="DEBUG",
        device_pn=None,
        request_delay=0.5,
    )


@pytest.fixture
def test_engine(test_settings):
    """Create test database engine with tables."""
    engine = create_engine(test_settings)
    create_tables(engine)
    yield engine
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def test_session(test_engine) -> Session:
    """Create test database session."""
    with get_session(test_engine) as session:
        yield session


@pytest.fixture
def device() -> DeviceRef:
    """A tracked inverter."""
    return DeviceRef(pn="P1", sn="S1", devcode="2451", devaddr="1")


@pytest.fixture
def token_session(device) -> AuthSession:
    """A token-mode session with an embedded device."""
    return AuthSession(
        mode=SessionMode.TOKEN,
        params={"token": "tok-1", "secret": "sec-1", "source": "1", **device.as_params()},
        base_url="https://web.dessmonitor.com/public/",
        updated_at=datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def mock_api_client():
    """Create mock API client returning canned payloads."""
    client = AsyncMock()

    client.login.return_value = LoginResult(
        token="tok-2",
        secret="sec-2",
        base_url="https://web.dessmonitor.com/public/",
    )
    client.query_devices.return_value = [
        DeviceRef(pn="P1", sn="S1", devcode="2451", devaddr="1", alias="Garage"),
        DeviceRef(pn="P2", sn="S2", devcode="2451", devaddr="1"),
    ]
    client.query_latest.return_value = LatestData(
        gts="2024-05-01 10:00:00",
        pars={
            "bt_": [ParameterReading(id="bt_battery_voltage", par="Battery Voltage", val="52.1", unit="V")],
        },
    )
    client.query_chart_field.return_value = [
        ChartDataPoint(key="2024-05-01 10:00:00", val="48.1"),
        ChartDataPoint(key="2024-05-01 10:05:00", val="48.3"),
    ]
    client.query_key_parameter.return_value = [
        KeyParamDataPoint(ts="2024-05-01 00:00:00", val="80"),
    ]

    return client


@pytest.fixture
def session_store(test_engine, test_settings, mock_api_client) -> SessionStore:
    """Session store without fallback credentials."""
    return SessionStore(test_engine, test_settings, mock_api_client)


@pytest.fixture
def fallback_store(test_engine, fallback_settings, mock_api_client) -> SessionStore:
    """Session store with fallback credentials."""
    return SessionStore(test_engine, fallback_settings, mock_api_client)


@pytest.fixture
def no_sleep():
    """Pacing sleep that returns immediately and records its calls."""
    return AsyncMock(return_value=None)

