"""Tests for the ingestion service and fetch strategies."""

from datetime import date, datetime

import pytest

from dessharvest.api.models.responses import ChartDataPoint, KeyParamDataPoint
from dessharvest.auth.session import DeviceRef
from dessharvest.db.engine import get_session
from dessharvest.db.repositories import (
    ChartPointRepository,
    KeyParamRepository,
    LatestSnapshotRepository,
)
from dessharvest.sync.ingestion import (
    FetchState,
    IngestionService,
    day_bounds,
    retention_cutoff,
)
from dessharvest.sync.strategies.base import parse_timestamp, parse_value
from dessharvest.utils.exceptions import AuthError, TransientRemoteError


def _stored_chart(engine, field: str, pn: str = "P1") -> list[tuple[datetime, float]]:
    with get_session(engine) as session:
        return [(p.ts, p.val) for p in ChartPointRepository(session).get_range(pn, field)]


@pytest.fixture
def ingestion(mock_api_client, session_store, test_engine, test_settings, no_sleep):
    """Ingestion service without fallback credentials."""
    return IngestionService(mock_api_client, session_store, test_engine, test_settings, sleep=no_sleep)


@pytest.fixture
def fallback_ingestion(mock_api_client, fallback_store, test_engine, fallback_settings, no_sleep):
    """Ingestion service with fallback credentials."""
    return IngestionService(mock_api_client, fallback_store, test_engine, fallback_settings, sleep=no_sleep)


class TestParsing:
    """Test sample value and timestamp parsing."""

    def test_parse_value(self):
        assert parse_value("48.5") == 48.5
        assert parse_value(" 12 ") == 12.0
        assert parse_value(7) == 7.0
        assert parse_value("") == 0.0
        assert parse_value("abc") == 0.0
        assert parse_value(None) == 0.0
        assert parse_value("nan") == 0.0

    def test_parse_timestamp(self):
        assert parse_timestamp("2025-02-01 12:00:00") == datetime(2025, 2, 1, 12, 0, 0)
        assert parse_timestamp("not a date") is None
        assert parse_timestamp(None) is None

    def test_day_bounds(self):
        assert day_bounds(date(2025, 2, 1)) == (
            datetime(2025, 2, 1, 0, 0, 0),
            datetime(2025, 2, 1, 23, 59, 59),
        )

    def test_retention_cutoff(self):
        assert retention_cutoff(datetime(2025, 2, 3, 14, 30), 2) == datetime(2025, 2, 1)


class TestFetchStateMachine:
    """Test the attempt/re-authenticate/retry state machine."""

    @pytest.mark.asyncio
    async def test_success_single_call(self, ingestion, session_store, token_session, mock_api_client, device, test_engine):
        session_store.put(token_session)

        outcome = await ingestion.fetch_latest_snapshot(device)

        assert outcome.success
        assert outcome.state == FetchState.DONE
        assert outcome.attempts == 1
        assert mock_api_client.query_latest.await_count == 1
        with get_session(test_engine) as session:
            snapshot = LatestSnapshotRepository(session).get_by_pn("P1")
            assert snapshot.gts == "2024-05-01 10:00:00"
            assert snapshot.generated_at == datetime(2024, 5, 1, 10, 0, 0)
            assert snapshot.pars["bt_"][0]["val"] == "52.1"

    @pytest.mark.asyncio
    async def test_retry_after_reauthentication_makes_two_calls(
        self, fallback_ingestion, fallback_store, token_session, mock_api_client, device
    ):
        fallback_store.put(token_session)
        latest = mock_api_client.query_latest.return_value
        mock_api_client.query_latest.side_effect = [AuthError("Session expired (err=264)", code=264), latest]

        outcome = await fallback_ingestion.fetch_latest_snapshot(device)

        assert outcome.state == FetchState.DONE
        assert outcome.attempts == 2
        assert mock_api_client.query_latest.await_count == 2
        mock_api_client.login.assert_awaited_once()
        retry_session = mock_api_client.query_latest.await_args_list[1].args[0]
        assert retry_session.token == "tok-2"

    @pytest.mark.asyncio
    async def test_retry_failure_is_terminal(
        self, fallback_ingestion, fallback_store, token_session, mock_api_client, device
    ):
        fallback_store.put(token_session)
        mock_api_client.query_latest.side_effect = TransientRemoteError("Request timed out")

        outcome = await fallback_ingestion.fetch_latest_snapshot(device)

        assert outcome.state == FetchState.FAILED
        assert mock_api_client.query_latest.await_count == 2
        mock_api_client.login.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_fallback_short_circuit(self, ingestion, session_store, token_session, mock_api_client, device):
        session_store.put(token_session)
        mock_api_client.query_latest.side_effect = AuthError("Invalid sign (err=263)", code=263)

        outcome = await ingestion.fetch_latest_snapshot(device)

        assert outcome.state == FetchState.FAILED
        assert outcome.attempts == 1
        assert "err=263" in outcome.error
        assert mock_api_client.query_latest.await_count == 1
        mock_api_client.login.assert_not_awaited()
        stored = session_store.get()
        assert stored.token == "tok-1"
        assert stored.secret == "sec-1"

    @pytest.mark.asyncio
    async def test_reauthentication_failure(
        self, fallback_ingestion, fallback_store, token_session, mock_api_client, device
    ):
        fallback_store.put(token_session)
        mock_api_client.query_latest.side_effect = AuthError("Session expired (err=264)", code=264)
        mock_api_client.login.side_effect = AuthError("Invalid credentials (err=262)", code=262)

        outcome = await fallback_ingestion.fetch_latest_snapshot(device)

        assert outcome.state == FetchState.FAILED
        assert mock_api_client.query_latest.await_count == 1
        assert fallback_store.get().token == "tok-1"

    @pytest.mark.asyncio
    async def test_missing_session_without_fallback(self, ingestion, mock_api_client, device):
        outcome = await ingestion.fetch_latest_snapshot(device)

        assert outcome.state == FetchState.FAILED
        assert "No session" in outcome.error
        mock_api_client.query_latest.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_session_seeded_from_fallback(self, fallback_ingestion, mock_api_client, device):
        outcome = await fallback_ingestion.fetch_latest_snapshot(device)

        assert outcome.state == FetchState.DONE
        assert mock_api_client.query_latest.await_count == 1
        mock_api_client.login.assert_awaited_once()


class TestChartFetch:
    """Test chart field fetching."""

    @pytest.mark.asyncio
    async def test_battery_voltage_single_day(self, ingestion, session_store, token_session, mock_api_client, device, test_engine):
        session_store.put(token_session)
        mock_api_client.query_chart_field.return_value = [
            ChartDataPoint(key="2025-02-01 12:00:00", val="48.5"),
            ChartDataPoint(key="2025-02-01 13:00:00", val="49.0"),
        ]

        outcome = await ingestion.fetch_chart_field(device, "bt_battery_voltage", date(2025, 2, 1), date(2025, 2, 1))

        assert outcome.success
        assert outcome.records == 2
        args = mock_api_client.query_chart_field.await_args.args
        assert args[2:] == ("bt_battery_voltage", datetime(2025, 2, 1, 0, 0, 0), datetime(2025, 2, 1, 23, 59, 59))
        assert _stored_chart(test_engine, "bt_battery_voltage") == [
            (datetime(2025, 2, 1, 12, 0, 0), 48.5),
            (datetime(2025, 2, 1, 13, 0, 0), 49.0),
        ]

    @pytest.mark.asyncio
    async def test_multi_day_split(self, ingestion, session_store, token_session, mock_api_client, device, no_sleep):
        session_store.put(token_session)
        points = [ChartDataPoint(key="2025-02-02 12:00:00", val="48.5")]
        mock_api_client.query_chart_field.side_effect = [
            TransientRemoteError("Request timed out"),
            points,
            [ChartDataPoint(key="2025-02-03 12:00:00", val="49.5")],
        ]

        outcome = await ingestion.fetch_chart_field(device, "bt_battery_voltage", date(2025, 2, 1), date(2025, 2, 3))

        assert outcome.success
        assert outcome.records == 2
        calls = mock_api_client.query_chart_field.await_args_list
        assert len(calls) == 3
        assert [c.args[3] for c in calls] == [datetime(2025, 2, d) for d in (1, 2, 3)]
        assert [c.args[4] for c in calls] == [datetime(2025, 2, d, 23, 59, 59) for d in (1, 2, 3)]
        assert no_sleep.await_count == 3
        no_sleep.assert_awaited_with(0.5)

    @pytest.mark.asyncio
    async def test_multi_day_split_all_failed(self, ingestion, session_store, token_session, mock_api_client, device):
        session_store.put(token_session)
        mock_api_client.query_chart_field.side_effect = TransientRemoteError("Request timed out")

        outcome = await ingestion.fetch_chart_field(device, "pv_output_power", date(2025, 2, 1), date(2025, 2, 3))

        assert outcome.state == FetchState.FAILED
        assert mock_api_client.query_chart_field.await_count == 3

    @pytest.mark.asyncio
    async def test_multi_day_range_field_single_call(self, ingestion, session_store, token_session, mock_api_client, device, no_sleep):
        session_store.put(token_session)

        outcome = await ingestion.fetch_chart_field(device, "output_power", date(2025, 2, 1), date(2025, 2, 3))

        assert outcome.success
        args = mock_api_client.query_chart_field.await_args.args
        assert args[3:] == (datetime(2025, 2, 1, 0, 0, 0), datetime(2025, 2, 3, 23, 59, 59))
        assert mock_api_client.query_chart_field.await_count == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_samples(self, ingestion, session_store, token_session, mock_api_client, device, test_engine):
        session_store.put(token_session)
        mock_api_client.query_chart_field.return_value = [
            ChartDataPoint(key="2025-02-01 12:00:00", val="--"),
            ChartDataPoint(key="garbage", val="48.0"),
        ]

        outcome = await ingestion.fetch_chart_field(device, "output_power", date(2025, 2, 1), date(2025, 2, 1))

        assert outcome.success
        assert _stored_chart(test_engine, "output_power") == [(datetime(2025, 2, 1, 12, 0, 0), 0.0)]

    @pytest.mark.asyncio
    async def test_invalid_range(self, ingestion, device):
        with pytest.raises(ValueError):
            await ingestion.fetch_chart_field(device, "output_power", date(2025, 2, 2), date(2025, 2, 1))


class TestCycles:
    """Test chart and key parameter cycles."""

    @pytest.mark.asyncio
    async def test_chart_cycle_prunes_chart_points_only(
        self, ingestion, session_store, token_session, mock_api_client, device, test_engine
    ):
        session_store.put(token_session)
        with get_session(test_engine) as session:
            ChartPointRepository(session).upsert_batch([
                {"pn": "P1", "sn": "S1", "field": "output_power", "ts": datetime(2025, 1, 28, 12, 0), "val": 1.0},
                {"pn": "P1", "sn": "S1", "field": "output_power", "ts": datetime(2025, 2, 1, 0, 0), "val": 2.0},
            ])
            KeyParamRepository(session).upsert_batch([
                {"pn": "P1", "parameter": "BATTERY_SOC", "ts": datetime(2024, 1, 1), "val": 50.0},
            ])
        mock_api_client.query_chart_field.return_value = [
            ChartDataPoint(key="2025-02-03 12:00:00", val="500"),
        ]

        stats = await ingestion.run_chart_cycle(
            device, date(2025, 2, 2), date(2025, 2, 3), now=datetime(2025, 2, 3, 14, 0)
        )

        assert stats.success
        assert stats.operations_ok == 3
        assert _stored_chart(test_engine, "output_power") == [
            (datetime(2025, 2, 1, 0, 0), 2.0),
            (datetime(2025, 2, 3, 12, 0), 500.0),
        ]
        with get_session(test_engine) as session:
            assert len(KeyParamRepository(session).get_range("P1", "BATTERY_SOC")) == 1

    @pytest.mark.asyncio
    async def test_chart_cycle_field_failure_isolated(
        self, ingestion, session_store, token_session, mock_api_client, device, no_sleep
    ):
        session_store.put(token_session)
        points = [ChartDataPoint(key="2025-02-03 12:00:00", val="1")]
        # output_power (1 call), pv_output_power (2 days), bt_battery_voltage (2 days)
        mock_api_client.query_chart_field.side_effect = [
            TransientRemoteError("Request timed out"),
            points,
            points,
            points,
            points,
        ]

        stats = await ingestion.run_chart_cycle(device, date(2025, 2, 2), date(2025, 2, 3))

        assert stats.operations_ok == 2
        assert stats.operations_failed == 1
        assert mock_api_client.query_chart_field.await_count == 5
        # one pause after the range field, one after every split day
        assert no_sleep.await_count == 5

    @pytest.mark.asyncio
    async def test_key_param_cycle(self, ingestion, session_store, token_session, mock_api_client, device, test_engine, no_sleep):
        session_store.put(token_session)
        mock_api_client.query_key_parameter.return_value = [
            KeyParamDataPoint(ts="2025-02-01 00:00:00", val="80"),
            KeyParamDataPoint(ts="2025-02-01 00:05:00", val="81"),
        ]

        stats = await ingestion.run_key_param_cycle(device, date(2025, 2, 1))

        assert stats.operations_ok == 6
        assert stats.records_written == 12
        assert no_sleep.await_count == 6
        parameters = [c.args[2] for c in mock_api_client.query_key_parameter.await_args_list]
        assert parameters[-1] == "BATTERY_SOC"
        with get_session(test_engine) as session:
            assert [p.val for p in KeyParamRepository(session).get_range("P1", "BATTERY_SOC")] == [80.0, 81.0]


class TestDevicesSharingProductNumber:
    """Test that devices with the same pn and different sn are stored apart."""

    @pytest.mark.asyncio
    async def test_latest_snapshot_per_serial(self, ingestion, session_store, token_session, test_engine):
        session_store.put(token_session)
        first = DeviceRef(pn="P1", sn="S1")
        second = DeviceRef(pn="P1", sn="S2")

        assert (await ingestion.fetch_latest_snapshot(first)).success
        assert (await ingestion.fetch_latest_snapshot(second)).success

        with get_session(test_engine) as session:
            repo = LatestSnapshotRepository(session)
            assert sorted((s.pn, s.sn) for s in repo.get_all()) == [("P1", "S1"), ("P1", "S2")]
            assert repo.get_by_pn("P1", "S2").sn == "S2"

    @pytest.mark.asyncio
    async def test_chart_points_per_serial(self, ingestion, session_store, token_session, mock_api_client, test_engine):
        session_store.put(token_session)
        mock_api_client.query_chart_field.side_effect = [
            [ChartDataPoint(key="2025-02-01 12:00:00", val="48.5")],
            [ChartDataPoint(key="2025-02-01 12:00:00", val="51.0")],
        ]

        for sn in ("S1", "S2"):
            outcome = await ingestion.fetch_chart_field(
                DeviceRef(pn="P1", sn=sn), "bt_battery_voltage", date(2025, 2, 1), date(2025, 2, 1)
            )
            assert outcome.success

        with get_session(test_engine) as session:
            repo = ChartPointRepository(session)
            assert [p.val for p in repo.get_range("P1", "bt_battery_voltage", sn="S1")] == [48.5]
            assert [p.val for p in repo.get_range("P1", "bt_battery_voltage", sn="S2")] == [51.0]
            assert repo.count("P1", "bt_battery_voltage") == 2

    @pytest.mark.asyncio
    async def test_prune_keeps_other_serial(self, ingestion, test_engine):
        with get_session(test_engine) as session:
            ChartPointRepository(session).upsert_batch([
                {"pn": "P1", "sn": "S1", "field": "output_power", "ts": datetime(2025, 1, 1), "val": 1.0},
                {"pn": "P1", "sn": "S2", "field": "output_power", "ts": datetime(2025, 1, 1), "val": 2.0},
            ])

        deleted = ingestion.prune_chart_field(
            DeviceRef(pn="P1", sn="S1"), "output_power", now=datetime(2025, 2, 3)
        )

        assert deleted == 1
        with get_session(test_engine) as session:
            remaining = ChartPointRepository(session).get_range("P1", "output_power")
            assert [(p.sn, p.val) for p in remaining] == [("S2", 2.0)]
