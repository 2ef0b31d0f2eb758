"""
NodePilot - Backend Services Tests
==================================

Tests for the services the scheduler is built on:
- schedule evaluation (daily and date-range firing rules)
- the action executor's status classification and retry budget
- the status cache's health tracking and last-known-good behavior
- the machine store and node status persistence
"""

import asyncio
import json
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from nodepilot.database import DatabaseManager
from nodepilot.models.schedule import Schedule
from nodepilot.services.action_executor import ActionExecutor, OutcomeKind
from nodepilot.services.machine_control import (
    ActionNotConfiguredError, Direction, trigger, trigger_machine
)
from nodepilot.services.machine_store import (
    MachineNotFoundError, MachineStore, load_scheduled_machines
)
from nodepilot.services.schedule_evaluator import (
    is_within_range, normalize_time, should_fire
)
from nodepilot.services.status_cache import (
    NodeStatusRepository, StatusCache, StatusSourceClientError, StatusSourceError
)


# =============================================================================
# TEST FIXTURES AND UTILITIES
# =============================================================================

@pytest.fixture
def database():
    """Fresh in-memory database per test."""
    manager = DatabaseManager()
    manager.initialize("sqlite:///:memory:")
    yield manager
    manager.close()


@pytest.fixture
def executor():
    return ActionExecutor(max_retries=5, retry_delay_seconds=0.5, timeout_seconds=1)


@pytest.fixture
def status_cache():
    return StatusCache("http://status.test/api/nodes", timeout_seconds=1, degraded_threshold=5)


@pytest.fixture
def sample_payload():
    return {
        "node-1": {
            "name": "render-01",
            "os": "Windows Server 2022",
            "ip": "10.0.0.11",
            "lastbootuptime": "2024-05-01T06:00:00Z",
            "status": "online",
            "conn": 3,
            "pwr": 1
        },
        "node-2": {
            "name": "render-02",
            "os": "Ubuntu 22.04",
            "ip": "10.0.0.12",
            "lastbootuptime": "",
            "status": "offline"
        }
    }


def at(year, month, day, hour, minute):
    return datetime(year, month, day, hour, minute, 17, tzinfo=timezone.utc)


def mock_response(status, json_data=None):
    response = AsyncMock()
    response.status = status
    response.json.return_value = json_data
    return response


# =============================================================================
# SCHEDULE EVALUATOR TESTS
# =============================================================================

class TestScheduleEvaluator:
    """The pure (schedule, now) -> bool decision."""

    def test_disabled_schedule_never_fires(self):
        schedule = Schedule(enabled=False, type="daily", time="08:00")
        assert should_fire(schedule, at(2024, 3, 1, 8, 0)) is False

    def test_daily_fires_on_matching_minute_any_date(self):
        schedule = Schedule(enabled=True, type="daily", time="08:00")

        for day in (date(2024, 1, 1), date(2024, 2, 29), date(2031, 12, 31)):
            now = at(day.year, day.month, day.day, 8, 0)
            assert should_fire(schedule, now) is True

    def test_daily_does_not_fire_on_other_minutes(self):
        schedule = Schedule(enabled=True, type="daily", time="08:00")

        assert should_fire(schedule, at(2024, 3, 1, 7, 59)) is False
        assert should_fire(schedule, at(2024, 3, 1, 8, 1)) is False
        assert should_fire(schedule, at(2024, 3, 1, 20, 0)) is False

    def test_range_fires_inside_inclusive_window(self):
        schedule = Schedule(
            enabled=True, type="range", time="08:00",
            from_date=date(2024, 1, 1), to_date=date(2024, 1, 31)
        )

        assert should_fire(schedule, at(2024, 1, 1, 8, 0)) is True
        assert should_fire(schedule, at(2024, 1, 15, 8, 0)) is True
        assert should_fire(schedule, at(2024, 1, 31, 8, 0)) is True

    def test_range_does_not_fire_day_after_window(self):
        schedule = Schedule(
            enabled=True, type="range", time="08:00",
            from_date=date(2024, 1, 1), to_date=date(2024, 1, 31)
        )
        assert should_fire(schedule, at(2024, 2, 1, 8, 0)) is False
        assert should_fire(schedule, at(2023, 12, 31, 8, 0)) is False

    def test_range_requires_matching_minute(self):
        schedule = Schedule(
            enabled=True, type="range", time="08:00",
            from_date=date(2024, 1, 1), to_date=date(2024, 1, 31)
        )
        assert should_fire(schedule, at(2024, 1, 15, 9, 0)) is False

    def test_range_with_missing_dates_fails_closed(self):
        schedule = Schedule(enabled=True, type="range", time="08:00", from_date=date(2024, 1, 1))
        assert should_fire(schedule, at(2024, 1, 15, 8, 0)) is False

    def test_inverted_range_fails_closed(self):
        schedule = Schedule(
            enabled=True, type="range", time="08:00",
            from_date=date(2024, 2, 1), to_date=date(2024, 1, 1)
        )
        assert should_fire(schedule, at(2024, 1, 15, 8, 0)) is False

    def test_unknown_type_fails_closed(self):
        schedule = Schedule(enabled=True, type="weekly", time="08:00")
        assert should_fire(schedule, at(2024, 1, 15, 8, 0)) is False

    def test_unpadded_time_matches(self):
        schedule = Schedule(enabled=True, type="daily", time="8:05")
        assert should_fire(schedule, at(2024, 1, 15, 8, 5)) is True

    def test_range_bounds_accept_datetimes(self):
        assert is_within_range(
            date(2024, 1, 31),
            datetime(2024, 1, 1, 0, 0),
            datetime(2024, 1, 31, 23, 59)
        ) is True

    @pytest.mark.parametrize("value,expected", [
        ("08:00", "08:00"),
        ("8:00", "08:00"),
        (" 23:59 ", "23:59"),
        ("24:00", None),
        ("12:60", None),
        ("noon", None),
        ("", None),
        (None, None),
    ])
    def test_normalize_time(self, value, expected):
        assert normalize_time(value) == expected


# =============================================================================
# ACTION EXECUTOR TESTS
# =============================================================================

class TestActionExecutor:
    """Status classification and the bounded retry loop."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, executor):
        with patch.object(executor, '_issue_call', AsyncMock(return_value=200)) as mock_call, \
                patch('nodepilot.services.action_executor.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            outcome = await executor.execute("http://node.test/start")

        assert outcome.kind == OutcomeKind.SUCCESS
        assert outcome.is_success
        assert outcome.attempts == 1
        assert mock_call.await_count == 1
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_400_is_already_in_state_without_delay(self, executor):
        with patch.object(executor, '_issue_call', AsyncMock(return_value=400)) as mock_call, \
                patch('nodepilot.services.action_executor.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            outcome = await executor.execute("http://node.test/start")

        assert outcome.kind == OutcomeKind.ALREADY_IN_STATE
        assert outcome.is_success
        assert outcome.already_in_state
        assert outcome.attempts == 1
        assert outcome.status_code == 400
        assert mock_call.await_count == 1
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_404_is_already_in_state(self, executor):
        with patch.object(executor, '_issue_call', AsyncMock(return_value=404)):
            outcome = await executor.execute("http://node.test/stop")

        assert outcome.kind == OutcomeKind.ALREADY_IN_STATE

    @pytest.mark.asyncio
    async def test_503_exhausts_retries_with_fixed_delays(self, executor):
        with patch.object(executor, '_issue_call', AsyncMock(return_value=503)) as mock_call, \
                patch('nodepilot.services.action_executor.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            outcome = await executor.execute("http://node.test/start")

        assert outcome.kind == OutcomeKind.RETRIES_EXHAUSTED
        assert not outcome.is_success
        assert outcome.attempts == 5
        assert outcome.status_code == 503
        assert mock_call.await_count == 5
        assert mock_sleep.await_count == 4
        assert all(call.args == (0.5,) for call in mock_sleep.await_args_list)

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, executor):
        statuses = AsyncMock(side_effect=[502, 503, 200])
        with patch.object(executor, '_issue_call', statuses), \
                patch('nodepilot.services.action_executor.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            outcome = await executor.execute("http://node.test/start")

        assert outcome.kind == OutcomeKind.SUCCESS
        assert outcome.attempts == 3
        assert mock_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_network_errors_are_retried(self, executor):
        with patch('aiohttp.ClientSession.get') as mock_get, \
                patch('nodepilot.services.action_executor.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            mock_get.side_effect = aiohttp.ClientConnectionError("Connection refused")

            outcome = await executor.execute("http://node.test/start", max_retries=3)

        assert outcome.kind == OutcomeKind.RETRIES_EXHAUSTED
        assert outcome.attempts == 3
        assert "Connection refused" in outcome.message
        assert mock_get.call_count == 3
        assert mock_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self, executor):
        with patch('aiohttp.ClientSession.get') as mock_get, \
                patch('nodepilot.services.action_executor.asyncio.sleep', new_callable=AsyncMock):
            mock_get.side_effect = asyncio.TimeoutError()

            outcome = await executor.execute("http://node.test/start", max_retries=2)

        assert outcome.kind == OutcomeKind.RETRIES_EXHAUSTED
        assert "timed out" in outcome.message

    @pytest.mark.asyncio
    async def test_issues_plain_get(self, executor):
        with patch('aiohttp.ClientSession.get') as mock_get:
            mock_get.return_value.__aenter__.return_value = mock_response(200)

            outcome = await executor.execute("http://node.test/start")

        assert outcome.kind == OutcomeKind.SUCCESS
        mock_get.assert_called_once_with("http://node.test/start")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["", "not a url", "ftp://node.test/start"])
    async def test_malformed_url_is_permanent_without_attempt(self, executor, url):
        with patch.object(executor, '_issue_call', AsyncMock(return_value=200)) as mock_call:
            outcome = await executor.execute(url)

        assert outcome.kind == OutcomeKind.PERMANENT_FAILURE
        assert outcome.attempts == 0
        mock_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_status_is_permanent(self, executor):
        with patch.object(executor, '_issue_call', AsyncMock(return_value=304)) as mock_call:
            outcome = await executor.execute("http://node.test/start")

        assert outcome.kind == OutcomeKind.PERMANENT_FAILURE
        assert outcome.status_code == 304
        assert mock_call.await_count == 1

    @pytest.mark.asyncio
    async def test_rejects_non_positive_retry_budget(self, executor):
        with pytest.raises(ValueError):
            await executor.execute("http://node.test/start", max_retries=0)

    def test_outcome_to_dict(self):
        from nodepilot.services.action_executor import ActionOutcome

        outcome = ActionOutcome(OutcomeKind.ALREADY_IN_STATE, attempts=1, status_code=409)
        data = outcome.to_dict()

        assert data["outcome"] == "already_in_state"
        assert data["success"] is True
        assert data["already_in_state"] is True
        assert data["status_code"] == 409


# =============================================================================
# STATUS CACHE TESTS
# =============================================================================

class TestStatusCache:
    """Health tracking and last-known-good serving."""

    def test_initial_health(self, status_cache):
        health = status_cache.health

        assert health.is_working is True
        assert health.last_error == ""
        assert health.last_successful is None
        assert health.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_successful_refresh_populates_rows(self, status_cache, sample_payload):
        with patch.object(status_cache, '_fetch_nodes', AsyncMock(return_value=sample_payload)):
            assert await status_cache.refresh() is True

        snapshot = status_cache.snapshot()
        assert set(snapshot.nodes) == {"node-1", "node-2"}

        node = snapshot.nodes["node-1"]
        assert node.name == "render-01"
        assert node.last_boot_time == "2024-05-01T06:00:00Z"
        assert node.conn == 3
        assert node.pwr == 1.0
        assert node.last_updated is not None

        assert snapshot.health.is_working is True
        assert snapshot.health.last_successful is not None

    @pytest.mark.asyncio
    async def test_missing_gauges_default_to_zero(self, status_cache, sample_payload):
        sample_payload["node-2"]["conn"] = "n/a"
        with patch.object(status_cache, '_fetch_nodes', AsyncMock(return_value=sample_payload)):
            await status_cache.refresh()

        node = status_cache.get_node("node-2")
        assert node.conn == 0
        assert node.pwr == 0.0

    @pytest.mark.asyncio
    async def test_non_finite_gauges_default_to_zero(self, status_cache, sample_payload):
        sample_payload["node-1"]["conn"] = float("inf")
        sample_payload["node-1"]["pwr"] = float("nan")
        sample_payload["node-2"]["conn"] = float("nan")
        sample_payload["node-2"]["pwr"] = float("-inf")

        with patch.object(status_cache, '_fetch_nodes', AsyncMock(return_value=sample_payload)):
            assert await status_cache.refresh() is True

        first, second = status_cache.get_node("node-1"), status_cache.get_node("node-2")
        assert (first.conn, first.pwr) == (0, 0.0)
        assert (second.conn, second.pwr) == (0, 0.0)
        assert first.status == "online"
        assert status_cache.health.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_json_overflow_value_does_not_fail_poll(self, status_cache):
        body = '{"a": {"status": "online", "conn": 1}, "b": {"status": "online", "conn": 1e999, "pwr": NaN}}'
        with patch('aiohttp.ClientSession.get') as mock_get:
            response = AsyncMock()
            response.status = 200
            response.json.side_effect = lambda content_type=None: json.loads(body)
            mock_get.return_value.__aenter__.return_value = response

            assert await status_cache.refresh() is True

        assert status_cache.get_node("a").conn == 1
        assert status_cache.get_node("b").conn == 0
        assert status_cache.get_node("b").pwr == 0.0

    @pytest.mark.asyncio
    async def test_accepts_payload_wrapped_in_nodes_key(self, status_cache, sample_payload):
        with patch.object(status_cache, '_fetch_nodes', AsyncMock(return_value={"nodes": sample_payload})):
            assert await status_cache.refresh() is True

        assert status_cache.get_node("node-1").name == "render-01"

    @pytest.mark.asyncio
    async def test_failure_keeps_last_known_good_rows(self, status_cache, sample_payload):
        with patch.object(status_cache, '_fetch_nodes', AsyncMock(return_value=sample_payload)):
            await status_cache.refresh()

        failing = AsyncMock(side_effect=StatusSourceError("HTTP 500 from status source"))
        with patch.object(status_cache, '_fetch_nodes', failing):
            assert await status_cache.refresh() is False

        snapshot = status_cache.snapshot()
        assert snapshot.nodes["node-1"].status == "online"
        assert snapshot.health.is_working is False
        assert "HTTP 500" in snapshot.health.last_error
        assert snapshot.health.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_degraded_warning_fires_once_per_crossing(self, status_cache):
        failing = AsyncMock(side_effect=StatusSourceError("Request timed out after 1s"))

        with patch.object(status_cache, '_fetch_nodes', failing), \
                patch('nodepilot.services.status_cache.logger') as mock_logger:
            for _ in range(7):
                await status_cache.refresh()

        alerts = [
            call for call in mock_logger.warning.call_args_list
            if call.kwargs.get('extra', {}).get('alert')
        ]
        assert len(alerts) == 1
        assert status_cache.health.consecutive_failures == 7
        assert status_cache.health.is_working is False

    @pytest.mark.asyncio
    async def test_success_resets_failure_counter(self, status_cache, sample_payload):
        failing = AsyncMock(side_effect=StatusSourceError("HTTP 503 from status source"))
        with patch.object(status_cache, '_fetch_nodes', failing):
            for _ in range(5):
                await status_cache.refresh()

        assert status_cache.health.consecutive_failures == 5

        with patch.object(status_cache, '_fetch_nodes', AsyncMock(return_value=sample_payload)):
            await status_cache.refresh()

        health = status_cache.health
        assert health.is_working is True
        assert health.consecutive_failures == 0
        assert health.last_error == ""

    @pytest.mark.asyncio
    async def test_degraded_warning_fires_again_after_recovery(self, status_cache, sample_payload):
        failing = AsyncMock(side_effect=StatusSourceError("boom"))

        with patch('nodepilot.services.status_cache.logger') as mock_logger:
            with patch.object(status_cache, '_fetch_nodes', failing):
                for _ in range(5):
                    await status_cache.refresh()
            with patch.object(status_cache, '_fetch_nodes', AsyncMock(return_value=sample_payload)):
                await status_cache.refresh()
            with patch.object(status_cache, '_fetch_nodes', failing):
                for _ in range(5):
                    await status_cache.refresh()

        alerts = [
            call for call in mock_logger.warning.call_args_list
            if call.kwargs.get('extra', {}).get('alert')
        ]
        assert len(alerts) == 2

    @pytest.mark.asyncio
    async def test_http_error_status_recorded(self, status_cache):
        with patch('aiohttp.ClientSession.get') as mock_get:
            mock_get.return_value.__aenter__.return_value = mock_response(502)
            assert await status_cache.refresh() is False

        assert "HTTP 502" in status_cache.health.last_error

    @pytest.mark.asyncio
    async def test_client_error_is_permanent_and_counted(self, status_cache):
        with patch('aiohttp.ClientSession.get') as mock_get:
            mock_get.return_value.__aenter__.return_value = mock_response(401)

            with pytest.raises(StatusSourceClientError):
                await status_cache._fetch_nodes()

            assert await status_cache.refresh() is False

        assert mock_get.call_count == 2
        assert "HTTP 401" in status_cache.health.last_error
        assert status_cache.health.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_malformed_payload_is_a_failure(self, status_cache):
        with patch.object(status_cache, '_fetch_nodes', AsyncMock(return_value=["not", "a", "mapping"])):
            assert await status_cache.refresh() is False

        assert "Malformed payload" in status_cache.health.last_error

    @pytest.mark.asyncio
    async def test_network_error_never_raises(self, status_cache):
        with patch('aiohttp.ClientSession.get') as mock_get:
            mock_get.side_effect = aiohttp.ClientConnectionError("Connection refused")
            assert await status_cache.refresh() is False

        assert "Network error" in status_cache.health.last_error

    def test_snapshot_returns_copies(self, status_cache):
        health = status_cache.health
        health.is_working = False
        health.consecutive_failures = 99

        assert status_cache.health.is_working is True
        assert status_cache.health.consecutive_failures == 0

    def test_snapshot_does_not_poll(self, status_cache):
        with patch.object(status_cache, '_fetch_nodes', AsyncMock()) as mock_fetch:
            status_cache.snapshot()
            status_cache.get_node("node-1")

        mock_fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_persists_and_reloads_rows(self, database, sample_payload):
        repository = NodeStatusRepository(database)
        cache = StatusCache("http://status.test/api/nodes", repository=repository)

        with patch.object(cache, '_fetch_nodes', AsyncMock(return_value=sample_payload)):
            await cache.refresh()

        restarted = StatusCache("http://status.test/api/nodes", repository=repository)
        assert restarted.load_persisted() == 2
        assert restarted.get_node("node-1").ip == "10.0.0.11"
        assert restarted.health.last_successful is None

    @pytest.mark.asyncio
    async def test_upsert_updates_existing_rows(self, database, sample_payload):
        repository = NodeStatusRepository(database)
        cache = StatusCache("http://status.test/api/nodes", repository=repository)

        with patch.object(cache, '_fetch_nodes', AsyncMock(return_value=sample_payload)):
            await cache.refresh()

        sample_payload["node-1"]["status"] = "offline"
        with patch.object(cache, '_fetch_nodes', AsyncMock(return_value=sample_payload)):
            await cache.refresh()

        rows = {record.node_id: record for record in repository.load_all()}
        assert len(rows) == 2
        assert rows["node-1"].status == "offline"

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_are_serialized(self, status_cache, sample_payload):
        active = 0
        peak = 0

        async def slow_fetch():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return sample_payload

        with patch.object(status_cache, '_fetch_nodes', side_effect=slow_fetch):
            results = await asyncio.gather(*(status_cache.refresh() for _ in range(3)))

        assert results == [True, True, True]
        assert peak == 1


# =============================================================================
# MACHINE STORE AND CONTROL TESTS
# =============================================================================

class TestMachineStore:
    """CRUD over the machines table."""

    def test_create_starts_with_disabled_schedules(self, database):
        with database.get_session_context() as session:
            machine = MachineStore(session).create(
                "render-01", "node-1", "http://node.test/start", "http://node.test/stop"
            )

            assert machine.status == "unknown"
            assert machine.start_schedule == Schedule()
            assert machine.stop_schedule == Schedule()

    def test_list_scheduled_only_returns_enabled(self, database):
        with database.get_session_context() as session:
            store = MachineStore(session)
            idle = store.create("idle", "node-1", "http://a.test/start", "http://a.test/stop")
            busy = store.create("busy", "node-2", "http://b.test/start", "http://b.test/stop")
            store.update_schedules(
                busy.id,
                Schedule(enabled=False),
                Schedule(enabled=True, type="daily", time="19:00")
            )

            scheduled = store.list_scheduled()

        assert [m.name for m in scheduled] == ["busy"]
        assert idle.id not in {m.id for m in scheduled}

    def test_load_scheduled_machines_returns_snapshots(self, database):
        with database.get_session_context() as session:
            store = MachineStore(session)
            machine = store.create("busy", "node-2", "http://b.test/start", "http://b.test/stop")
            store.update_schedules(
                machine.id,
                Schedule(enabled=True, type="range", time="07:30",
                         from_date=date(2024, 1, 1), to_date=date(2024, 1, 31)),
                Schedule()
            )

        snapshots = load_scheduled_machines(database)

        assert len(snapshots) == 1
        assert snapshots[0].start_schedule.from_date == date(2024, 1, 1)
        assert snapshots[0].start_schedule.time == "07:30"
        assert snapshots[0].stop_schedule.enabled is False

    def test_get_missing_machine(self, database):
        with database.get_session_context() as session:
            store = MachineStore(session)
            with pytest.raises(MachineNotFoundError):
                store.get("00000000-0000-0000-0000-000000000000")
            with pytest.raises(MachineNotFoundError):
                store.get("not-a-uuid")

    def test_delete(self, database):
        with database.get_session_context() as session:
            store = MachineStore(session)
            machine = store.create("gone", "node-9", "http://c.test/start", "http://c.test/stop")
            store.delete(machine.id)

            assert store.list_machines() == []


class TestMachineControl:
    """Direction-to-URL dispatch for manual and scheduled triggers."""

    @pytest.mark.asyncio
    async def test_trigger_uses_direction_url(self):
        machine = MagicMock(id="m1", start_url="http://node.test/start", stop_url="http://node.test/stop")
        machine.name = "render-01"
        executor = MagicMock()
        executor.execute = AsyncMock()

        await trigger(machine, Direction.STOP, executor)

        executor.execute.assert_awaited_once_with("http://node.test/stop")

    @pytest.mark.asyncio
    async def test_trigger_without_url(self):
        machine = MagicMock(id="m1", start_url="", stop_url="http://node.test/stop")
        machine.name = "render-01"

        with pytest.raises(ActionNotConfiguredError):
            await trigger(machine, Direction.START, MagicMock())

    @pytest.mark.asyncio
    async def test_trigger_machine_by_id(self, database):
        with database.get_session_context() as session:
            machine = MachineStore(session).create(
                "render-01", "node-1", "http://node.test/start", "http://node.test/stop"
            )
            machine_id = machine.id
        executor = MagicMock()
        executor.execute = AsyncMock()

        await trigger_machine(str(machine_id), Direction.START, executor, database)

        executor.execute.assert_awaited_once_with("http://node.test/start")

    @pytest.mark.asyncio
    async def test_trigger_machine_unknown_id(self, database):
        executor = MagicMock()
        executor.execute = AsyncMock()

        with pytest.raises(MachineNotFoundError):
            await trigger_machine("00000000-0000-0000-0000-000000000000", Direction.STOP, executor, database)

        executor.execute.assert_not_awaited()
