"""Unit tests for the fee data manager and the reference-data client"""

import re

import httpx
import pytest

from fincalc.domain.exceptions import RemoteDataError, StorageError
from fincalc.domain.fees import CURRENT_VERSION, calculate_fee
from fincalc.infrastructure.cache import CACHE_PREFIX, KeyValueCache
from fincalc.infrastructure.clients.fee_data import FeeDataClient
from fincalc.infrastructure.fallback import DURABLE_FEE_SCHEDULE_KEY, FallbackOrchestrator
from fincalc.infrastructure.storage import MemoryStorage
from fincalc.services.fee_data import (
    LAST_UPDATE_KEY,
    OFFLINE_MODE_KEY,
    SCHEDULE_CACHE_PREFIX,
    VERSION_KEY,
    FeeDataManager,
    NetworkMonitor,
)

DAY_MS = 24 * 60 * 60 * 1000


def build_manager(storage, client, clock, network_monitor=None) -> FeeDataManager:
    return FeeDataManager(
        cache=KeyValueCache(storage, clock=clock),
        fallback=FallbackOrchestrator(storage, MemoryStorage(), clock=clock),
        client=client,
        durable_storage=storage,
        network_monitor=network_monitor,
        clock=clock,
    )


@pytest.fixture
def manager(storage, fee_data_client, clock, network_monitor) -> FeeDataManager:
    return build_manager(storage, fee_data_client, clock, network_monitor)


async def test_initialize_seeds_offline_cache(manager):
    await manager.initialize()

    stats = await manager.get_cache_statistics()
    assert stats.schedules_count == 2
    assert stats.exemptions_count == 5
    assert stats.is_offline_ready is True
    assert manager.is_in_offline_mode() is False


async def test_online_schedule_comes_from_remote_and_is_kept_for_fallback(manager, storage):
    schedule = await manager.get_current_schedule("general")

    assert schedule.court_type == "general"
    assert schedule.version == CURRENT_VERSION
    assert schedule.rules[0].minimum_fee == 400
    assert storage.get_item(DURABLE_FEE_SCHEDULE_KEY) is not None
    assert storage.get_item(CACHE_PREFIX + SCHEDULE_CACHE_PREFIX + "general") is not None


async def test_remote_outage_with_nothing_stored_serves_static_rules(manager, mock_fee_server, storage):
    mock_fee_server.state.unavailable = True

    schedule = await manager.get_current_schedule("arbitration")

    # Conservative default data never replaces the real tables
    assert schedule.version == CURRENT_VERSION
    assert len(schedule.rules) == 6
    assert calculate_fee(20_000_000, schedule).amount == 171_000
    assert storage.get_item(CACHE_PREFIX + SCHEDULE_CACHE_PREFIX + "arbitration") is not None


async def test_remote_outage_after_initialize_serves_cached_tables(manager, mock_fee_server):
    await manager.initialize()
    mock_fee_server.state.unavailable = True

    schedule = await manager.get_current_schedule("general")

    assert schedule.version == CURRENT_VERSION
    assert calculate_fee(1_000_000, schedule).amount == 13_200


async def test_remote_outage_uses_stored_remote_copy_when_cache_is_gone(manager, mock_fee_server):
    mock_fee_server.state.version = "2024.2.0"
    await manager.get_current_schedule("general")
    await manager.cache.delete(SCHEDULE_CACHE_PREFIX + "general")
    mock_fee_server.state.unavailable = True

    schedule = await manager.get_current_schedule("general")

    assert schedule.version == "2024.2.0"
    assert len(schedule.rules) == 5


async def test_remote_outage_prefers_previously_fetched_data(manager, mock_fee_server):
    await manager.get_current_schedule("general")
    mock_fee_server.state.unavailable = True

    schedule = await manager.get_current_schedule("general")

    assert schedule.version == CURRENT_VERSION
    assert len(schedule.rules) == 5


async def test_offline_mode_follows_network_monitor(manager, network_monitor, storage):
    await manager.initialize()

    network_monitor.set_online(False)
    assert manager.is_in_offline_mode() is True
    assert storage.get_item(OFFLINE_MODE_KEY) == "true"

    network_monitor.set_online(True)
    assert manager.is_in_offline_mode() is False
    assert storage.get_item(OFFLINE_MODE_KEY) == "false"


async def test_offline_flag_survives_restart(storage, fee_data_client, clock):
    first = build_manager(storage, fee_data_client, clock)
    first.handle_network_change(False)

    second = build_manager(storage, fee_data_client, clock)
    await second.initialize()

    assert second.is_in_offline_mode() is True


async def test_offline_with_empty_cache_serves_static_rules(manager, storage, mock_fee_server):
    manager.handle_network_change(False)

    schedule = await manager.get_current_schedule("general")

    assert schedule.version == CURRENT_VERSION
    assert calculate_fee(50_000, schedule).amount == 1_700
    # The static schedule is cached for next time; the remote endpoint was never consulted
    assert storage.get_item(CACHE_PREFIX + SCHEDULE_CACHE_PREFIX + "general") is not None
    assert storage.get_item(DURABLE_FEE_SCHEDULE_KEY) is None


async def test_offline_ignores_invalid_cached_schedule(manager):
    await manager.initialize()
    cached = await manager.cache.get(SCHEDULE_CACHE_PREFIX + "general")
    cached["rules"][1]["min_amount"] = 30_000  # Opens a gap
    await manager.cache.set(SCHEDULE_CACHE_PREFIX + "general", cached)
    manager.handle_network_change(False)

    schedule = await manager.get_current_schedule("general")

    assert schedule.rules[1].min_amount == 20_001


async def test_check_for_updates(manager, mock_fee_server):
    assert await manager.check_for_updates() is False

    mock_fee_server.state.version = "2025.1.0"
    assert await manager.check_for_updates() is True

    manager.handle_network_change(False)
    assert await manager.check_for_updates() is False


async def test_check_for_updates_without_remote_compares_stored_version(manager, storage, mock_fee_server):
    mock_fee_server.state.unavailable = True
    assert await manager.check_for_updates() is True

    storage.set_item(VERSION_KEY, CURRENT_VERSION)
    assert await manager.check_for_updates() is False


async def test_update_schedule_records_version_and_time(manager, storage, clock):
    await manager.update_schedule("arbitration")

    assert storage.get_item(VERSION_KEY) == CURRENT_VERSION
    assert manager.get_last_update_date().timestamp() * 1000 == clock.now


async def test_update_schedule_offline_serves_cache(manager, storage):
    manager.handle_network_change(False)

    schedule = await manager.update_schedule("general")

    assert schedule.court_type == "general"
    assert storage.get_item(VERSION_KEY) is None


async def test_freshness_thresholds(manager, clock):
    await manager.update_schedule("general")
    assert manager.check_data_freshness().is_up_to_date is True
    assert manager.check_data_freshness().warning_message is None

    clock.advance(31 * DAY_MS)
    status = manager.check_data_freshness()
    assert status.is_up_to_date is False
    assert status.days_since_update == 31
    assert status.warning_message.startswith("Данные о госпошлинах обновлялись 31")

    clock.advance(30 * DAY_MS)
    assert manager.check_data_freshness().warning_message.startswith("Внимание!")

    clock.advance(120 * DAY_MS)
    assert manager.check_data_freshness().warning_message.startswith("Критическое")


def test_unparsable_last_update_falls_back_to_release_date(manager, storage):
    storage.set_item(LAST_UPDATE_KEY, "yesterday")

    assert manager.get_last_update_date().year == 2024


def test_version_info_and_integrity(manager):
    info = manager.get_data_version_info()

    assert info.version == CURRENT_VERSION
    assert re.fullmatch(r"[0-9a-f]{16}", info.checksum)
    assert info.checksum == manager.calculate_data_checksum()
    assert manager.validate_data_integrity() is True


async def test_clear_and_refresh_offline_cache(manager, storage):
    await manager.initialize()
    manager.handle_network_change(False)

    await manager.clear_offline_cache()
    stats = await manager.get_cache_statistics()
    assert stats.schedules_count == 0
    assert stats.is_offline_ready is False
    assert storage.get_item(OFFLINE_MODE_KEY) is None

    await manager.refresh_offline_cache()
    stats = await manager.get_cache_statistics()
    assert stats.is_offline_ready is True
    # Mode is restored after the forced refresh
    assert manager.is_in_offline_mode() is True


async def test_clear_offline_cache_tolerates_storage_failures(fee_data_client, clock):
    class NoRemovalStorage(MemoryStorage):
        def remove_item(self, key: str) -> None:
            raise StorageError("disk detached")

    manager = build_manager(NoRemovalStorage(), fee_data_client, clock)
    await manager.get_current_schedule("general")

    await manager.clear_offline_cache()

    # Both schedules and the exemptions fail to go away; each failure is counted
    assert manager.cache.get_operation_statistics()["errors"] == 3


async def test_cache_refresh_goes_through_remote(manager):
    await manager.initialize()

    assert await manager.cache.refresh(SCHEDULE_CACHE_PREFIX + "general") is True

    manager.handle_network_change(False)
    assert await manager.cache.refresh(SCHEDULE_CACHE_PREFIX + "general") is False


async def test_dispose_unsubscribes(manager, network_monitor):
    await manager.initialize()
    await manager.dispose()

    network_monitor.set_online(False)

    assert manager.is_in_offline_mode() is False


async def test_network_monitor_notifies_only_on_change():
    events = []
    monitor = NetworkMonitor(online=True)
    unsubscribe = monitor.subscribe(events.append)

    monitor.set_online(True)
    monitor.set_online(False)
    unsubscribe()
    monitor.set_online(True)

    assert events == [False]


async def test_client_parses_schedule(fee_data_client):
    response = await fee_data_client.get_fee_schedule()

    assert response.success is True
    assert response.source == "api"
    assert set(response.data.court_types) == {"general", "arbitration"}
    assert len(response.data.exemptions) == 5


async def test_client_raises_on_http_error(fee_data_client, mock_fee_server):
    mock_fee_server.state.unavailable = True

    with pytest.raises(RemoteDataError, match="503"):
        await fee_data_client.get_fee_schedule()
    with pytest.raises(RemoteDataError):
        await fee_data_client.check_for_updates(CURRENT_VERSION)


async def test_client_rejects_invalid_payload():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"version": "x"}))
    client = FeeDataClient(base_url="http://fee-data.test", transport=transport)

    with pytest.raises(RemoteDataError, match="Invalid fee schedule data"):
        await client.get_fee_schedule()


async def test_client_wraps_connection_errors():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = FeeDataClient(base_url="http://fee-data.test", transport=httpx.MockTransport(refuse))

    with pytest.raises(RemoteDataError, match="unreachable"):
        await client.get_fee_schedule()
