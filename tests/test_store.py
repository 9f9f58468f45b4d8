import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from statusvault import store as store_module
from statusvault.config import StorageConfig, StorageType
from statusvault.errors import (
    MAXIMUM_NUMBER_OF_EVENTS,
    MAXIMUM_NUMBER_OF_RESULTS,
    EndpointNotFoundError,
    InvalidTimeRangeError,
)
from statusvault.memory import MemoryStore
from statusvault.models import ConditionResult, Endpoint, Result
from statusvault.paging import EndpointStatusParams
from statusvault.sqlstore import PathNotSpecifiedError, SQLStore

NOW = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
HOUR = timedelta(hours=1)

TEST_ENDPOINT = Endpoint(
    name="name",
    group="group",
    url="https://example.org/what/ever",
    method="GET",
    body="body",
    conditions=["[STATUS] == 200", "[RESPONSE_TIME] < 500", "[CERTIFICATE_EXPIRATION] < 72h"],
)

SUCCESSFUL_RESULT = Result(
    timestamp=NOW,
    success=True,
    hostname="example.org",
    ip="127.0.0.1",
    http_status=200,
    errors=[],
    connected=True,
    duration=timedelta(milliseconds=150),
    certificate_expiration=timedelta(hours=10),
    condition_results=[
        ConditionResult("[STATUS] == 200", True),
        ConditionResult("[RESPONSE_TIME] < 500", True),
        ConditionResult("[CERTIFICATE_EXPIRATION] < 72h", True),
    ],
)

UNSUCCESSFUL_RESULT = Result(
    timestamp=NOW,
    success=False,
    hostname="example.org",
    ip="127.0.0.1",
    http_status=200,
    errors=["error-1", "error-2"],
    connected=True,
    duration=timedelta(milliseconds=750),
    certificate_expiration=timedelta(hours=10),
    condition_results=[
        ConditionResult("[STATUS] == 200", True),
        ConditionResult("[RESPONSE_TIME] < 500", False),
        ConditionResult("[CERTIFICATE_EXPIRATION] < 72h", False),
    ],
)


def full_params():
    return (
        EndpointStatusParams()
        .with_events(1, MAXIMUM_NUMBER_OF_EVENTS)
        .with_results(1, MAXIMUM_NUMBER_OF_RESULTS)
    )


@pytest.fixture(autouse=True)
def reset_global_store():
    store_module.shutdown()
    yield
    store_module.shutdown()


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        created = MemoryStore("")
    else:
        created = SQLStore("sqlite", str(tmp_path / "test.db"))
    yield created
    created.close()


def test_get_endpoint_status_by_key(any_store):
    first = replace(SUCCESSFUL_RESULT, timestamp=NOW - timedelta(minutes=1))
    second = replace(UNSUCCESSFUL_RESULT, timestamp=NOW)
    any_store.insert(TEST_ENDPOINT, first)
    any_store.insert(TEST_ENDPOINT, second)
    status = any_store.get_endpoint_status_by_key(TEST_ENDPOINT.key(), full_params())
    assert status.name == TEST_ENDPOINT.name
    assert status.group == TEST_ENDPOINT.group
    assert len(status.results) == 2
    assert status.results[0].timestamp <= status.results[1].timestamp


def test_get_endpoint_status_for_missing_status_raises(any_store):
    any_store.insert(TEST_ENDPOINT, SUCCESSFUL_RESULT)
    for group, name in [
        ("nonexistantgroup", "nonexistantname"),
        (TEST_ENDPOINT.group, "nonexistantname"),
        ("nonexistantgroup", TEST_ENDPOINT.name),
    ]:
        with pytest.raises(EndpointNotFoundError):
            any_store.get_endpoint_status(group, name, full_params())


def test_get_all_endpoint_statuses(any_store):
    any_store.insert(TEST_ENDPOINT, SUCCESSFUL_RESULT)
    any_store.insert(TEST_ENDPOINT, UNSUCCESSFUL_RESULT)
    statuses = any_store.get_all_endpoint_statuses(EndpointStatusParams().with_results(1, 20))
    assert len(statuses) == 1
    assert len(statuses[0].results) == 2
    assert len(statuses[0].events) == 0


def test_get_all_endpoint_statuses_page_two(any_store):
    other = replace(TEST_ENDPOINT, name=TEST_ENDPOINT.name + "-other")
    any_store.insert(TEST_ENDPOINT, SUCCESSFUL_RESULT)
    for _ in range(3):
        any_store.insert(other, SUCCESSFUL_RESULT)
    statuses = any_store.get_all_endpoint_statuses(EndpointStatusParams().with_results(2, 2))
    assert len(statuses) == 2
    assert len(statuses[0].results) == 0
    assert len(statuses[1].results) == 1
    assert len(statuses[0].events) == 0
    assert len(statuses[1].events) == 0


def test_get_all_endpoint_statuses_with_results_and_events(any_store):
    any_store.insert(TEST_ENDPOINT, SUCCESSFUL_RESULT)
    any_store.insert(TEST_ENDPOINT, UNSUCCESSFUL_RESULT)
    statuses = any_store.get_all_endpoint_statuses(
        EndpointStatusParams().with_results(1, 20).with_events(1, 50)
    )
    assert len(statuses) == 1
    assert len(statuses[0].results) == 2
    assert len(statuses[0].events) == 3


def test_page_one_has_more_recent_results_than_page_two(any_store):
    any_store.insert(TEST_ENDPOINT, replace(SUCCESSFUL_RESULT, timestamp=NOW - timedelta(minutes=1)))
    any_store.insert(TEST_ENDPOINT, replace(UNSUCCESSFUL_RESULT, timestamp=NOW))
    page1 = any_store.get_endpoint_status_by_key(TEST_ENDPOINT.key(), EndpointStatusParams().with_results(1, 1))
    page2 = any_store.get_endpoint_status_by_key(TEST_ENDPOINT.key(), EndpointStatusParams().with_results(2, 1))
    assert len(page1.results) == 1
    assert len(page2.results) == 1
    assert page1.results[0].timestamp > page2.results[0].timestamp


def test_get_uptime_by_key(any_store):
    with pytest.raises(EndpointNotFoundError):
        any_store.get_uptime_by_key(
            TEST_ENDPOINT.key(), datetime.now(timezone.utc) - HOUR, datetime.now(timezone.utc)
        )
    any_store.insert(TEST_ENDPOINT, replace(SUCCESSFUL_RESULT, timestamp=NOW - timedelta(minutes=1)))
    any_store.insert(TEST_ENDPOINT, replace(UNSUCCESSFUL_RESULT, timestamp=NOW))
    for span in (HOUR, 24 * HOUR, 7 * 24 * HOUR):
        uptime = any_store.get_uptime_by_key(TEST_ENDPOINT.key(), NOW - span, datetime.now(timezone.utc))
        assert uptime == 0.5
    with pytest.raises(InvalidTimeRangeError):
        any_store.get_uptime_by_key(TEST_ENDPOINT.key(), NOW, datetime.now(timezone.utc) - HOUR)


def _insert_four_results(target):
    target.insert(
        TEST_ENDPOINT,
        replace(SUCCESSFUL_RESULT, timestamp=NOW - 2 * HOUR, duration=timedelta(milliseconds=300)),
    )
    target.insert(
        TEST_ENDPOINT,
        replace(
            SUCCESSFUL_RESULT,
            timestamp=NOW - (HOUR + timedelta(minutes=30)),
            duration=timedelta(milliseconds=150),
        ),
    )
    target.insert(
        TEST_ENDPOINT,
        replace(UNSUCCESSFUL_RESULT, timestamp=NOW - HOUR, duration=timedelta(milliseconds=200)),
    )
    target.insert(
        TEST_ENDPOINT,
        replace(SUCCESSFUL_RESULT, timestamp=NOW, duration=timedelta(milliseconds=500)),
    )


def test_get_average_response_time_by_key(any_store):
    _insert_four_results(any_store)
    key = TEST_ENDPOINT.key()
    assert any_store.get_average_response_time_by_key(key, NOW - 48 * HOUR, NOW - 24 * HOUR) == 0
    assert any_store.get_average_response_time_by_key(key, NOW - 24 * HOUR, NOW) == 287
    assert any_store.get_average_response_time_by_key(key, NOW - HOUR, NOW) == 350
    assert any_store.get_average_response_time_by_key(key, NOW - 2 * HOUR, NOW - HOUR) == 216
    with pytest.raises(InvalidTimeRangeError):
        any_store.get_average_response_time_by_key(key, NOW, NOW - 2 * HOUR)


def test_get_hourly_average_response_time_by_key(any_store):
    _insert_four_results(any_store)
    hourly = any_store.get_hourly_average_response_time_by_key(TEST_ENDPOINT.key(), NOW - 24 * HOUR, NOW)
    now_unix = int(NOW.timestamp())
    assert hourly[now_unix] == 500
    assert hourly[now_unix - 3600] == 200
    assert hourly[now_unix - 7200] == 225


def test_insert(any_store):
    any_store.insert(TEST_ENDPOINT, SUCCESSFUL_RESULT)
    any_store.insert(TEST_ENDPOINT, UNSUCCESSFUL_RESULT)
    status = any_store.get_endpoint_status_by_key(TEST_ENDPOINT.key(), full_params())
    assert len(status.events) == 3
    assert len(status.results) == 2
    for expected, actual in zip([SUCCESSFUL_RESULT, UNSUCCESSFUL_RESULT], status.results):
        assert actual.http_status == expected.http_status
        assert actual.dns_rcode == expected.dns_rcode
        assert actual.hostname == expected.hostname
        assert actual.ip == expected.ip
        assert actual.connected == expected.connected
        assert actual.duration == expected.duration
        assert list(actual.errors) == list(expected.errors)
        assert [(cr.condition, cr.success) for cr in actual.condition_results] == [
            (cr.condition, cr.success) for cr in expected.condition_results
        ]
        assert actual.success == expected.success
        assert int(actual.timestamp.timestamp()) == int(expected.timestamp.timestamp())
        assert actual.certificate_expiration == expected.certificate_expiration


def test_delete_all_endpoint_statuses_not_in_keys(any_store):
    first = Endpoint(name="endpoint-1", group="group")
    second = Endpoint(name="endpoint-2", group="group")
    any_store.insert(first, SUCCESSFUL_RESULT)
    any_store.insert(second, SUCCESSFUL_RESULT)
    assert any_store.get_endpoint_status_by_key(first.key(), EndpointStatusParams()).name == "endpoint-1"
    assert any_store.get_endpoint_status_by_key(second.key(), EndpointStatusParams()).name == "endpoint-2"
    assert any_store.delete_all_endpoint_statuses_not_in_keys([first.key()]) == 1
    assert any_store.get_endpoint_status_by_key(first.key(), EndpointStatusParams()).name == "endpoint-1"
    with pytest.raises(EndpointNotFoundError):
        any_store.get_endpoint_status_by_key(second.key(), EndpointStatusParams())
    any_store.delete_all_endpoint_statuses_not_in_keys([])
    assert any_store.get_all_endpoint_statuses(EndpointStatusParams()) == []


def test_get_initializes_automatically():
    current = store_module.get()
    assert isinstance(current, MemoryStore)
    assert store_module.get() is current


@pytest.mark.parametrize(
    "name, make_cfg, expected_type",
    [
        ("nil", lambda tmp: None, MemoryStore),
        ("blank", lambda tmp: StorageConfig(), MemoryStore),
        ("memory-no-path", lambda tmp: StorageConfig(type=StorageType.MEMORY), MemoryStore),
        (
            "memory-with-path",
            lambda tmp: StorageConfig(type=StorageType.MEMORY, path=str(tmp / "memory.db")),
            MemoryStore,
        ),
        (
            "sqlite-with-path",
            lambda tmp: StorageConfig(type=StorageType.SQLITE, path=str(tmp / "sqlite.db")),
            SQLStore,
        ),
    ],
)
def test_initialize(name, make_cfg, expected_type, tmp_path):
    cfg = make_cfg(tmp_path)
    store_module.initialize(cfg)
    first = store_module.get()
    assert isinstance(first, expected_type)
    first.insert(TEST_ENDPOINT, SUCCESSFUL_RESULT)
    assert len(first.get_all_endpoint_statuses(EndpointStatusParams())) == 1
    first.close()
    store_module.initialize(cfg)
    second = store_module.get()
    assert second is not first
    assert isinstance(second, expected_type)


def test_initialize_sqlite_without_path_raises():
    with pytest.raises(PathNotSpecifiedError):
        store_module.initialize(StorageConfig(type=StorageType.SQLITE))


def test_shutdown_resets_to_fresh_store():
    store_module.initialize(StorageConfig())
    store_module.get().insert(TEST_ENDPOINT, SUCCESSFUL_RESULT)
    store_module.shutdown()
    assert store_module.get().get_all_endpoint_statuses(EndpointStatusParams()) == []


def test_auto_save_persists_memory_store(tmp_path, monkeypatch):
    monkeypatch.setattr(store_module, "AUTO_SAVE_INTERVAL", timedelta(milliseconds=10))
    path = tmp_path / "autosave.db"
    store_module.initialize(StorageConfig(path=str(path)))
    store_module.get().insert(TEST_ENDPOINT, SUCCESSFUL_RESULT)
    reloaded = []
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        if path.exists():
            reloaded = MemoryStore(str(path)).get_all_endpoint_statuses(
                EndpointStatusParams().with_results(1, 20)
            )
            if reloaded:
                break
        time.sleep(0.01)
    store_module.shutdown()
    assert len(reloaded) == 1
    assert reloaded[0].key == TEST_ENDPOINT.key()
    assert len(reloaded[0].results) == 1