from datetime import datetime, timezone

import pytest

from statusvault.errors import EndpointNotFoundError
from statusvault.key import convert_group_and_endpoint_name_to_key
from statusvault.models import (
    Endpoint,
    EndpointStatus,
    Event,
    EventType,
    HourlyUptimeStatistics,
    Result,
    Store,
    Uptime,
    event_from_result,
)
from statusvault.paging import EndpointStatusParams


class _DictStore(Store):
    def __init__(self):
        self.statuses = {}
        self.closed = False

    def get_all_endpoint_statuses(self, params):
        return [self.statuses[key] for key in sorted(self.statuses)]

    def get_endpoint_status_by_key(self, key, params):
        try:
            return self.statuses[key]
        except KeyError:
            raise EndpointNotFoundError() from None

    def get_uptime_by_key(self, key, start, end):
        return 0.0

    def get_average_response_time_by_key(self, key, start, end):
        return 0

    def get_hourly_average_response_time_by_key(self, key, start, end):
        return {}

    def insert(self, endpoint, result):
        status = self.statuses.setdefault(endpoint.key(), EndpointStatus(endpoint.name, endpoint.group))
        status.results.append(result)

    def delete_all_endpoint_statuses_not_in_keys(self, keys):
        doomed = [key for key in self.statuses if key not in keys]
        for key in doomed:
            del self.statuses[key]
        return len(doomed)

    def clear(self):
        self.statuses.clear()

    def save(self):
        return None

    def close(self):
        self.closed = True


def test_endpoint_key_uses_group_and_name():
    endpoint = Endpoint(name="Front End", group="Core")
    assert endpoint.key() == "core_front-end"


def test_endpoint_status_computes_key():
    status = EndpointStatus("name", "group")
    assert status.key == convert_group_and_endpoint_name_to_key("group", "name")
    assert status.results == []
    assert status.events == []
    assert status.uptime == Uptime()


def test_event_from_successful_result_is_healthy():
    timestamp = datetime(2021, 1, 1, tzinfo=timezone.utc)
    event = event_from_result(Result(success=True, timestamp=timestamp))
    assert event == Event(EventType.HEALTHY, timestamp)


def test_event_from_failed_result_is_unhealthy():
    result = Result(success=False)
    event = event_from_result(result)
    assert event.type is EventType.UNHEALTHY
    assert event.timestamp == result.timestamp


def test_hourly_statistics_start_at_zero():
    stats = HourlyUptimeStatistics()
    assert (stats.total_executions, stats.successful_executions, stats.total_executions_response_time) == (0, 0, 0)


def test_result_lists_are_independent():
    first, second = Result(), Result()
    first.errors.append("error-1")
    assert second.errors == []


def test_store_cannot_be_instantiated():
    with pytest.raises(TypeError):
        Store()


def test_store_get_endpoint_status_delegates_to_key():
    store = _DictStore()
    endpoint = Endpoint(name="name", group="group")
    store.insert(endpoint, Result(success=True))
    status = store.get_endpoint_status("group", "name", EndpointStatusParams())
    assert status.name == "name"
    assert len(status.results) == 1
    with pytest.raises(EndpointNotFoundError):
        store.get_endpoint_status("missing", "name", EndpointStatusParams())


def test_store_context_manager_closes():
    endpoint = Endpoint(name="name", group="group")
    with _DictStore() as store:
        store.insert(endpoint, Result(success=True))
        status = store.get_endpoint_status("group", "name", EndpointStatusParams())
        assert status.key == "group_name"
        assert store.closed is False
    assert store.closed is True