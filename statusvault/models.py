"""Data types shared by stores and the interface every store implements."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from .key import convert_group_and_endpoint_name_to_key
from .paging import EndpointStatusParams


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ConditionResult:
    """Outcome of one condition of a health check."""

    condition: str
    success: bool


@dataclass
class Result:
    """Outcome of one health check of an endpoint."""

    success: bool = False
    timestamp: datetime = field(default_factory=_utcnow)
    hostname: str = ""
    ip: str = ""
    http_status: int = 0
    dns_rcode: str = ""
    errors: list[str] = field(default_factory=list)
    connected: bool = False
    duration: timedelta = timedelta(0)
    certificate_expiration: timedelta = timedelta(0)
    condition_results: list[ConditionResult] = field(default_factory=list)


class EventType(str, Enum):
    """Kind of event in an endpoint's history."""

    START = "START"
    HEALTHY = "HEALTHY"
    UNHEALTHY = "UNHEALTHY"

    def __str__(self) -> str:
        return self.value


@dataclass
class Event:
    """A change in an endpoint's state."""

    type: EventType
    timestamp: datetime = field(default_factory=_utcnow)


def event_from_result(result: Result) -> Event:
    """The healthy or unhealthy event that a result marks."""
    event_type = EventType.HEALTHY if result.success else EventType.UNHEALTHY
    return Event(type=event_type, timestamp=result.timestamp)


@dataclass
class HourlyUptimeStatistics:
    """Execution counts and total response time (ms) for one hour."""

    total_executions: int = 0
    successful_executions: int = 0
    total_executions_response_time: int = 0


@dataclass
class Uptime:
    """Hourly statistics keyed by the unix timestamp of the hour's start."""

    hourly_statistics: dict[int, HourlyUptimeStatistics] = field(default_factory=dict)


@dataclass
class Endpoint:
    """A monitored endpoint."""

    name: str
    group: str = ""
    url: str = ""
    method: str = ""
    body: str = ""
    conditions: list[str] = field(default_factory=list)

    def key(self) -> str:
        """The store key of this endpoint."""
        return convert_group_and_endpoint_name_to_key(self.group, self.name)


@dataclass
class EndpointStatus:
    """The recorded history of one endpoint."""

    name: str
    group: str = ""
    key: str = ""
    results: list[Result] = field(default_factory=list)
    events: list[Event] = field(default_factory=list)
    uptime: Uptime | None = field(default_factory=Uptime)

    def __post_init__(self) -> None:
        if not self.key:
            self.key = convert_group_and_endpoint_name_to_key(self.group, self.name)


class Store(abc.ABC):
    """Interface that every store implements."""

    @abc.abstractmethod
    def get_all_endpoint_statuses(self, params: EndpointStatusParams) -> list[EndpointStatus]:
        """All endpoint statuses, sorted by key, paged by params."""

    def get_endpoint_status(
        self, group_name: str, endpoint_name: str, params: EndpointStatusParams
    ) -> EndpointStatus:
        """The status of the endpoint with this group and name."""
        key = convert_group_and_endpoint_name_to_key(group_name, endpoint_name)
        return self.get_endpoint_status_by_key(key, params)

    @abc.abstractmethod
    def get_endpoint_status_by_key(self, key: str, params: EndpointStatusParams) -> EndpointStatus:
        """The status of the endpoint with this key; raises EndpointNotFoundError."""

    @abc.abstractmethod
    def get_uptime_by_key(self, key: str, start: datetime, end: datetime) -> float:
        """Fraction of successful executions in the time range."""

    @abc.abstractmethod
    def get_average_response_time_by_key(self, key: str, start: datetime, end: datetime) -> int:
        """Average response time in milliseconds in the time range."""

    @abc.abstractmethod
    def get_hourly_average_response_time_by_key(
        self, key: str, start: datetime, end: datetime
    ) -> dict[int, int]:
        """Average response time in milliseconds per hour in the time range."""

    @abc.abstractmethod
    def insert(self, endpoint: Endpoint, result: Result) -> None:
        """Record a result for an endpoint."""

    @abc.abstractmethod
    def delete_all_endpoint_statuses_not_in_keys(self, keys: list[str]) -> int:
        """Remove every endpoint whose key is not listed; return how many went."""

    @abc.abstractmethod
    def clear(self) -> None:
        """Delete everything."""

    @abc.abstractmethod
    def save(self) -> None:
        """Persist data if the store needs to."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the store's resources."""

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()