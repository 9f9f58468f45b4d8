"""A store that keeps everything in memory, optionally saved to a JSON file."""

from __future__ import annotations

import json
import logging
import math
import os
import tempfile
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from .errors import EndpointNotFoundError, InvalidTimeRangeError
from .history import add_result, shallow_copy_endpoint_status
from .models import (
    ConditionResult,
    Endpoint,
    EndpointStatus,
    Event,
    EventType,
    HourlyUptimeStatistics,
    Result,
    Store,
    Uptime,
)
from .paging import EndpointStatusParams

logger = logging.getLogger(__name__)

_HOUR = timedelta(hours=1)


def _unix_hour(moment: datetime) -> int:
    unix = math.floor(moment.timestamp())
    return unix - unix % 3600


def _micros(delta: timedelta) -> int:
    return delta // timedelta(microseconds=1)


def _result_to_dict(result: Result) -> dict[str, Any]:
    return {
        "success": result.success,
        "timestamp": result.timestamp.isoformat(),
        "hostname": result.hostname,
        "ip": result.ip,
        "http_status": result.http_status,
        "dns_rcode": result.dns_rcode,
        "errors": list(result.errors),
        "connected": result.connected,
        "duration": _micros(result.duration),
        "certificate_expiration": _micros(result.certificate_expiration),
        "condition_results": [
            {"condition": cr.condition, "success": cr.success} for cr in result.condition_results
        ],
    }


def _result_from_dict(data: dict[str, Any]) -> Result:
    return Result(
        success=data["success"],
        timestamp=datetime.fromisoformat(data["timestamp"]),
        hostname=data["hostname"],
        ip=data["ip"],
        http_status=data["http_status"],
        dns_rcode=data["dns_rcode"],
        errors=list(data["errors"]),
        connected=data["connected"],
        duration=timedelta(microseconds=data["duration"]),
        certificate_expiration=timedelta(microseconds=data["certificate_expiration"]),
        condition_results=[
            ConditionResult(condition=cr["condition"], success=cr["success"])
            for cr in data["condition_results"]
        ],
    )


def _status_to_dict(status: EndpointStatus) -> dict[str, Any]:
    uptime = status.uptime or Uptime()
    return {
        "name": status.name,
        "group": status.group,
        "key": status.key,
        "results": [_result_to_dict(result) for result in status.results],
        "events": [
            {"type": event.type.value, "timestamp": event.timestamp.isoformat()}
            for event in status.events
        ],
        "uptime": {
            str(hour): {
                "total_executions": stats.total_executions,
                "successful_executions": stats.successful_executions,
                "total_executions_response_time": stats.total_executions_response_time,
            }
            for hour, stats in uptime.hourly_statistics.items()
        },
    }


def _status_from_dict(data: dict[str, Any]) -> EndpointStatus:
    return EndpointStatus(
        name=data["name"],
        group=data["group"],
        key=data["key"],
        results=[_result_from_dict(result) for result in data["results"]],
        events=[
            Event(type=EventType(event["type"]), timestamp=datetime.fromisoformat(event["timestamp"]))
            for event in data["events"]
        ],
        uptime=Uptime(
            hourly_statistics={
                int(hour): HourlyUptimeStatistics(**stats) for hour, stats in data["uptime"].items()
            }
        ),
    )


class MemoryStore(Store):
    """Holds every endpoint status in memory; saves to ``file`` when it is not blank."""

    def __init__(self, file: str = "") -> None:
        self._file = file
        self._lock = threading.RLock()
        self._statuses: dict[str, EndpointStatus] = {}
        if file:
            self._load(Path(file))

    def _load(self, path: Path) -> None:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        if not text.strip():
            return
        data = json.loads(text)
        self._statuses = {key: _status_from_dict(value) for key, value in data.items()}

    def _find_with_uptime(self, key: str) -> EndpointStatus:
        status = self._statuses.get(key)
        if status is None or status.uptime is None:
            raise EndpointNotFoundError()
        return status

    def _hourly_stats_in_range(self, key: str, start: datetime, end: datetime):
        """Yield (hour, stats) for every hour with executions, stepping from start to end."""
        if start > end:
            raise InvalidTimeRangeError()
        with self._lock:
            status = self._find_with_uptime(key)
            statistics = dict(status.uptime.hourly_statistics)
        current = start
        while current <= end:
            hour = _unix_hour(current)
            stats = statistics.get(hour)
            if stats is not None and stats.total_executions:
                yield hour, stats
            current += _HOUR

    def get_all_endpoint_statuses(self, params: EndpointStatusParams) -> list[EndpointStatus]:
        with self._lock:
            statuses = [shallow_copy_endpoint_status(s, params) for s in self._statuses.values()]
        return sorted(statuses, key=lambda status: status.key)

    def get_endpoint_status(
        self, group_name: str, endpoint_name: str, params: EndpointStatusParams
    ) -> EndpointStatus:
        return super().get_endpoint_status(group_name, endpoint_name, params)

    def get_endpoint_status_by_key(self, key: str, params: EndpointStatusParams) -> EndpointStatus:
        with self._lock:
            status = self._statuses.get(key)
            if status is None:
                raise EndpointNotFoundError()
            return shallow_copy_endpoint_status(status, params)

    def get_uptime_by_key(self, key: str, start: datetime, end: datetime) -> float:
        successful = total = 0
        for _, stats in self._hourly_stats_in_range(key, start, end):
            successful += stats.successful_executions
            total += stats.total_executions
        return successful / total if total else 0.0

    def get_average_response_time_by_key(self, key: str, start: datetime, end: datetime) -> int:
        total = response_time = 0
        for _, stats in self._hourly_stats_in_range(key, start, end):
            total += stats.total_executions
            response_time += stats.total_executions_response_time
        return int(response_time / total) if total else 0

    def get_hourly_average_response_time_by_key(
        self, key: str, start: datetime, end: datetime
    ) -> dict[int, int]:
        return {
            hour: int(stats.total_executions_response_time / stats.total_executions)
            for hour, stats in self._hourly_stats_in_range(key, start, end)
        }

    def insert(self, endpoint: Endpoint, result: Result) -> None:
        key = endpoint.key()
        with self._lock:
            status = self._statuses.get(key)
            if status is None:
                status = EndpointStatus(name=endpoint.name, group=endpoint.group)
                status.events.append(Event(type=EventType.START, timestamp=datetime.now(timezone.utc)))
                self._statuses[key] = status
            add_result(status, result)

    def delete_all_endpoint_statuses_not_in_keys(self, keys: list[str]) -> int:
        kept = set(keys)
        with self._lock:
            doomed = [key for key in self._statuses if key not in kept]
            for key in doomed:
                del self._statuses[key]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._statuses.clear()

    def save(self) -> None:
        """Write every status to the store file, if there is one."""
        if not self._file:
            return
        with self._lock:
            data = {key: _status_to_dict(status) for key, status in self._statuses.items()}
        path = Path(self._file)
        directory = path.parent if str(path.parent) else Path(".")
        fd, temporary = tempfile.mkstemp(dir=directory, prefix=path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle)
            os.replace(temporary, path)
        except BaseException:
            Path(temporary).unlink(missing_ok=True)
            raise

    def close(self) -> None:
        """Nothing to release for this store."""