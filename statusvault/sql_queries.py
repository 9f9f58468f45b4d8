"""SQLite schema and the queries the SQL store is built from.

Every function works on an open ``sqlite3.Connection`` and leaves committing
or rolling back to its caller.
"""

from __future__ import annotations

import math
import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from datetime import datetime, timedelta, timezone

from .errors import (
    MAXIMUM_NUMBER_OF_EVENTS,
    MAXIMUM_NUMBER_OF_RESULTS,
    EndpointNotFoundError,
    StoreError,
)
from .models import ConditionResult, Endpoint, Event, EventType, Result

ARRAY_SEPARATOR = "|~|"
"""Separator of the several errors of a result kept in one column."""

UPTIME_CLEAN_UP_THRESHOLD = timedelta(days=10)
"""Age of the oldest uptime entry above which old entries are deleted."""

EVENTS_CLEAN_UP_THRESHOLD = MAXIMUM_NUMBER_OF_EVENTS + 10
"""Number of events above which old events are deleted."""

RESULTS_CLEAN_UP_THRESHOLD = MAXIMUM_NUMBER_OF_RESULTS + 10
"""Number of results above which old results are deleted."""

UPTIME_RETENTION = timedelta(days=7)
"""How long uptime entries are kept once a clean up happens."""

_MAX_VARIABLES_PER_QUERY = 500

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS endpoints (
        endpoint_id    INTEGER PRIMARY KEY,
        endpoint_key   TEXT UNIQUE,
        endpoint_name  TEXT,
        endpoint_group TEXT,
        UNIQUE(endpoint_name, endpoint_group)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS endpoint_events (
        endpoint_event_id  INTEGER PRIMARY KEY,
        endpoint_id        INTEGER REFERENCES endpoints(endpoint_id) ON DELETE CASCADE,
        event_type         TEXT,
        event_timestamp    TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS endpoint_results (
        endpoint_result_id     INTEGER PRIMARY KEY,
        endpoint_id            INTEGER REFERENCES endpoints(endpoint_id) ON DELETE CASCADE,
        success                INTEGER,
        errors                 TEXT,
        connected              INTEGER,
        status                 INTEGER,
        dns_rcode              TEXT,
        certificate_expiration INTEGER,
        hostname               TEXT,
        ip                     TEXT,
        duration               INTEGER,
        timestamp              TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS endpoint_result_conditions (
        endpoint_result_condition_id  INTEGER PRIMARY KEY,
        endpoint_result_id            INTEGER REFERENCES endpoint_results(endpoint_result_id) ON DELETE CASCADE,
        condition                     TEXT,
        success                       INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS endpoint_uptimes (
        endpoint_uptime_id    INTEGER PRIMARY KEY,
        endpoint_id           INTEGER REFERENCES endpoints(endpoint_id) ON DELETE CASCADE,
        hour_unix_timestamp   INTEGER,
        total_executions      INTEGER,
        successful_executions INTEGER,
        total_response_time   INTEGER,
        UNIQUE(endpoint_id, hour_unix_timestamp)
    )
    """,
)


class NoRowsReturnedError(StoreError, LookupError):
    """A query expected to return a row returned none."""

    def __init__(self, message: str = "expected a row to be returned, but none was") -> None:
        super().__init__(message)


def _unix(moment: datetime) -> int:
    return math.floor(moment.timestamp())


def _unix_hour(moment: datetime) -> int:
    unix = _unix(moment)
    return unix - unix % 3600


def _to_db_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat()


def _from_db_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _to_nanoseconds(delta: timedelta) -> int:
    return (delta // timedelta(microseconds=1)) * 1000


def _from_nanoseconds(value: int | None) -> timedelta:
    return timedelta(microseconds=(value or 0) // 1000)


def _milliseconds(delta: timedelta) -> int:
    return delta // timedelta(milliseconds=1)


def _chunks(items: Sequence[int], size: int) -> Iterator[Sequence[int]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def create_schema(conn: sqlite3.Connection) -> None:
    """Create every table that does not exist yet."""
    for statement in _SCHEMA:
        conn.execute(statement)


def insert_endpoint(conn: sqlite3.Connection, endpoint: Endpoint) -> int:
    """Insert an endpoint and return its generated id."""
    cursor = conn.execute(
        "INSERT INTO endpoints (endpoint_key, endpoint_name, endpoint_group) VALUES (?, ?, ?)",
        (endpoint.key(), endpoint.name, endpoint.group),
    )
    return cursor.lastrowid


def insert_endpoint_event(conn: sqlite3.Connection, endpoint_id: int, event: Event) -> None:
    """Insert an event for an endpoint."""
    conn.execute(
        "INSERT INTO endpoint_events (endpoint_id, event_type, event_timestamp) VALUES (?, ?, ?)",
        (endpoint_id, EventType(event.type).value, _to_db_timestamp(event.timestamp)),
    )


def insert_endpoint_result(conn: sqlite3.Connection, endpoint_id: int, result: Result) -> None:
    """Insert a result and its condition results for an endpoint."""
    cursor = conn.execute(
        """
        INSERT INTO endpoint_results (endpoint_id, success, errors, connected, status, dns_rcode,
                                      certificate_expiration, hostname, ip, duration, timestamp)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            endpoint_id,
            result.success,
            ARRAY_SEPARATOR.join(result.errors),
            result.connected,
            result.http_status,
            result.dns_rcode,
            _to_nanoseconds(result.certificate_expiration),
            result.hostname,
            result.ip,
            _to_nanoseconds(result.duration),
            _to_db_timestamp(result.timestamp),
        ),
    )
    insert_condition_results(conn, cursor.lastrowid, result.condition_results)


def insert_condition_results(
    conn: sqlite3.Connection,
    endpoint_result_id: int,
    condition_results: Iterable[ConditionResult],
) -> None:
    """Insert the condition results that belong to a result."""
    for condition_result in condition_results:
        conn.execute(
            "INSERT INTO endpoint_result_conditions (endpoint_result_id, condition, success) VALUES (?, ?, ?)",
            (endpoint_result_id, condition_result.condition, condition_result.success),
        )


def update_endpoint_uptime(conn: sqlite3.Connection, endpoint_id: int, result: Result) -> None:
    """Count a result in the uptime entry of the hour it belongs to."""
    conn.execute(
        """
        INSERT INTO endpoint_uptimes (endpoint_id, hour_unix_timestamp, total_executions,
                                      successful_executions, total_response_time)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(endpoint_id, hour_unix_timestamp) DO UPDATE SET
            total_executions = excluded.total_executions + endpoint_uptimes.total_executions,
            successful_executions = excluded.successful_executions + endpoint_uptimes.successful_executions,
            total_response_time = excluded.total_response_time + endpoint_uptimes.total_response_time
        """,
        (
            endpoint_id,
            _unix_hour(result.timestamp),
            1,
            1 if result.success else 0,
            _milliseconds(result.duration),
        ),
    )


def get_all_endpoint_keys(conn: sqlite3.Connection) -> list[str]:
    """Keys of every endpoint, sorted."""
    rows = conn.execute("SELECT endpoint_key FROM endpoints ORDER BY endpoint_key")
    return [key for (key,) in rows]


def get_endpoint_id_group_and_name_by_key(conn: sqlite3.Connection, key: str) -> tuple[int, str, str]:
    """Id, group and name of the endpoint with this key; raises EndpointNotFoundError."""
    row = conn.execute(
        """
        SELECT endpoint_id, endpoint_group, endpoint_name
        FROM endpoints
        WHERE endpoint_key = ?
        LIMIT 1
        """,
        (key,),
    ).fetchone()
    if row is None:
        raise EndpointNotFoundError()
    endpoint_id, group, name = row
    return endpoint_id, group, name


def get_endpoint_events(
    conn: sqlite3.Connection, endpoint_id: int, page: int, page_size: int
) -> list[Event]:
    """A page of an endpoint's events, oldest first."""
    rows = conn.execute(
        """
        SELECT event_type, event_timestamp
        FROM endpoint_events
        WHERE endpoint_id = ?
        ORDER BY endpoint_event_id ASC
        LIMIT ? OFFSET ?
        """,
        (endpoint_id, page_size, (page - 1) * page_size),
    ).fetchall()
    return [
        Event(type=EventType(event_type), timestamp=_from_db_timestamp(timestamp))
        for event_type, timestamp in rows
    ]


def get_endpoint_results(
    conn: sqlite3.Connection, endpoint_id: int, page: int, page_size: int
) -> list[Result]:
    """A page of an endpoint's results counted from the newest, returned oldest first."""
    rows = conn.execute(
        """
        SELECT endpoint_result_id, success, errors, connected, status, dns_rcode,
               certificate_expiration, hostname, ip, duration, timestamp
        FROM endpoint_results
        WHERE endpoint_id = ?
        ORDER BY endpoint_result_id DESC
        LIMIT ? OFFSET ?
        """,
        (endpoint_id, page_size, (page - 1) * page_size),
    ).fetchall()
    results_by_id: dict[int, Result] = {}
    results: list[Result] = []
    for (
        result_id,
        success,
        joined_errors,
        connected,
        status,
        dns_rcode,
        certificate_expiration,
        hostname,
        ip,
        duration,
        timestamp,
    ) in reversed(rows):
        result = Result(
            success=bool(success),
            timestamp=_from_db_timestamp(timestamp),
            hostname=hostname or "",
            ip=ip or "",
            http_status=status or 0,
            dns_rcode=dns_rcode or "",
            errors=joined_errors.split(ARRAY_SEPARATOR) if joined_errors else [],
            connected=bool(connected),
            duration=_from_nanoseconds(duration),
            certificate_expiration=_from_nanoseconds(certificate_expiration),
        )
        results.append(result)
        results_by_id[result_id] = result
    for ids in _chunks(list(results_by_id), _MAX_VARIABLES_PER_QUERY):
        placeholders = ",".join("?" * len(ids))
        condition_rows = conn.execute(
            f"""
            SELECT endpoint_result_id, condition, success
            FROM endpoint_result_conditions
            WHERE endpoint_result_id IN ({placeholders})
            ORDER BY endpoint_result_condition_id
            """,
            tuple(ids),
        )
        for result_id, condition, success in condition_rows:
            results_by_id[result_id].condition_results.append(
                ConditionResult(condition=condition, success=bool(success))
            )
    return results


def get_endpoint_uptime(
    conn: sqlite3.Connection, endpoint_id: int, start: datetime, end: datetime
) -> tuple[float, timedelta]:
    """Uptime ratio and average response time of an endpoint over a time range."""
    row = conn.execute(
        """
        SELECT SUM(total_executions), SUM(successful_executions), SUM(total_response_time)
        FROM endpoint_uptimes
        WHERE endpoint_id = ?
            AND hour_unix_timestamp >= ?
            AND hour_unix_timestamp <= ?
        """,
        (endpoint_id, _unix(start), _unix(end)),
    ).fetchone()
    total, successful, response_time = (value or 0 for value in row)
    if total <= 0:
        return 0.0, timedelta(0)
    return successful / total, timedelta(milliseconds=int(response_time / total))


def get_endpoint_average_response_time(
    conn: sqlite3.Connection, endpoint_id: int, start: datetime, end: datetime
) -> int:
    """Average response time in milliseconds of an endpoint over a time range."""
    row = conn.execute(
        """
        SELECT SUM(total_executions), SUM(total_response_time)
        FROM endpoint_uptimes
        WHERE endpoint_id = ?
            AND total_executions > 0
            AND hour_unix_timestamp >= ?
            AND hour_unix_timestamp <= ?
        """,
        (endpoint_id, _unix(start), _unix(end)),
    ).fetchone()
    total, response_time = (value or 0 for value in row)
    if total == 0:
        return 0
    return int(response_time / total)


def get_endpoint_hourly_average_response_times(
    conn: sqlite3.Connection, endpoint_id: int, start: datetime, end: datetime
) -> dict[int, int]:
    """Average response time in milliseconds per hour of an endpoint over a time range."""
    rows = conn.execute(
        """
        SELECT hour_unix_timestamp, total_executions, total_response_time
        FROM endpoint_uptimes
        WHERE endpoint_id = ?
            AND total_executions > 0
            AND hour_unix_timestamp >= ?
            AND hour_unix_timestamp <= ?
        """,
        (endpoint_id, _unix(start), _unix(end)),
    )
    return {hour: int(response_time / total) for hour, total, response_time in rows}


def get_endpoint_id(conn: sqlite3.Connection, endpoint: Endpoint) -> int:
    """Id of an endpoint; raises EndpointNotFoundError."""
    row = conn.execute(
        "SELECT endpoint_id FROM endpoints WHERE endpoint_key = ?", (endpoint.key(),)
    ).fetchone()
    if row is None:
        raise EndpointNotFoundError()
    return row[0]


def get_number_of_events(conn: sqlite3.Connection, endpoint_id: int) -> int:
    """How many events an endpoint has."""
    (count,) = conn.execute(
        "SELECT COUNT(1) FROM endpoint_events WHERE endpoint_id = ?", (endpoint_id,)
    ).fetchone()
    return count


def get_number_of_results(conn: sqlite3.Connection, endpoint_id: int) -> int:
    """How many results an endpoint has."""
    (count,) = conn.execute(
        "SELECT COUNT(1) FROM endpoint_results WHERE endpoint_id = ?", (endpoint_id,)
    ).fetchone()
    return count


def get_age_of_oldest_uptime_entry(conn: sqlite3.Connection, endpoint_id: int) -> timedelta:
    """Time since the hour of an endpoint's oldest uptime entry; raises NoRowsReturnedError."""
    row = conn.execute(
        """
        SELECT hour_unix_timestamp
        FROM endpoint_uptimes
        WHERE endpoint_id = ?
        ORDER BY hour_unix_timestamp
        LIMIT 1
        """,
        (endpoint_id,),
    ).fetchone()
    if row is None:
        raise NoRowsReturnedError()
    return datetime.now(timezone.utc) - datetime.fromtimestamp(row[0], timezone.utc)


def get_last_result_success(conn: sqlite3.Connection, endpoint_id: int) -> bool:
    """Whether an endpoint's newest result succeeded; raises NoRowsReturnedError."""
    row = conn.execute(
        "SELECT success FROM endpoint_results WHERE endpoint_id = ? ORDER BY endpoint_result_id DESC LIMIT 1",
        (endpoint_id,),
    ).fetchone()
    if row is None:
        raise NoRowsReturnedError()
    return bool(row[0])


def delete_old_events(conn: sqlite3.Connection, endpoint_id: int) -> None:
    """Delete all but the newest MAXIMUM_NUMBER_OF_EVENTS events of an endpoint."""
    conn.execute(
        """
        DELETE FROM endpoint_events
        WHERE endpoint_id = ?
            AND endpoint_event_id NOT IN (
                SELECT endpoint_event_id
                FROM endpoint_events
                WHERE endpoint_id = ?
                ORDER BY endpoint_event_id DESC
                LIMIT ?
            )
        """,
        (endpoint_id, endpoint_id, MAXIMUM_NUMBER_OF_EVENTS),
    )


def delete_old_results(conn: sqlite3.Connection, endpoint_id: int) -> None:
    """Delete all but the newest MAXIMUM_NUMBER_OF_RESULTS results of an endpoint."""
    conn.execute(
        """
        DELETE FROM endpoint_results
        WHERE endpoint_id = ?
            AND endpoint_result_id NOT IN (
                SELECT endpoint_result_id
                FROM endpoint_results
                WHERE endpoint_id = ?
                ORDER BY endpoint_result_id DESC
                LIMIT ?
            )
        """,
        (endpoint_id, endpoint_id, MAXIMUM_NUMBER_OF_RESULTS),
    )


def delete_old_uptime_entries(conn: sqlite3.Connection, endpoint_id: int, max_age: datetime) -> None:
    """Delete an endpoint's uptime entries for hours before max_age."""
    conn.execute(
        "DELETE FROM endpoint_uptimes WHERE endpoint_id = ? AND hour_unix_timestamp < ?",
        (endpoint_id, _unix(max_age)),
    )