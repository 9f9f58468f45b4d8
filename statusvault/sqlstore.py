"""A store that persists everything in an SQLite database."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from datetime import datetime, timedelta, timezone

from . import sql_queries as queries
from .errors import EndpointNotFoundError, InvalidTimeRangeError, StoreError
from .models import (
    Endpoint,
    EndpointStatus,
    Event,
    EventType,
    Result,
    Store,
    event_from_result,
)
from .paging import EndpointStatusParams

logger = logging.getLogger(__name__)

_SUPPORTED_DRIVERS = ("sqlite",)
_START_EVENT_OFFSET = timedelta(milliseconds=50)


class PathNotSpecifiedError(StoreError, ValueError):
    """The path of the database is blank."""

    def __init__(self, message: str = "path cannot be empty") -> None:
        super().__init__(message)


class DriverNotSpecifiedError(StoreError, ValueError):
    """The database driver is blank."""

    def __init__(self, message: str = "database driver cannot be empty") -> None:
        super().__init__(message)


class SQLStore(Store):
    """Keeps endpoint statuses in a database; every write is persisted immediately."""

    def __init__(self, driver: str, path: str) -> None:
        driver_name = str(driver or "")
        if not driver_name:
            raise DriverNotSpecifiedError()
        if not path:
            raise PathNotSpecifiedError()
        if driver_name not in _SUPPORTED_DRIVERS:
            raise ValueError(f"unsupported database driver: {driver_name}")
        self.driver = driver_name
        self.path = path
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
        for pragma in ("PRAGMA foreign_keys=ON", "PRAGMA journal_mode=WAL", "PRAGMA synchronous=NORMAL"):
            with suppress(sqlite3.Error):
                self._conn.execute(pragma)
        try:
            self.create_schema()
        except BaseException:
            self._conn.close()
            raise

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._conn
            conn.execute("BEGIN")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    with suppress(sqlite3.Error):
                        conn.execute("ROLLBACK")
                raise
            try:
                conn.execute("COMMIT")
            except sqlite3.Error:
                if conn.in_transaction:
                    with suppress(sqlite3.Error):
                        conn.execute("ROLLBACK")
                raise

    def create_schema(self) -> None:
        """Create every table that does not exist yet."""
        with self._lock:
            queries.create_schema(self._conn)

    def _status_by_key(
        self, conn: sqlite3.Connection, key: str, params: EndpointStatusParams
    ) -> EndpointStatus:
        endpoint_id, group, name = queries.get_endpoint_id_group_and_name_by_key(conn, key)
        status = EndpointStatus(name=name, group=group)
        if params.events_page_size > 0:
            try:
                status.events = queries.get_endpoint_events(
                    conn, endpoint_id, params.events_page, params.events_page_size
                )
            except sqlite3.Error as error:
                logger.error("Failed to retrieve events for key=%s: %s", key, error)
        if params.results_page_size > 0:
            try:
                status.results = queries.get_endpoint_results(
                    conn, endpoint_id, params.results_page, params.results_page_size
                )
            except sqlite3.Error as error:
                logger.error("Failed to retrieve results for key=%s: %s", key, error)
        return status

    def get_all_endpoint_statuses(self, params: EndpointStatusParams) -> list[EndpointStatus]:
        with self._transaction() as conn:
            statuses = []
            for key in queries.get_all_endpoint_keys(conn):
                try:
                    statuses.append(self._status_by_key(conn, key, params))
                except (StoreError, sqlite3.Error):
                    continue
            return statuses

    def get_endpoint_status(
        self, group_name: str, endpoint_name: str, params: EndpointStatusParams
    ) -> EndpointStatus:
        return super().get_endpoint_status(group_name, endpoint_name, params)

    def get_endpoint_status_by_key(self, key: str, params: EndpointStatusParams) -> EndpointStatus:
        with self._transaction() as conn:
            return self._status_by_key(conn, key, params)

    def get_uptime_by_key(self, key: str, start: datetime, end: datetime) -> float:
        if start > end:
            raise InvalidTimeRangeError()
        with self._transaction() as conn:
            endpoint_id, _, _ = queries.get_endpoint_id_group_and_name_by_key(conn, key)
            uptime, _ = queries.get_endpoint_uptime(conn, endpoint_id, start, end)
            return uptime

    def get_average_response_time_by_key(self, key: str, start: datetime, end: datetime) -> int:
        if start > end:
            raise InvalidTimeRangeError()
        with self._transaction() as conn:
            endpoint_id, _, _ = queries.get_endpoint_id_group_and_name_by_key(conn, key)
            return queries.get_endpoint_average_response_time(conn, endpoint_id, start, end)

    def get_hourly_average_response_time_by_key(
        self, key: str, start: datetime, end: datetime
    ) -> dict[int, int]:
        if start > end:
            raise InvalidTimeRangeError()
        with self._transaction() as conn:
            endpoint_id, _, _ = queries.get_endpoint_id_group_and_name_by_key(conn, key)
            return queries.get_endpoint_hourly_average_response_times(conn, endpoint_id, start, end)

    def insert(self, endpoint: Endpoint, result: Result) -> None:
        with self._transaction() as conn:
            endpoint_id = self._endpoint_id_creating_if_missing(conn, endpoint)
            self._record_event_if_needed(conn, endpoint, endpoint_id, result)
            try:
                queries.insert_endpoint_result(conn, endpoint_id, result)
            except sqlite3.Error as error:
                logger.error(
                    "Failed to insert result for group=%s; endpoint=%s: %s",
                    endpoint.group,
                    endpoint.name,
                    error,
                )
                raise
            self._clean_up_results(conn, endpoint, endpoint_id)
            try:
                queries.update_endpoint_uptime(conn, endpoint_id, result)
            except sqlite3.Error as error:
                logger.error(
                    "Failed to update uptime for group=%s; endpoint=%s: %s",
                    endpoint.group,
                    endpoint.name,
                    error,
                )
            self._clean_up_uptime(conn, endpoint, endpoint_id)

    def _endpoint_id_creating_if_missing(self, conn: sqlite3.Connection, endpoint: Endpoint) -> int:
        try:
            return queries.get_endpoint_id(conn, endpoint)
        except EndpointNotFoundError:
            try:
                return queries.insert_endpoint(conn, endpoint)
            except sqlite3.Error as error:
                logger.error(
                    "Failed to create endpoint with group=%s; endpoint=%s: %s",
                    endpoint.group,
                    endpoint.name,
                    error,
                )
                raise
        except sqlite3.Error as error:
            logger.error(
                "Failed to retrieve id of endpoint with group=%s; endpoint=%s: %s",
                endpoint.group,
                endpoint.name,
                error,
            )
            raise

    def _insert_event_quietly(
        self, conn: sqlite3.Connection, endpoint: Endpoint, endpoint_id: int, event: Event
    ) -> None:
        try:
            queries.insert_endpoint_event(conn, endpoint_id, event)
        except sqlite3.Error as error:
            logger.error(
                "Failed to insert event=%s for group=%s; endpoint=%s: %s",
                event.type,
                endpoint.group,
                endpoint.name,
                error,
            )

    def _record_event_if_needed(
        self, conn: sqlite3.Connection, endpoint: Endpoint, endpoint_id: int, result: Result
    ) -> None:
        """Add the start event on the first result and an event whenever the outcome flips."""
        try:
            number_of_events = queries.get_number_of_events(conn, endpoint_id)
        except sqlite3.Error as error:
            logger.error(
                "Failed to retrieve total number of events for group=%s; endpoint=%s: %s",
                endpoint.group,
                endpoint.name,
                error,
            )
            number_of_events = 0
        if number_of_events == 0:
            start = Event(type=EventType.START, timestamp=result.timestamp - _START_EVENT_OFFSET)
            self._insert_event_quietly(conn, endpoint, endpoint_id, start)
            self._insert_event_quietly(conn, endpoint, endpoint_id, event_from_result(result))
            return
        try:
            last_success = queries.get_last_result_success(conn, endpoint_id)
        except (StoreError, sqlite3.Error) as error:
            logger.error(
                "Failed to retrieve outcome of previous result for group=%s; endpoint=%s: %s",
                endpoint.group,
                endpoint.name,
                error,
            )
        else:
            if last_success != result.success:
                self._insert_event_quietly(conn, endpoint, endpoint_id, event_from_result(result))
        if number_of_events > queries.EVENTS_CLEAN_UP_THRESHOLD:
            try:
                queries.delete_old_events(conn, endpoint_id)
            except sqlite3.Error as error:
                logger.error(
                    "Failed to delete old events for group=%s; endpoint=%s: %s",
                    endpoint.group,
                    endpoint.name,
                    error,
                )

    def _clean_up_results(self, conn: sqlite3.Connection, endpoint: Endpoint, endpoint_id: int) -> None:
        try:
            number_of_results = queries.get_number_of_results(conn, endpoint_id)
        except sqlite3.Error as error:
            logger.error(
                "Failed to retrieve total number of results for group=%s; endpoint=%s: %s",
                endpoint.group,
                endpoint.name,
                error,
            )
            return
        if number_of_results > queries.RESULTS_CLEAN_UP_THRESHOLD:
            try:
                queries.delete_old_results(conn, endpoint_id)
            except sqlite3.Error as error:
                logger.error(
                    "Failed to delete old results for group=%s; endpoint=%s: %s",
                    endpoint.group,
                    endpoint.name,
                    error,
                )

    def _clean_up_uptime(self, conn: sqlite3.Connection, endpoint: Endpoint, endpoint_id: int) -> None:
        try:
            age = queries.get_age_of_oldest_uptime_entry(conn, endpoint_id)
        except (StoreError, sqlite3.Error) as error:
            logger.error(
                "Failed to retrieve oldest endpoint uptime entry for group=%s; endpoint=%s: %s",
                endpoint.group,
                endpoint.name,
                error,
            )
            return
        if age > queries.UPTIME_CLEAN_UP_THRESHOLD:
            max_age = datetime.now(timezone.utc) - (queries.UPTIME_RETENTION + timedelta(hours=1))
            try:
                queries.delete_old_uptime_entries(conn, endpoint_id, max_age)
            except sqlite3.Error as error:
                logger.error(
                    "Failed to delete old uptime entries for group=%s; endpoint=%s: %s",
                    endpoint.group,
                    endpoint.name,
                    error,
                )

    def delete_all_endpoint_statuses_not_in_keys(self, keys: list[str]) -> int:
        keys = list(keys)
        if keys:
            placeholders = ",".join("?" * len(keys))
            query = f"DELETE FROM endpoints WHERE endpoint_key NOT IN ({placeholders})"
        else:
            query = "DELETE FROM endpoints"
        with self._lock:
            try:
                cursor = self._conn.execute(query, keys)
            except sqlite3.Error as error:
                logger.error("Failed to delete rows that do not belong to any of keys=%s: %s", keys, error)
                return 0
        return max(cursor.rowcount, 0)

    def clear(self) -> None:
        with self._lock, suppress(sqlite3.Error):
            self._conn.execute("DELETE FROM endpoints")

    def save(self) -> None:
        """Nothing to do: every write is already persisted."""

    def close(self) -> None:
        with self._lock, suppress(sqlite3.Error):
            self._conn.close()