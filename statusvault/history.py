"""Bookkeeping of results, events and hourly uptime for one endpoint status."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

from .errors import MAXIMUM_NUMBER_OF_EVENTS, MAXIMUM_NUMBER_OF_RESULTS
from .models import (
    EndpointStatus,
    HourlyUptimeStatistics,
    Result,
    Uptime,
    event_from_result,
)
from .paging import EndpointStatusParams

NUMBER_OF_HOURS_IN_TEN_DAYS = 10 * 24
"""Number of hourly entries above which old uptime entries are cleaned up."""

_SEVEN_DAYS = timedelta(days=7)
_MILLISECOND = timedelta(milliseconds=1)


def _unix_hour(moment: datetime) -> int:
    unix = math.floor(moment.timestamp())
    return unix - unix % 3600


def process_uptime_after_result(uptime: Uptime, result: Result) -> None:
    """Count a result in the statistics of its hour, dropping stale hours when there are too many."""
    hour = _unix_hour(result.timestamp)
    stats = uptime.hourly_statistics.get(hour)
    if stats is None:
        stats = HourlyUptimeStatistics()
        uptime.hourly_statistics[hour] = stats
    if result.success:
        stats.successful_executions += 1
    stats.total_executions += 1
    stats.total_executions_response_time += result.duration // _MILLISECOND
    # Only clean up once there are more entries than ten days' worth, even though
    # everything older than seven days goes, so the sweep does not run on every result.
    if len(uptime.hourly_statistics) > NUMBER_OF_HOURS_IN_TEN_DAYS:
        cutoff = math.floor(
            (datetime.now(timezone.utc) - (_SEVEN_DAYS + timedelta(hours=1))).timestamp()
        )
        stale = [hour_key for hour_key in uptime.hourly_statistics if cutoff > hour_key]
        for hour_key in stale:
            del uptime.hourly_statistics[hour_key]


def _page_bounds(count: int, page: int, page_size: int) -> tuple[int, int] | None:
    """Slice bounds of a page counted from the newest entry, or None if the page is empty."""
    if page < 1 or page_size < 0:
        return None
    start = count - page * page_size
    end = count - (page - 1) * page_size
    if start > count:
        return None
    start = max(start, 0)
    end = min(end, count)
    if end < 0:
        return None
    return start, end


def shallow_copy_endpoint_status(
    status: EndpointStatus, params: EndpointStatusParams
) -> EndpointStatus:
    """A copy of a status holding only the page of results and events that params select."""
    results_bounds = _page_bounds(len(status.results), params.results_page, params.results_page_size)
    events_bounds = _page_bounds(len(status.events), params.events_page, params.events_page_size)
    results = status.results[slice(*results_bounds)] if results_bounds else []
    events = status.events[slice(*events_bounds)] if events_bounds else []
    return EndpointStatus(
        name=status.name,
        group=status.group,
        key=status.key,
        results=results,
        events=events,
        uptime=Uptime(),
    )


def add_result(status: EndpointStatus | None, result: Result) -> None:
    """Append a result, record a state change as an event and keep both lists bounded."""
    if status is None:
        return
    if not status.results or status.results[-1].success != result.success:
        status.events.append(event_from_result(result))
        if len(status.events) > MAXIMUM_NUMBER_OF_EVENTS:
            del status.events[: len(status.events) - MAXIMUM_NUMBER_OF_EVENTS]
    status.results.append(result)
    if len(status.results) > MAXIMUM_NUMBER_OF_RESULTS:
        del status.results[: len(status.results) - MAXIMUM_NUMBER_OF_RESULTS]
    if status.uptime is None:
        status.uptime = Uptime()
    process_uptime_after_result(status.uptime, result)