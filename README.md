# statusvault

statusvault keeps the history of endpoint health checks. For each endpoint it stores:

- its results, bounded to the most recent 100;
- the events that mark when it started being recorded and when it changed between healthy and unhealthy, bounded to the most recent 50;
- statistics for each hour: how many checks ran, how many succeeded, and the total response time in milliseconds.

From these it works out uptime, average response time and hourly average response time over a time range.

Two backends implement the same `statusvault.models.Store` interface:

- `statusvault.memory.MemoryStore` keeps everything in memory. It can optionally save to a JSON file and load from it.
- `statusvault.sqlstore.SQLStore` keeps everything in an SQLite database. Every write is persisted at once.

Both stores are context managers. Leaving the `with` block calls `close()`.

## Installation

```
pip install statusvault
```

The package uses only the standard library. The `test` extra installs pytest: `pip install "statusvault[test]"`.

## Configuring the process-wide store

```python
from statusvault.config import StorageConfig, StorageType
from statusvault import store

cfg = StorageConfig(type=StorageType.SQLITE, path="data.db")
cfg.validate_and_set_defaults()
store.initialize(cfg)

backend = store.get()
```

### Validation

`StorageConfig.validate_and_set_defaults()` checks the configuration and fills in defaults:

- If no type is given, it sets the type to `StorageType.MEMORY`.
- If the deprecated `file` field is set, it copies it into `path` and logs a warning.
- A memory store with a `path` is accepted, with a warning.

It raises `StorageConfigError` in two cases:

- both `file` and `path` are set;
- the type is SQLite or Postgres and there is no path.

### Choosing and managing the store

`store.initialize(cfg)` chooses the store as follows:

- An `"sqlite"` type creates an `SQLStore`.
- A memory store with a path creates a `MemoryStore` that loads the file. A background thread then saves it every seven minutes (`store.AUTO_SAVE_INTERVAL`).
- With no path, it creates a plain in-memory store.

`initialize(None)` behaves like an empty configuration.

`store.get()` returns the current store. If `initialize` has not been called, it first creates a default in-memory store.

`store.shutdown()` stops the background save job and closes the current store.

## Recording results

```python
from datetime import datetime, timedelta, timezone
from statusvault.models import Endpoint, Result, ConditionResult

endpoint = Endpoint(name="front-end", group="core")
result = Result(
    success=True,
    timestamp=datetime.now(timezone.utc),
    duration=timedelta(milliseconds=150),
    http_status=200,
    condition_results=[ConditionResult(condition="[STATUS] == 200", success=True)],
)
backend.insert(endpoint, result)
```

### Keys

Each endpoint is stored under a key built from its group and name. The name parts are lower-cased and trimmed, and `/`, `_`, `.`, `,` and spaces become `-`. For example, group `Core` with name `Front End` gives the key `core_front-end`.

`Endpoint.key()` and `statusvault.key.convert_group_and_endpoint_name_to_key` compute this key.

### Events

The first result of an endpoint adds a `START` event, followed by a `HEALTHY` or `UNHEALTHY` event. After that, a new event is added only when a result's outcome differs from the previous one.

`statusvault.models.event_from_result` builds the event that a result marks.

## Querying

```python
from statusvault.paging import EndpointStatusParams

params = EndpointStatusParams().with_results(1, 20).with_events(1, 50)
status = backend.get_endpoint_status("core", "front-end", params)

now = datetime.now(timezone.utc)
day_ago = now - timedelta(hours=24)
uptime = backend.get_uptime_by_key(endpoint.key(), day_ago, now)        # 0.0 to 1.0
average_ms = backend.get_average_response_time_by_key(endpoint.key(), day_ago, now)
hourly = backend.get_hourly_average_response_time_by_key(endpoint.key(), day_ago, now)
```

`get_all_endpoint_statuses(params)` returns every endpoint status, sorted by key.

### Paging

Pages are numbered from 1. A page size of 0 returns nothing.

- **Results:** page 1 holds the most recent results in both stores. Within a page, results run from oldest to newest.
- **Events in `MemoryStore`:** page 1 holds the most recent events.
- **Events in `SQLStore`:** pages are counted from the oldest event.

### Hourly averages

`get_hourly_average_response_time_by_key` returns a dictionary. Its keys are the unix timestamp of the start of each hour that had checks. Its values are the average response time in milliseconds for that hour.

### Errors

The query methods raise these errors from `statusvault.errors`:

- `EndpointNotFoundError` when the key is unknown.
- `InvalidTimeRangeError` when `start` is later than `end`.

Both derive from `StoreError`.

## Retention

`MemoryStore` trims results to 100 and events to 50 on every insert. Once an endpoint has more than 240 hourly entries, it drops the hours older than seven days and one hour.

`SQLStore` cleans up during inserts:

- When an endpoint has more than 60 events, it keeps the newest 50.
- When it has more than 110 results, it keeps the newest 100.
- When the oldest hourly entry is more than ten days old, it deletes the entries older than seven days and one hour.

## Maintenance

`delete_all_endpoint_statuses_not_in_keys(keys)` removes every endpoint whose key is not in `keys` and returns how many were removed. An empty list removes everything.

`clear()` empties the store.

`save()` writes a `MemoryStore` to its file. It does nothing for a `MemoryStore` without a file, or for an `SQLStore`.

## Lower-level SQLite access

`SQLStore(driver, path)` raises these errors:

- `DriverNotSpecifiedError` when the driver is blank.
- `PathNotSpecifiedError` when the path is blank.
- `ValueError` for any driver other than `"sqlite"`.

`statusvault.sql_queries` holds the schema (`create_schema`) and the individual queries the SQL store is built from. Each takes an open `sqlite3.Connection` and leaves committing to the caller. `get_last_result_success` and `get_age_of_oldest_uptime_entry` raise `NoRowsReturnedError` when there is nothing to read.

## What this package does not do

- It does not run health checks. Results must be produced elsewhere and passed to `insert`.
- It does not send alerts.
- It has no command-line program or web interface.
- `StorageType.POSTGRES` is accepted by `StorageConfig`, but there is no Postgres backend. Initializing a store with that type raises `ValueError`.