"""The process-wide store, chosen by the storage configuration."""

from __future__ import annotations

import logging
import threading
from datetime import timedelta

from .config import StorageConfig, StorageType
from .memory import MemoryStore
from .models import Store
from .sqlstore import SQLStore

logger = logging.getLogger(__name__)

AUTO_SAVE_INTERVAL = timedelta(minutes=7)
"""How often a memory store with a file is saved in the background."""

_SQL_DRIVERS = (StorageType.SQLITE.value, StorageType.POSTGRES.value)

_lock = threading.RLock()
_store: Store | None = None
_initialized = False
_stop_auto_save: threading.Event | None = None
_auto_save_thread: threading.Thread | None = None


def _auto_save(target: Store, interval: float, stop: threading.Event) -> None:
    """Save the store every interval seconds until stop is set."""
    while not stop.wait(interval):
        logger.info("Saving")
        try:
            target.save()
        except Exception as error:  # a failed save must not end the job
            logger.error("Save failed: %s", error)
    logger.info("Stopping active job")


def _stop_auto_save_job() -> None:
    global _stop_auto_save, _auto_save_thread
    if _stop_auto_save is not None:
        _stop_auto_save.set()
    if _auto_save_thread is not None and _auto_save_thread is not threading.current_thread():
        _auto_save_thread.join(timeout=5)
    _stop_auto_save = None
    _auto_save_thread = None


def _start_auto_save_job(target: Store) -> None:
    global _stop_auto_save, _auto_save_thread
    _stop_auto_save = threading.Event()
    _auto_save_thread = threading.Thread(
        target=_auto_save,
        args=(target, AUTO_SAVE_INTERVAL.total_seconds(), _stop_auto_save),
        name="statusvault-autosave",
        daemon=True,
    )
    _auto_save_thread.start()


def _driver_name(storage_type: StorageType | str) -> str:
    if isinstance(storage_type, StorageType):
        return storage_type.value
    return str(storage_type or "")


def initialize(cfg: StorageConfig | None = None) -> None:
    """Create the store that the configuration asks for and make it the current one."""
    global _store, _initialized
    with _lock:
        _initialized = True
        _stop_auto_save_job()
        if cfg is None:
            logger.info("No storage configuration given, defaulting to an empty configuration")
            cfg = StorageConfig()
        driver = _driver_name(cfg.type)
        if not cfg.path and driver != StorageType.POSTGRES.value:
            logger.info("Creating storage provider of type=%s", driver)
        if driver in _SQL_DRIVERS:
            _store = SQLStore(driver, cfg.path)
        elif cfg.path:
            _store = MemoryStore(cfg.path)
            _start_auto_save_job(_store)
        else:
            _store = MemoryStore("")


def get() -> Store:
    """The current store, creating a default in-memory one if none was initialized."""
    with _lock:
        if not _initialized:
            logger.warning("Provider requested before it was initialized, automatically initializing")
            try:
                initialize(None)
            except Exception as error:
                raise RuntimeError(f"failed to automatically initialize store: {error}") from error
        if _store is None:
            raise RuntimeError("store is not available")
        return _store


def shutdown() -> None:
    """Stop the background save job and close the current store."""
    global _store, _initialized
    with _lock:
        _stop_auto_save_job()
        if _store is not None:
            _store.close()
        _store = None
        _initialized = False