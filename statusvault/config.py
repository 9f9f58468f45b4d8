"""Storage configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class StorageType(str, Enum):
    """Kind of store."""

    MEMORY = "memory"
    SQLITE = "sqlite"
    POSTGRES = "postgres"

    def __str__(self) -> str:
        return self.value


class StorageConfigError(ValueError):
    """The storage configuration is invalid."""


_SQL_STORAGE_REQUIRES_PATH = "sql storage requires a non-empty path to be defined"
_CANNOT_SET_BOTH_FILE_AND_PATH = "file has been deprecated in favor of path: you cannot set both of them"


@dataclass
class StorageConfig:
    """Where and how results are stored.

    ``path`` enables persistence when set; ``file`` is its deprecated alias.
    A blank ``type`` means the in-memory store.
    """

    path: str = ""
    file: str = ""
    type: StorageType | str = ""

    def __post_init__(self) -> None:
        self._coerce_type()

    def _coerce_type(self) -> None:
        if isinstance(self.type, StorageType) or not self.type:
            return
        try:
            self.type = StorageType(self.type)
        except ValueError:
            pass

    def validate_and_set_defaults(self) -> None:
        """Check the configuration and fill in defaults; raise StorageConfigError if invalid."""
        self._coerce_type()
        if self.file and self.path:
            raise StorageConfigError(_CANNOT_SET_BOTH_FILE_AND_PATH)
        if self.file:
            logger.warning(
                "Your configuration is using 'storage.file', which is deprecated in favor of 'storage.path'"
            )
            logger.warning("storage.file will be removed in a future version, so please update your configuration")
            self.path = self.file
        if not self.type:
            self.type = StorageType.MEMORY
        if self.type in (StorageType.POSTGRES, StorageType.SQLITE) and not self.path:
            raise StorageConfigError(_SQL_STORAGE_REQUIRES_PATH)
        if self.type == StorageType.MEMORY and self.path:
            logger.warning(
                "Your configuration is using a storage of type memory with persistence, which has been deprecated"
            )
            logger.warning("If you want persistence, use 'storage.type: sqlite' instead of 'storage.type: memory'")