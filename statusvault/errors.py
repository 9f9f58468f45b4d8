"""Errors raised by stores and the limits they enforce."""

MAXIMUM_NUMBER_OF_RESULTS = 100
"""Most results kept for one endpoint."""

MAXIMUM_NUMBER_OF_EVENTS = 50
"""Most events kept for one endpoint."""


class StoreError(Exception):
    """Base class for errors raised by a store."""


class EndpointNotFoundError(StoreError, LookupError):
    """The requested endpoint does not exist in the store."""

    def __init__(self, message: str = "endpoint not found") -> None:
        super().__init__(message)


class InvalidTimeRangeError(StoreError, ValueError):
    """The start of a time range lies after its end."""

    def __init__(self, message: str = "'from' cannot be older than 'to'") -> None:
        super().__init__(message)