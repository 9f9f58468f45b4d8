"""Storage of endpoint health results, events and hourly uptime statistics, in memory or in SQLite."""

__version__ = "3.0.0"
__all__ = ["__version__"]