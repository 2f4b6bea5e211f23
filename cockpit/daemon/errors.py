"""Exception taxonomy for the capture daemon.

Configuration errors are fatal and raised before the daemon starts.
Store errors propagate out of the operation that failed; the watch loop
logs them and moves on to the next polling cycle. Version-control lookups
never raise - they report "no data" instead.
"""

from pathlib import Path
from typing import Optional


class CockpitError(Exception):
    """Base class for all cockpit errors."""


class ConfigError(CockpitError):
    """Configuration could not be loaded or failed validation."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        if field:
            message = f"Invalid configuration value for '{field}': {message}"
        super().__init__(message)


class StoreError(CockpitError):
    """A read, write or delete against the activity store failed."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Store {operation} failed: {message}")


class WatcherError(CockpitError):
    """The filesystem observer could not subscribe to a directory."""

    def __init__(self, path: Path, message: str):
        self.path = path
        super().__init__(f"Failed to watch directory {path}: {message}")


class SearchError(CockpitError):
    """The full-text index could not be opened, written or queried."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Search {operation} failed: {message}")
