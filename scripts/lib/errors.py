"""
Custom error classes for DM Lab.
Structured error handling with error codes for the I/O layer (storage, cloud
sync, API). The KPI engine itself never raises: it coerces bad input to safe
defaults and reports rejected actions through ActionResult.

Hierarchy:
    DMLabError
    ├── ConfigError
    ├── StorageError
    │   └── StateSaveError
    ├── CloudSyncError
    └── ActionRejectedError
"""


class DMLabError(Exception):
    """Base exception for all DM Lab errors."""

    def __init__(self, message: str, code: str = "UNKNOWN", details: dict = None):
        self.code = code
        self.details = details or {}
        super().__init__(f"[{code}] {message}")


class ConfigError(DMLabError):
    """Missing or invalid configuration."""

    def __init__(self, message: str, setting: str = None):
        super().__init__(
            message, code="CONFIG_ERROR",
            details={"setting": setting},
        )


# --- Storage Errors ---

class StorageError(DMLabError):
    """Base class for state persistence errors."""
    pass


class StateSaveError(StorageError):
    """Persisted state could not be written."""

    def __init__(self, message: str, path: str = None):
        super().__init__(
            message, code="STATE_SAVE_FAILED", details={"path": path},
        )


# --- Sync Errors ---

class CloudSyncError(DMLabError):
    """Supabase cloud sync failed."""

    def __init__(self, message: str, table: str = None):
        super().__init__(
            message, code="CLOUD_SYNC_FAILED", details={"table": table},
        )


# --- Action Errors ---

class ActionRejectedError(DMLabError):
    """A state action was rejected because it would break an invariant."""

    def __init__(self, message: str, code: str = "ACTION_REJECTED", **kwargs):
        super().__init__(message, code=code, details=kwargs)
