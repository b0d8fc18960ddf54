"""Custom exceptions for health tracker sync."""


class HealthTrackerSyncError(Exception):
    """Base exception for all health tracker sync errors."""

    pass


class ConfigurationError(HealthTrackerSyncError):
    """Raised when there is a configuration error."""

    pass


class ValidationError(HealthTrackerSyncError):
    """Raised when an entry fails validation."""

    pass


class DuplicateEntryError(ValidationError):
    """Raised when a manual entry matches an existing entry."""

    pass


class PersistenceError(HealthTrackerSyncError):
    """Raised when durable storage operations fail."""

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class EncodingError(PersistenceError):
    """Raised when data cannot be serialized for storage."""

    pass


class DecodingError(PersistenceError):
    """Raised when stored data cannot be deserialized."""

    pass


class DataTooLargeError(PersistenceError):
    """Raised when a value exceeds the per-key size ceiling."""

    def __init__(self, key: str, size: int, limit: int) -> None:
        super().__init__(
            f"Data for key '{key}' is too large ({size} bytes, limit: {limit} bytes)", key
        )
        self.size = size
        self.limit = limit


class PersistenceVerificationError(PersistenceError):
    """Raised when a write cannot be read back after saving."""

    pass


class HealthStoreError(HealthTrackerSyncError):
    """Raised when the external health store rejects an operation."""

    pass


class AuthorizationError(HealthStoreError):
    """Raised when access to a health data type is not authorized."""

    pass


class HealthStoreUnavailableError(HealthStoreError):
    """Raised when the external health store cannot be reached."""

    pass


class SyncDisabledError(HealthTrackerSyncError):
    """Raised when a sync operation is requested while sync is off."""

    pass


class ReconciliationError(HealthTrackerSyncError):
    """Raised when a remote snapshot cannot be merged."""

    pass
