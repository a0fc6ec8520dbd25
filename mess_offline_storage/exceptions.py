"""
Custom exceptions for offline storage.

All store, queue and sync components raise these exceptions
for consistent error handling across the layer.
"""

# Substrings of driver errors that mean the connection or file is unusable.
# Matched case-insensitively against str(exc).
CORRUPTION_SIGNATURES = (
    "nullpointerexception",
    "prepareasync",
    "access to closed resource",
    "cannot operate on a closed database",
    "no active connection",
    "connection closed",
    "database is locked",
    "database table is locked",
    "database disk image is malformed",
    "file is not a database",
)

# Substrings of driver errors worth a plain retry before escalating.
TRANSIENT_SIGNATURES = (
    "database is locked",
    "database table is locked",
    "database is busy",
    "timed out",
    "timeout",
)


class OfflineStorageError(Exception):
    """Base exception for all offline storage errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StoreNotInitializedError(OfflineStorageError):
    """Raised when the store is used before init() or after close()."""

    def __init__(self, operation: str):
        super().__init__(
            f"Store not initialized for {operation}", {"operation": operation}
        )
        self.operation = operation


class UnknownTableError(OfflineStorageError):
    """Raised when a table name is not part of the local schema."""

    def __init__(self, table: str):
        super().__init__(f"Unknown table: {table}", {"table": table})
        self.table = table


class StoreCorruptionError(OfflineStorageError):
    """Raised when a store error matches a corruption signature."""

    def __init__(self, operation: str, cause: Exception | None = None):
        details = {"operation": operation}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Store corrupted during {operation}", details)
        self.operation = operation
        self.cause = cause


class StorageIOError(OfflineStorageError):
    """Raised when a file-level storage operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class StorageConnectionError(OfflineStorageError):
    """Raised when the local store cannot be opened or the remote API is unreachable.

    Note: Named StorageConnectionError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Connection failed to {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class RecoveryError(OfflineStorageError):
    """Raised when every recovery strategy has failed."""

    def __init__(self, attempted: list[str], cause: Exception | None = None):
        details: dict = {"attempted": attempted}
        if cause:
            details["cause"] = str(cause)
        super().__init__(
            f"Store recovery failed after: {', '.join(attempted) or 'nothing'}", details
        )
        self.attempted = attempted
        self.cause = cause


class InitializationError(OfflineStorageError):
    """Raised when store initialization exhausts its retries."""

    def __init__(self, attempts: int, cause: Exception | None = None):
        details: dict = {"attempts": attempts}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Initialization failed after {attempts} attempts", details)
        self.attempts = attempts
        self.cause = cause


class SyncError(OfflineStorageError):
    """Raised when a queued item cannot be replayed."""

    def __init__(self, message: str, item_id: str | None = None, cause: Exception | None = None):
        details: dict = {}
        if item_id:
            details["item_id"] = item_id
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.item_id = item_id
        self.cause = cause


class ValidationError(OfflineStorageError):
    """Raised when data validation fails."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


def _matches(exc: BaseException, signatures: tuple[str, ...]) -> bool:
    text = f"{type(exc).__name__}: {exc}".lower()
    return any(signature in text for signature in signatures)


def is_corruption_error(exc: BaseException) -> bool:
    """Check whether an error means the store needs the recovery ladder."""
    if isinstance(exc, StoreCorruptionError):
        return True
    return _matches(exc, CORRUPTION_SIGNATURES)


def is_transient_error(exc: BaseException) -> bool:
    """Check whether an error is worth retrying in place."""
    if isinstance(exc, TimeoutError):
        return True
    return _matches(exc, TRANSIENT_SIGNATURES)
