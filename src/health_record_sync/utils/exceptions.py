"""Custom exceptions for health record sync."""


class HealthRecordSyncError(Exception):
    """Base exception for all health record sync errors."""

    pass


class ConfigurationError(HealthRecordSyncError):
    """Raised when there is a configuration error."""

    pass


class AuthorizationError(HealthRecordSyncError):
    """Raised when the external health store denies or lacks sharing permission."""

    pass


class ValidationError(HealthRecordSyncError):
    """Raised when a record is malformed (e.g. unpaired blood pressure)."""

    pass


class StoreError(HealthRecordSyncError):
    """Raised when a store operation fails, including timeouts."""

    pass


class RecordStoreError(StoreError):
    """Raised when the local record store cannot read or persist records."""

    pass
