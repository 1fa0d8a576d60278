class MigrationError(Exception):
    """Base migration exception."""


class ConfigurationError(MigrationError):
    """Raised when the runtime configuration is incomplete."""


class SourceUnavailableError(MigrationError):
    """Raised when the legacy source cannot be reached."""


class CollectionNotFoundError(MigrationError):
    """Raised when a whole legacy collection does not exist."""


class StoreError(MigrationError):
    """Raised when a canonical store operation failed."""


class StoreUnavailableError(StoreError):
    """Raised when the canonical store cannot be reached."""


class RecordRejectedError(MigrationError):
    """Raised when a source record cannot be reconciled."""


class IdentityResolutionError(RecordRejectedError):
    """Raised when a record carries neither an email nor a legacy id."""
