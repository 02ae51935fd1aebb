"""Domain-specific exceptions for the ledger and analytics engine."""

class ValidationError(ValueError):
    """Raised when provided data does not meet validation requirements."""


class ReferentialIntegrityError(ValidationError):
    """Raised when a write references a missing or archived row, or a delete is restricted."""


class RecordNotFoundError(LookupError):
    """Raised when a ledger record cannot be located."""


class PersistenceError(IOError):
    """Raised when the persistence layer encounters unrecoverable issues."""


class MigrationError(PersistenceError):
    """Raised when a schema revision fails to apply."""
