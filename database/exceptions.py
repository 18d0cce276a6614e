"""Database exceptions."""

class DatabaseError(Exception):
    """Base exception for database operations."""
    pass

class DatabaseSchemaError(DatabaseError):
    """Raised when schema initialization or migration fails."""
    pass

class TransactionConflictError(DatabaseError):
    """Raised when a transaction loses a serialization race and may be retried."""
    pass
