"""Database exception types."""

class DatabaseError(Exception):
    """Raised when a database operation fails."""
    pass

class DatabaseSchemaError(DatabaseError):
    """Raised when schema loading or migration fails."""
    pass
