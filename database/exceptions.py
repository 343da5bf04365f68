"""Exceptions raised by the database module."""


class DatabaseError(Exception):
    """Base exception for database setup errors."""
    pass


class DatabaseSchemaError(DatabaseError):
    """Raised when schema files are invalid or migrations fail."""
    pass
