"""
Custom exceptions for the clinical tabular loading system.

This module defines specific exception types for the different error conditions
that can occur while compiling a load definition and loading rows into the database.
"""


class ETLError(Exception):
    """Base exception for all loading related errors."""

    def __init__(self, message: str, row_number: int = None, entry: str = None):
        """
        Initialize loading error.

        Args:
            message: Error description
            row_number: Optional 1-indexed source row that triggered the error
            entry: Optional description of the loader plan entry being processed
        """
        super().__init__(message)
        self.message = message
        self.row_number = row_number
        self.entry = entry

    def __str__(self) -> str:
        context = []
        if self.row_number is not None:
            context.append(f"row {self.row_number}")
        if self.entry:
            context.append(f"entry {self.entry}")
        if context:
            return f"{self.message} ({', '.join(context)})"
        return self.message


class ConfigurationError(ETLError):
    """
    Exception raised when a load definition or environment configuration is invalid.

    Always raised before any row is read: unresolvable record kinds or event dictionary
    entries, unknown source file types, malformed definition files and condition expressions.
    """
    pass


class InputError(ETLError):
    """Exception raised when source data cannot be loaded under the compiled plan."""

    def __init__(self, message: str, attributes: dict = None, row_number: int = None, entry: str = None):
        """
        Initialize input error.

        Args:
            message: Error description
            attributes: Optional attribute set that failed (kept for logging)
            row_number: Optional 1-indexed source row
            entry: Optional loader plan entry description
        """
        super().__init__(message, row_number=row_number, entry=entry)
        self.attributes = attributes


class ConsistencyError(ETLError):
    """Exception raised when an existing-record lookup matches more than one persisted record."""

    def __init__(self, message: str, kind: str = None, conditions: dict = None,
                 match_count: int = None, row_number: int = None, entry: str = None):
        super().__init__(message, row_number=row_number, entry=entry)
        self.kind = kind
        self.conditions = conditions
        self.match_count = match_count


class RecordValidationError(ETLError):
    """
    Exception raised by the record store when a record fails validation on create.

    Non-event records that fail validation are logged and reported as row warnings;
    the load continues.
    """

    def __init__(self, message: str, kind: str = None, errors: list = None):
        super().__init__(message)
        self.kind = kind
        self.errors = errors or []


class DatabaseConnectionError(ETLError):
    """Exception raised when database connection fails."""
    pass
