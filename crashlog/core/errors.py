"""
Exceptions raised by the crash log engine.
"""


class CrashLogError(Exception):
    """Base class for all crash log errors."""


class StoreUnavailableError(CrashLogError):
    """The underlying log store cannot be opened, or is closed or read-only."""


class ValidationError(CrashLogError, ValueError):
    """Invalid arguments, rejected before any I/O is attempted."""
