"""
Error taxonomy shared by the stores and the HTTP layer.

Stores raise the two classes defined here themselves.  Constraint and
connectivity failures come straight from SQLAlchemy and are re-exported
under domain names so callers can map them without importing the driver
layer; they are never wrapped.
"""
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError

# Unique / foreign-key violations, surfaced verbatim from the database.
ConstraintViolationError = IntegrityError

# Transport-level failures (connection closed, timeout).
ConnectivityError = OperationalError


class StoreError(Exception):
    """Base class for errors raised by the store layer itself."""


class RecordNotFoundError(StoreError, LookupError):
    """A keyed lookup matched no row, or an update targeted a missing row."""


class InvalidArgumentError(StoreError, ValueError):
    """A required entity or id argument was missing."""


def is_connectivity_failure(exc: BaseException) -> bool:
    """Return True when *exc* reports a lost or unusable database connection."""
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated
