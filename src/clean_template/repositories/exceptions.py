"""Exception hierarchy for repository and unit-of-work operations.

A lookup that finds nothing is not an error: single-item reads return
``None``. Everything the backing store rejects is raised as
``DataAccessError`` (or one of its subclasses) chained to the original
SQLAlchemy exception, so ``err.__cause__`` always holds the driver's error.

Example:
    try:
        uow.commit()
    except ConcurrencyConflictError:
        # Somebody else updated the row first; reload and retry
        ...
    except ConstraintViolationError as e:
        logger.warning("Rejected by constraint", detail=e.detail)
"""

from typing import Optional

from sqlalchemy.exc import (
    IntegrityError,
    MultipleResultsFound,
    SQLAlchemyError,
)
from sqlalchemy.orm.exc import StaleDataError


class RepositoryError(Exception):
    """Base exception for all repository operations."""

    pass


class MultipleResultsError(RepositoryError):
    """Raised when a single-result query matches more than one record."""

    pass


class DataAccessError(RepositoryError):
    """Raised when the backing store fails or rejects an operation.

    Attributes:
        detail: Diagnostic text reported by the store/driver, if any
    """

    def __init__(self, message: str, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.detail = detail


class ConstraintViolationError(DataAccessError):
    """Raised when a write violates a database constraint (unique, foreign key, not null)."""

    pass


class ConcurrencyConflictError(DataAccessError):
    """Raised when an optimistic-concurrency check fails at commit time."""

    pass


class UnitOfWorkDisposedError(DataAccessError):
    """Raised when a disposed unit of work is used again."""

    pass


def _detail(exc: BaseException) -> str:
    # DBAPIError keeps the driver exception in .orig
    orig = getattr(exc, "orig", None)
    return str(orig if orig is not None else exc)


def translate_error(exc: SQLAlchemyError, action: str) -> RepositoryError:
    """Map a SQLAlchemy exception onto the repository exception hierarchy.

    The caller is expected to ``raise translate_error(e, ...) from e`` so the
    original exception stays attached as ``__cause__``.

    Args:
        exc: Exception raised by SQLAlchemy
        action: Short description of what failed, used in the message

    Returns:
        The matching RepositoryError subclass instance
    """
    detail = _detail(exc)
    if isinstance(exc, MultipleResultsFound):
        return MultipleResultsError(f"Failed to {action}: multiple results found")
    if isinstance(exc, StaleDataError):
        return ConcurrencyConflictError(f"Failed to {action}: concurrent update detected", detail)
    if isinstance(exc, IntegrityError):
        return ConstraintViolationError(f"Failed to {action}: constraint violation", detail)
    return DataAccessError(f"Failed to {action}: {detail}", detail)
