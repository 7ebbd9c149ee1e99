"""Repository layer for database operations.

This package provides the generic Repository / Unit-of-Work pattern:
contracts that services depend on, SQLAlchemy implementations of them and
the exception hierarchy they raise.
"""

from clean_template.repositories.base import AsyncBaseRepository, BaseRepository
from clean_template.repositories.exceptions import (
    ConcurrencyConflictError,
    ConstraintViolationError,
    DataAccessError,
    MultipleResultsError,
    RepositoryError,
    UnitOfWorkDisposedError,
)
from clean_template.repositories.interfaces import (
    IAsyncRepository,
    IAsyncUnitOfWork,
    IRepository,
    IUnitOfWork,
    OrderBy,
    PaginatedResult,
    PaginationParams,
)
from clean_template.repositories.unit_of_work import AsyncUnitOfWork, UnitOfWork

__all__ = [
    "AsyncBaseRepository",
    "AsyncUnitOfWork",
    "BaseRepository",
    "ConcurrencyConflictError",
    "ConstraintViolationError",
    "DataAccessError",
    "IAsyncRepository",
    "IAsyncUnitOfWork",
    "IRepository",
    "IUnitOfWork",
    "MultipleResultsError",
    "OrderBy",
    "PaginatedResult",
    "PaginationParams",
    "RepositoryError",
    "UnitOfWorkDisposedError",
    "UnitOfWork",
]
