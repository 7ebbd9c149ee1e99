"""Repository and unit-of-work contracts.

These abstractions belong to the application layer: services depend on
``IRepository`` / ``IUnitOfWork`` (or their async twins) and never on the
SQLAlchemy implementations in ``clean_template.repositories.base`` and
``clean_template.repositories.unit_of_work``.

Criteria and ordering keys are plain SQLAlchemy expressions over the entity
class, for example ``Book.title == "Dune"`` or ``Book.published_at``.
"""

import enum
from abc import ABC, abstractmethod
from typing import Any, Generic, Iterable, Optional, Sequence, TypeVar, Union

from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.sql.elements import ColumnElement

from clean_template.core.config import settings

ModelType = TypeVar("ModelType", bound=DeclarativeBase)

Criteria = ColumnElement[bool]
OrderKey = Union[ColumnElement[Any], Any, str]
Includes = Optional[Sequence[str]]


class OrderBy(str, enum.Enum):
    """Sort direction for ordered queries."""

    ASCENDING = "ASC"
    DESCENDING = "DESC"


# ============================================================================
# PAGINATION SUPPORT
# ============================================================================


class PaginationParams:
    """Pagination parameters for page queries.

    Attributes:
        offset: Number of records to skip (default: 0, must be >= 0)
        limit: Number of records to return (default: 50, must be 1..max_page_size)

    Raises:
        ValueError: If offset is negative or limit is out of range
    """

    def __init__(self, offset: int = 0, limit: int = 50) -> None:
        if offset < 0:
            raise ValueError("Offset must be non-negative")
        if limit <= 0 or limit > settings.max_page_size:
            raise ValueError(f"Limit must be between 1 and {settings.max_page_size}")

        self.offset = offset
        self.limit = limit


class PaginatedResult(Generic[ModelType]):
    """Page of entities plus the metadata needed to walk the other pages.

    Example:
        result = repo.find_page(Book.year > 2000, PaginationParams(0, 20), order_by=Book.year)
        if result.has_next:
            result = repo.find_page(
                Book.year > 2000,
                PaginationParams(result.offset + result.limit, 20),
                order_by=Book.year,
            )
    """

    def __init__(
        self,
        items: list[ModelType],
        total: int,
        offset: int,
        limit: int
    ) -> None:
        self.items = items
        self.total = total
        self.offset = offset
        self.limit = limit
        self.has_next = offset + limit < total
        self.has_prev = offset > 0


# ============================================================================
# SYNCHRONOUS CONTRACTS
# ============================================================================


class IRepository(ABC, Generic[ModelType]):
    """CRUD and query access to one entity collection."""

    @abstractmethod
    def get_by_id(self, entity_id: int) -> Optional[ModelType]:
        """Return the entity with the given key, or None."""

    @abstractmethod
    def get_all(self) -> list[ModelType]:
        """Return every entity."""

    @abstractmethod
    def find(self, criteria: Criteria, includes: Includes = None) -> Optional[ModelType]:
        """Return the single entity matching criteria, or None.

        Raises:
            MultipleResultsError: If more than one entity matches
        """

    @abstractmethod
    def find_all(
        self,
        criteria: Criteria,
        includes: Includes = None,
        skip: Optional[int] = None,
        take: Optional[int] = None,
        order_by: Optional[OrderKey] = None,
        direction: OrderBy = OrderBy.ASCENDING,
    ) -> list[ModelType]:
        """Return matching entities, sorted first, then paged."""

    @abstractmethod
    def find_page(
        self,
        criteria: Optional[Criteria] = None,
        pagination: Optional[PaginationParams] = None,
        order_by: Optional[OrderKey] = None,
        direction: OrderBy = OrderBy.ASCENDING,
    ) -> PaginatedResult[ModelType]:
        """Return one page of matching entities with the total count."""

    @abstractmethod
    def add(self, entity: ModelType) -> ModelType:
        """Stage an insert."""

    @abstractmethod
    def add_range(self, entities: Iterable[ModelType]) -> list[ModelType]:
        """Stage several inserts."""

    @abstractmethod
    def update(self, entity: ModelType) -> ModelType:
        """Stage a full-record update."""

    @abstractmethod
    def delete(self, entity: ModelType) -> None:
        """Stage a removal."""

    @abstractmethod
    def delete_range(self, entities: Iterable[ModelType]) -> None:
        """Stage several removals."""

    @abstractmethod
    def count(self, criteria: Optional[Criteria] = None) -> int:
        """Count all entities, or those matching criteria."""


class IUnitOfWork(ABC):
    """Single place to obtain repositories and commit their staged changes."""

    @abstractmethod
    def repository(self, model: type[ModelType]) -> IRepository[ModelType]:
        """Return the cached repository for model."""

    @abstractmethod
    def commit(self) -> int:
        """Persist every staged change in one transaction; return affected count."""

    @abstractmethod
    def rollback(self) -> None:
        """Discard every staged change."""

    @abstractmethod
    def dispose(self) -> None:
        """Release the owned data context. Idempotent."""

    def __enter__(self) -> "IUnitOfWork":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.dispose()


# ============================================================================
# ASYNCHRONOUS CONTRACTS
# ============================================================================


class IAsyncRepository(ABC, Generic[ModelType]):
    """Async twin of IRepository; every operation is a coroutine."""

    @abstractmethod
    async def get_by_id(self, entity_id: int) -> Optional[ModelType]:
        """Return the entity with the given key, or None."""

    @abstractmethod
    async def get_all(self) -> list[ModelType]:
        """Return every entity."""

    @abstractmethod
    async def find(self, criteria: Criteria, includes: Includes = None) -> Optional[ModelType]:
        """Return the single entity matching criteria, or None."""

    @abstractmethod
    async def find_all(
        self,
        criteria: Criteria,
        includes: Includes = None,
        skip: Optional[int] = None,
        take: Optional[int] = None,
        order_by: Optional[OrderKey] = None,
        direction: OrderBy = OrderBy.ASCENDING,
    ) -> list[ModelType]:
        """Return matching entities, sorted first, then paged."""

    @abstractmethod
    async def find_page(
        self,
        criteria: Optional[Criteria] = None,
        pagination: Optional[PaginationParams] = None,
        order_by: Optional[OrderKey] = None,
        direction: OrderBy = OrderBy.ASCENDING,
    ) -> PaginatedResult[ModelType]:
        """Return one page of matching entities with the total count."""

    @abstractmethod
    async def add(self, entity: ModelType) -> ModelType:
        """Stage an insert."""

    @abstractmethod
    async def add_range(self, entities: Iterable[ModelType]) -> list[ModelType]:
        """Stage several inserts."""

    @abstractmethod
    async def update(self, entity: ModelType) -> ModelType:
        """Stage a full-record update."""

    @abstractmethod
    async def delete(self, entity: ModelType) -> None:
        """Stage a removal."""

    @abstractmethod
    async def delete_range(self, entities: Iterable[ModelType]) -> None:
        """Stage several removals."""

    @abstractmethod
    async def count(self, criteria: Optional[Criteria] = None) -> int:
        """Count all entities, or those matching criteria."""


class IAsyncUnitOfWork(ABC):
    """Async twin of IUnitOfWork."""

    @abstractmethod
    def repository(self, model: type[ModelType]) -> IAsyncRepository[ModelType]:
        """Return the cached repository for model."""

    @abstractmethod
    async def commit(self) -> int:
        """Persist every staged change in one transaction; return affected count."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard every staged change."""

    @abstractmethod
    async def dispose(self) -> None:
        """Release the owned data context. Idempotent."""

    async def __aenter__(self) -> "IAsyncUnitOfWork":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.dispose()
