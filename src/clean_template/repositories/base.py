"""Generic repository implementations over a SQLAlchemy data context.

``BaseRepository`` (sync) and ``AsyncBaseRepository`` (async) give type-safe
CRUD and query access to one entity collection. Both are bound to one
entity class and one data context; they keep no state of their own.

Key Concepts:
- STAGING: add/update/delete only touch the session's change set. Nothing is
  written until the owning unit of work commits.
- IMMEDIATE READS: get/find/count execute against the store right away and
  do not see uncommitted staged changes (sessions run with autoflush off).
- QUERY COMPOSITION: criteria, includes, ordering and skip/take are built by
  ``clean_template.repositories.query``; ordering always precedes paging.
- ERRORS: SQLAlchemy failures are logged and re-raised as ``DataAccessError``
  (or a subclass), chained to the original exception.

Usage Example:
    with UnitOfWork(DataContext(session_maker())) as uow:
        books = uow.repository(Book)
        books.add(Book(title="Dune", year=1965))
        classics = books.find_all(Book.year < 1970, order_by=Book.year, take=10)
        uow.commit()
"""

from typing import Any, Iterable, Optional

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from clean_template.core.context import AsyncDataContext, DataContext
from clean_template.core.logging import get_logger
from clean_template.core.tracing import trace_database
from clean_template.repositories.exceptions import RepositoryError, translate_error
from clean_template.repositories.interfaces import (
    Criteria,
    IAsyncRepository,
    Includes,
    IRepository,
    ModelType,
    OrderBy,
    OrderKey,
    PaginatedResult,
    PaginationParams,
)
from clean_template.repositories.query import compose_count, compose_select


def _mark_fully_modified(entity: Any) -> None:
    """Flag every loaded column of a persistent entity so the whole row is written.

    Primary key and version columns are left alone, and so are columns with
    an on-update default, so the database or mapper keeps maintaining them.
    """
    state = inspect(entity)
    if not state.persistent:
        return
    mapper = state.mapper
    managed = list(mapper.primary_key)
    if mapper.version_id_col is not None:
        managed.append(mapper.version_id_col)
    skipped = {mapper.get_property_by_column(column).key for column in managed}
    for attr in mapper.column_attrs:
        if attr.key in skipped or attr.key in state.unloaded:
            continue
        if any(
            getattr(column, "onupdate", None) is not None or getattr(column, "server_onupdate", None) is not None
            for column in attr.columns
        ):
            continue
        flag_modified(entity, attr.key)


class _RepositoryLogging:
    """Logger binding and error translation shared by both repository flavors."""

    _model: type

    def _bind_logger(self) -> None:
        self._logger = get_logger(f"{__name__}.{self._model.__name__}Repository")

    def _failure(self, exc: SQLAlchemyError, action: str, **fields: object) -> RepositoryError:
        self._logger.error(
            f"Failed to {action}",
            model=self._model.__name__,
            error=str(exc),
            **fields
        )
        return translate_error(exc, action)


# ============================================================================
# SYNCHRONOUS REPOSITORY
# ============================================================================


class BaseRepository(_RepositoryLogging, IRepository[ModelType]):
    """Generic synchronous repository for any mapped entity with an integer ``id``.

    Subclass it to add entity-specific queries and register the subclass on
    the unit of work with ``UnitOfWork.register``.

    Args:
        context: Data context whose session this repository uses
        model: Mapped entity class (e.g., Book, Author)

    Example:
        class BookRepository(BaseRepository[Book]):
            def by_author(self, author_id: int) -> list[Book]:
                return self.find_all(Book.author_id == author_id, order_by=Book.year)
    """

    def __init__(self, context: DataContext, model: type[ModelType]) -> None:
        self._context = context
        self._model = model
        self._bind_logger()

    @property
    def model(self) -> type[ModelType]:
        return self._model

    @property
    def _session(self) -> Session:
        return self._context.session

    # ========================================================================
    # READ OPERATIONS
    # ========================================================================

    @trace_database()
    def get_by_id(self, entity_id: int) -> Optional[ModelType]:
        """Get entity by primary key; None if it does not exist.

        The session identity map is consulted before the database.
        """
        try:
            self._logger.debug("Getting entity by ID", model=self._model.__name__, entity_id=entity_id)
            return self._session.get(self._model, entity_id)
        except SQLAlchemyError as e:
            raise self._failure(e, "get entity", entity_id=entity_id) from e

    @trace_database()
    def get_all(self) -> list[ModelType]:
        try:
            self._logger.debug("Getting all entities", model=self._model.__name__)
            return list(self._session.scalars(self._context.set(self._model)).all())
        except SQLAlchemyError as e:
            raise self._failure(e, "get all entities") from e

    @trace_database()
    def find(self, criteria: Criteria, includes: Includes = None) -> Optional[ModelType]:
        """Find the single entity matching criteria.

        Args:
            criteria: Boolean SQL expression, e.g. ``Book.isbn == isbn``
            includes: Relationship paths to eager-load alongside the match

        Returns:
            The matching entity, or None if nothing matches

        Raises:
            MultipleResultsError: If more than one entity matches
            DataAccessError: For database errors
        """
        statement = compose_select(
            self._context.set(self._model), self._model, criteria=criteria, includes=includes
        )
        try:
            self._logger.debug("Finding entity", model=self._model.__name__, includes=includes)
            return self._session.scalars(statement).one_or_none()
        except SQLAlchemyError as e:
            raise self._failure(e, "find entity") from e

    @trace_database()
    def find_all(
        self,
        criteria: Criteria,
        includes: Includes = None,
        skip: Optional[int] = None,
        take: Optional[int] = None,
        order_by: Optional[OrderKey] = None,
        direction: OrderBy = OrderBy.ASCENDING,
    ) -> list[ModelType]:
        """Find every entity matching criteria, optionally sorted and paged.

        Sorting is applied before skip/take. Paging without ``order_by`` sorts
        by primary key so pages stay stable between calls.

        Args:
            criteria: Boolean SQL expression to filter on
            includes: Relationship paths to eager-load
            skip: Number of matches to skip (>= 0)
            take: Maximum number of matches to return (>= 0)
            order_by: Column expression or attribute name to sort on
            direction: OrderBy.ASCENDING or OrderBy.DESCENDING

        Raises:
            ValueError: If skip or take is negative
            DataAccessError: For database errors
        """
        statement = compose_select(
            self._context.set(self._model),
            self._model,
            criteria=criteria,
            includes=includes,
            skip=skip,
            take=take,
            order_by=order_by,
            direction=direction,
        )
        try:
            self._logger.debug(
                "Finding entities",
                model=self._model.__name__,
                skip=skip,
                take=take,
                direction=direction.value,
            )
            return list(self._session.scalars(statement).all())
        except SQLAlchemyError as e:
            raise self._failure(e, "find entities", skip=skip, take=take) from e

    @trace_database()
    def find_page(
        self,
        criteria: Optional[Criteria] = None,
        pagination: Optional[PaginationParams] = None,
        order_by: Optional[OrderKey] = None,
        direction: OrderBy = OrderBy.ASCENDING,
    ) -> PaginatedResult[ModelType]:
        """Return one page of matching entities plus the total match count."""
        if pagination is None:
            pagination = PaginationParams()

        statement = compose_select(
            self._context.set(self._model),
            self._model,
            criteria=criteria,
            skip=pagination.offset,
            take=pagination.limit,
            order_by=order_by,
            direction=direction,
        )
        try:
            items = list(self._session.scalars(statement).all())
            total = self._session.scalar(compose_count(self._model, criteria)) or 0
        except SQLAlchemyError as e:
            raise self._failure(e, "list entities", offset=pagination.offset) from e

        self._logger.debug(
            "Listed entities successfully",
            model=self._model.__name__,
            count=len(items),
            total=total
        )
        return PaginatedResult(items=items, total=total, offset=pagination.offset, limit=pagination.limit)

    @trace_database()
    def count(self, criteria: Optional[Criteria] = None) -> int:
        """Count committed entities, optionally only those matching criteria."""
        try:
            return self._session.scalar(compose_count(self._model, criteria)) or 0
        except SQLAlchemyError as e:
            raise self._failure(e, "count entities") from e

    # ========================================================================
    # STAGED WRITES
    # ========================================================================

    def add(self, entity: ModelType) -> ModelType:
        """Stage a new entity for insertion; its id is assigned on commit."""
        try:
            self._session.add(entity)
        except SQLAlchemyError as e:
            raise self._failure(e, "add entity") from e
        self._logger.debug("Entity staged for insert", model=self._model.__name__)
        return entity

    def add_range(self, entities: Iterable[ModelType]) -> list[ModelType]:
        items = list(entities)
        try:
            self._session.add_all(items)
        except SQLAlchemyError as e:
            raise self._failure(e, "add entities") from e
        self._logger.debug("Entities staged for insert", model=self._model.__name__, count=len(items))
        return items

    def update(self, entity: ModelType) -> ModelType:
        """Stage a full-record update.

        Every loaded column of the entity is written on commit, even when it
        matches what the session loaded. A detached entity is merged into the
        session (which may load the stored row) and the tracked copy is
        returned, so callers should keep using the returned instance.
        """
        try:
            if entity not in self._session:
                entity = self._session.merge(entity)
            _mark_fully_modified(entity)
        except SQLAlchemyError as e:
            raise self._failure(e, "update entity") from e
        self._logger.debug(
            "Entity staged for update",
            model=self._model.__name__,
            entity_id=getattr(entity, "id", None)
        )
        return entity

    def delete(self, entity: ModelType) -> None:
        """Stage removal; an entity added but not yet committed is simply unstaged."""
        try:
            if inspect(entity).pending:
                self._session.expunge(entity)
                self._logger.debug("Staged insert cancelled", model=self._model.__name__)
                return
            if entity not in self._session:
                entity = self._session.merge(entity)
            self._session.delete(entity)
        except SQLAlchemyError as e:
            raise self._failure(e, "delete entity") from e
        self._logger.debug(
            "Entity staged for delete",
            model=self._model.__name__,
            entity_id=getattr(entity, "id", None)
        )

    def delete_range(self, entities: Iterable[ModelType]) -> None:
        for entity in entities:
            self.delete(entity)


# ============================================================================
# ASYNCHRONOUS REPOSITORY
# ============================================================================


class AsyncBaseRepository(_RepositoryLogging, IAsyncRepository[ModelType]):
    """Generic asyncio repository; same semantics as ``BaseRepository``.

    Reads suspend the calling task while the query is outstanding. Staging
    an insert never awaits the database; staging an update or delete of a
    detached entity may await a load.

    Args:
        context: Async data context whose session this repository uses
        model: Mapped entity class
    """

    def __init__(self, context: AsyncDataContext, model: type[ModelType]) -> None:
        self._context = context
        self._model = model
        self._bind_logger()

    @property
    def model(self) -> type[ModelType]:
        return self._model

    @property
    def _session(self) -> AsyncSession:
        return self._context.session

    # ========================================================================
    # READ OPERATIONS
    # ========================================================================

    @trace_database()
    async def get_by_id(self, entity_id: int) -> Optional[ModelType]:
        try:
            self._logger.debug("Getting entity by ID", model=self._model.__name__, entity_id=entity_id)
            return await self._session.get(self._model, entity_id)
        except SQLAlchemyError as e:
            raise self._failure(e, "get entity", entity_id=entity_id) from e

    @trace_database()
    async def get_all(self) -> list[ModelType]:
        try:
            self._logger.debug("Getting all entities", model=self._model.__name__)
            result = await self._session.scalars(self._context.set(self._model))
            return list(result.all())
        except SQLAlchemyError as e:
            raise self._failure(e, "get all entities") from e

    @trace_database()
    async def find(self, criteria: Criteria, includes: Includes = None) -> Optional[ModelType]:
        """Find the single entity matching criteria; see ``BaseRepository.find``."""
        statement = compose_select(
            self._context.set(self._model), self._model, criteria=criteria, includes=includes
        )
        try:
            self._logger.debug("Finding entity", model=self._model.__name__, includes=includes)
            result = await self._session.scalars(statement)
            return result.one_or_none()
        except SQLAlchemyError as e:
            raise self._failure(e, "find entity") from e

    @trace_database()
    async def find_all(
        self,
        criteria: Criteria,
        includes: Includes = None,
        skip: Optional[int] = None,
        take: Optional[int] = None,
        order_by: Optional[OrderKey] = None,
        direction: OrderBy = OrderBy.ASCENDING,
    ) -> list[ModelType]:
        """Find every entity matching criteria; see ``BaseRepository.find_all``."""
        statement = compose_select(
            self._context.set(self._model),
            self._model,
            criteria=criteria,
            includes=includes,
            skip=skip,
            take=take,
            order_by=order_by,
            direction=direction,
        )
        try:
            self._logger.debug(
                "Finding entities",
                model=self._model.__name__,
                skip=skip,
                take=take,
                direction=direction.value,
            )
            result = await self._session.scalars(statement)
            return list(result.all())
        except SQLAlchemyError as e:
            raise self._failure(e, "find entities", skip=skip, take=take) from e

    @trace_database()
    async def find_page(
        self,
        criteria: Optional[Criteria] = None,
        pagination: Optional[PaginationParams] = None,
        order_by: Optional[OrderKey] = None,
        direction: OrderBy = OrderBy.ASCENDING,
    ) -> PaginatedResult[ModelType]:
        if pagination is None:
            pagination = PaginationParams()

        statement = compose_select(
            self._context.set(self._model),
            self._model,
            criteria=criteria,
            skip=pagination.offset,
            take=pagination.limit,
            order_by=order_by,
            direction=direction,
        )
        try:
            items = list((await self._session.scalars(statement)).all())
            total = await self._session.scalar(compose_count(self._model, criteria)) or 0
        except SQLAlchemyError as e:
            raise self._failure(e, "list entities", offset=pagination.offset) from e

        self._logger.debug(
            "Listed entities successfully",
            model=self._model.__name__,
            count=len(items),
            total=total
        )
        return PaginatedResult(items=items, total=total, offset=pagination.offset, limit=pagination.limit)

    @trace_database()
    async def count(self, criteria: Optional[Criteria] = None) -> int:
        try:
            return await self._session.scalar(compose_count(self._model, criteria)) or 0
        except SQLAlchemyError as e:
            raise self._failure(e, "count entities") from e

    # ========================================================================
    # STAGED WRITES
    # ========================================================================

    async def add(self, entity: ModelType) -> ModelType:
        try:
            self._session.add(entity)
        except SQLAlchemyError as e:
            raise self._failure(e, "add entity") from e
        self._logger.debug("Entity staged for insert", model=self._model.__name__)
        return entity

    async def add_range(self, entities: Iterable[ModelType]) -> list[ModelType]:
        items = list(entities)
        try:
            self._session.add_all(items)
        except SQLAlchemyError as e:
            raise self._failure(e, "add entities") from e
        self._logger.debug("Entities staged for insert", model=self._model.__name__, count=len(items))
        return items

    async def update(self, entity: ModelType) -> ModelType:
        """Stage a full-record update; see ``BaseRepository.update``."""
        try:
            if entity not in self._session:
                entity = await self._session.merge(entity)
            _mark_fully_modified(entity)
        except SQLAlchemyError as e:
            raise self._failure(e, "update entity") from e
        self._logger.debug(
            "Entity staged for update",
            model=self._model.__name__,
            entity_id=getattr(entity, "id", None)
        )
        return entity

    async def delete(self, entity: ModelType) -> None:
        try:
            if inspect(entity).pending:
                self._session.expunge(entity)
                self._logger.debug("Staged insert cancelled", model=self._model.__name__)
                return
            if entity not in self._session:
                entity = await self._session.merge(entity)
            await self._session.delete(entity)
        except SQLAlchemyError as e:
            raise self._failure(e, "delete entity") from e
        self._logger.debug(
            "Entity staged for delete",
            model=self._model.__name__,
            entity_id=getattr(entity, "id", None)
        )

    async def delete_range(self, entities: Iterable[ModelType]) -> None:
        for entity in entities:
            await self.delete(entity)
