"""Base model classes and mixins for SQLAlchemy models.

Entities are supplied by the consuming application; they subclass ``Base``
and pick the mixins they need. Repositories only require an integer ``id``
primary key, which ``IntegerIdMixin`` provides.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class IntegerIdMixin:
    """Mixin that adds an autoincrement integer primary key."""

    @declared_attr
    def id(cls) -> Mapped[int]:
        """Primary key, assigned by the database on insert."""
        return mapped_column(Integer, primary_key=True, autoincrement=True)


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        """Timestamp when the record was created."""
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        """Timestamp when the record was last updated."""
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now(),
        )


class VersionMixin:
    """Mixin that enables optimistic concurrency on the ``version`` column.

    SQLAlchemy bumps the counter on every UPDATE and adds it to the WHERE
    clause; a flush that matches no row raises ``StaleDataError``, which the
    unit of work reports as ``ConcurrencyConflictError``.
    """

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    @declared_attr.directive
    def __mapper_args__(cls) -> dict[str, Any]:
        # Evaluated after the table is built, so the copied column is available
        return {"version_id_col": cls.__table__.c.version}  # type: ignore[attr-defined]


def generate_repr(*attrs: str) -> Any:
    """Generate a __repr__ method for model classes.

    Args:
        *attrs: Attribute names to include in the repr string.

    Returns:
        A __repr__ method that displays the specified attributes.

    Example:
        __repr__ = generate_repr("id", "name", "email")
    """

    def __repr__(self: Any) -> str:
        class_name = self.__class__.__name__
        attr_strs = [f"{attr}={getattr(self, attr)!r}" for attr in attrs]
        return f"{class_name}({', '.join(attr_strs)})"

    return __repr__
