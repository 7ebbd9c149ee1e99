"""Query composition shared by the sync and async repositories.

Builds SQLAlchemy ``select()`` statements from the repository arguments:
criteria, eager-load includes, ordering and a skip/take window. Ordering is
always applied before the window so page boundaries are deterministic; a
window without an explicit ordering falls back to primary-key order.
"""

from typing import Any, Optional

from sqlalchemy import Select, asc, desc, func, inspect, select
from sqlalchemy.orm import selectinload

from clean_template.repositories.interfaces import Criteria, Includes, OrderBy, OrderKey


def validate_window(skip: Optional[int], take: Optional[int]) -> None:
    """Reject negative skip/take values; zero is allowed for both.

    Raises:
        ValueError: If skip or take is negative
    """
    if skip is not None and skip < 0:
        raise ValueError("skip must be non-negative")
    if take is not None and take < 0:
        raise ValueError("take must be non-negative")


def resolve_order_key(model: type[Any], order_by: OrderKey) -> Any:
    """Turn an attribute name into the mapped attribute; pass expressions through."""
    if isinstance(order_by, str):
        if order_by not in inspect(model).all_orm_descriptors:
            raise ValueError(f"{model.__name__} has no attribute {order_by!r} to order by")
        return getattr(model, order_by)
    return order_by


def build_include_options(model: type[Any], includes: Includes) -> list[Any]:
    """Build ``selectinload`` options for relationship paths such as ``"books.reviews"``.

    Raises:
        ValueError: If a path segment is not a relationship of the current class
    """
    options: list[Any] = []
    for path in includes or ():
        current = model
        option: Optional[Any] = None
        for name in path.split("."):
            relationships = inspect(current).relationships
            if name not in relationships:
                raise ValueError(f"{current.__name__} has no relationship {name!r} to include")
            attribute = getattr(current, name)
            option = selectinload(attribute) if option is None else option.selectinload(attribute)
            current = relationships[name].mapper.class_
        if option is not None:
            options.append(option)
    return options


def primary_key_order(model: type[Any]) -> list[Any]:
    return list(inspect(model).primary_key)


def compose_select(
    statement: Select[Any],
    model: type[Any],
    criteria: Optional[Criteria] = None,
    includes: Includes = None,
    skip: Optional[int] = None,
    take: Optional[int] = None,
    order_by: Optional[OrderKey] = None,
    direction: OrderBy = OrderBy.ASCENDING,
) -> Select[Any]:
    """Apply includes, criteria, ordering and the skip/take window, in that order.

    Args:
        statement: Base query over the entity, usually ``DataContext.set(model)``
        model: Mapped entity class the statement selects
        criteria: Boolean SQL expression to filter on
        includes: Relationship paths to eager-load
        skip: Rows to skip after ordering
        take: Maximum rows to return after skipping
        order_by: Column expression or attribute name to sort on
        direction: Sort direction for order_by

    Returns:
        The composed statement, ready to execute
    """
    validate_window(skip, take)

    options = build_include_options(model, includes)
    if options:
        statement = statement.options(*options)

    if criteria is not None:
        statement = statement.where(criteria)

    if order_by is not None:
        key = resolve_order_key(model, order_by)
        statement = statement.order_by(desc(key) if direction == OrderBy.DESCENDING else asc(key))
    elif skip is not None or take is not None:
        statement = statement.order_by(*primary_key_order(model))

    if skip is not None:
        statement = statement.offset(skip)
    if take is not None:
        statement = statement.limit(take)

    return statement


def compose_count(model: type[Any], criteria: Optional[Criteria] = None) -> Select[Any]:
    """Build ``SELECT count(*) FROM <model table> [WHERE criteria]``."""
    statement = select(func.count()).select_from(model)
    if criteria is not None:
        statement = statement.where(criteria)
    return statement
