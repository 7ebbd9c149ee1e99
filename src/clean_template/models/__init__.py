"""Declarative base and mixins for application entities."""

from clean_template.models.base import (
    Base,
    IntegerIdMixin,
    TimestampMixin,
    VersionMixin,
    generate_repr,
)

__all__ = [
    "Base",
    "IntegerIdMixin",
    "TimestampMixin",
    "VersionMixin",
    "generate_repr",
]
