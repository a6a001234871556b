"""
safetrip/DB/base_class.py
=================================
SQLAlchemy Base Model Definition
=================================

Declarative base for every ORM model (SQLAlchemy 2.0 style). Table names
default to the lowercase class name; models that need a plural table name
override __tablename__ with their own declared_attr directive.

Note:
    All models must inherit from this Base to be registered with the
    metadata used by create_all() and by Alembic.
"""

from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models in the application."""

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return cls.__name__.lower()
