"""
SQLAlchemy Base Configuration

Declarative base for the engine's ORM records. Constraint and index names
follow a fixed convention so the Alembic migration and ``create_all``
produce identical schemas on SQLite and PostgreSQL.
"""

from typing import Any, Mapping
from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class ModelBase(Base):
    """Base class for the assessment records."""

    __abstract__ = True

    def update(self, values: Mapping[str, Any]) -> None:
        """Copy mapped column values from ``values``; other keys are ignored."""
        columns = self.__table__.columns
        for key, value in values.items():
            if key in columns:
                setattr(self, key, value)
