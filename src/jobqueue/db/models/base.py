"""Base model definitions and common column types.

This module provides:
- SQLAlchemy declarative base with naming conventions
- Common type annotations shared by the queue tables
"""

from typing import Annotated

from sqlalchemy import JSON, BigInteger, Integer, MetaData, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, mapped_column, registry

# Naming convention for constraints ensures consistent migration generation.
# See: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)

type_registry = registry()

# BIGINT primary keys are not rowid aliases in SQLite and would not
# autoincrement there, so SQLite falls back to INTEGER.
BigIntegerId = BigInteger().with_variant(Integer(), "sqlite")

# JSON payloads, stored as JSONB on PostgreSQL.
JSONDocument = JSON().with_variant(JSONB(), "postgresql")

# Unix timestamp in whole seconds, 0 when unset.
UnixTimestamp = Annotated[int, mapped_column(BigInteger, nullable=False, default=0)]

ShortString = Annotated[str, mapped_column(String(100))]
MediumString = Annotated[str, mapped_column(String(255))]


class Base(DeclarativeBase):
    """Declarative base for all jobqueue models."""

    metadata = metadata
    registry = type_registry
