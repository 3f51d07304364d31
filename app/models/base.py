#app/models/base.py
"""
Базовый класс для всех ORM-моделей проекта.

Использовать как Base при описании моделей:
    from app.models.base import Base

JsonType — JSON, который в PostgreSQL хранится как JSONB.
"""

from sqlalchemy import JSON, MetaData
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

NAMING_CONVENTION = {
    "ix": "idx_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

Base = declarative_base(metadata=MetaData(naming_convention=NAMING_CONVENTION))

JsonType = JSON().with_variant(JSONB(), "postgresql")
