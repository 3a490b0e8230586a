"""Base models and mixins for database models"""

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import DeclarativeBase, declared_attr
from datetime import datetime, timezone
from typing import Optional
import uuid

def utcnow() -> datetime:
    """Naive UTC now, comparable with values read back from any backend"""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an incoming datetime to the naive UTC form stored in the database"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)

def new_id() -> str:
    return str(uuid.uuid4())

# Create declarative base
class Base(DeclarativeBase):
    pass

class TimestampedModel:
    """Mixin for adding created_at and updated_at timestamps"""

    @declared_attr
    def created_at(cls):
        return Column(
            DateTime,
            nullable=False,
            default=utcnow,
            index=True
        )

    @declared_attr
    def updated_at(cls):
        return Column(
            DateTime,
            nullable=False,
            default=utcnow,
            onupdate=utcnow
        )

class UUIDModel:
    """Mixin for adding a string UUID primary key"""

    @declared_attr
    def id(cls):
        return Column(
            String(36),
            primary_key=True,
            default=new_id,
            nullable=False
        )

class ReprModel:
    """Mixin for a primary-key based repr"""

    def __repr__(self):
        """String representation"""
        class_name = self.__class__.__name__
        attributes = []

        for column in self.__table__.columns:
            if column.primary_key:
                value = getattr(self, column.name)
                attributes.append(f"{column.name}={value!r}")

        return f"<{class_name}({', '.join(attributes)})>"

__all__ = [
    'Base',
    'TimestampedModel',
    'UUIDModel',
    'ReprModel',
    'utcnow',
    'as_naive_utc',
    'new_id',
]
