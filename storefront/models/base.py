"""Base models and mixins for database models"""

from sqlalchemy import Column, DateTime, Uuid
from sqlalchemy.orm import DeclarativeBase, declared_attr
from sqlalchemy.sql import func
from datetime import datetime, timezone
import uuid

# Create declarative base
class Base(DeclarativeBase):
    pass

def utcnow() -> datetime:
    """Timezone-aware current time"""
    return datetime.now(timezone.utc)

def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

class TimestampedModel:
    """Mixin for adding created_at and updated_at timestamps"""

    @declared_attr
    def created_at(cls):
        return Column(
            DateTime(timezone=True),
            nullable=False,
            default=utcnow,
            server_default=func.now(),
            index=True
        )

    @declared_attr
    def updated_at(cls):
        return Column(
            DateTime(timezone=True),
            nullable=False,
            default=utcnow,
            server_default=func.now(),
            onupdate=utcnow
        )

class UUIDModel:
    """Mixin for adding UUID primary key"""

    @declared_attr
    def id(cls):
        return Column(
            Uuid(as_uuid=True),
            primary_key=True,
            default=uuid.uuid4,
            nullable=False
        )

__all__ = [
    'Base',
    'TimestampedModel',
    'UUIDModel',
    'utcnow',
    'as_utc',
]
