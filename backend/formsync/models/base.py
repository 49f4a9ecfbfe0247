"""
Base SQLAlchemy model classes for the collaborative forms store.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation every table stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_id() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    """Mixin class to add created_at and updated_at timestamps."""

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class BaseModel(Base):
    """
    Abstract base model with a string UUID primary key.
    """

    __abstract__ = True

    id = Column(String(36), primary_key=True, default=generate_id, index=True)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(id={self.id})>"
