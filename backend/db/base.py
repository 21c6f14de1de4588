"""Base model class for all SQLAlchemy models."""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import DateTime, Integer
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Declarative base shared by every model."""

    pass


class RowVersionMixin:
    """Optimistic concurrency token.

    Status transitions are issued as conditional UPDATEs that match on the
    expected ``row_version`` and bump it; a zero rowcount means another
    writer got there first (see ``services.instance_service``).
    """

    row_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class BaseModel(Base):
    """Abstract base model with a UUID key and automatic timestamps.

    Provides:
    - id: UUID primary key
    - created_at / updated_at: automatic timestamps
    """

    __abstract__ = True

    id: Mapped[str] = mapped_column(primary_key=True, default=lambda: str(uuid4()))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
