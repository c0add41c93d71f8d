"""Base model and mixins for all SQLAlchemy models.

Provides:
- Base: Declarative base class for all models
- EntityMixin: Adds a string UUID primary key, active flag, and timestamps

Identifiers are plain UUID strings so that they survive JSON snapshots
(delivery jobs, ERP payloads) unchanged and work on every backend.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Declarative base for all Bookbox models."""
    pass


class EntityMixin:
    """Mixin providing identity, soft activation and audit columns.

    Adds:
    - id: UUID string primary key (auto-generated)
    - active: Deactivated rows stay readable but cannot be ordered
    - created_at: Timestamp set on insert
    - updated_at: Timestamp updated on every change
    """

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_id,
    )
    active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
