"""SQLAlchemy declarative base and common utilities."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

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


class VersionMixin:
    """Optimistic locking via a version counter.

    Models using this mixin gain a ``version`` column that starts at 1
    and is incremented on every committed change.  Call ``check_version()``
    before mutating to detect concurrent modifications.
    """

    version: Mapped[int] = mapped_column(Integer, default=1, server_default="1", nullable=False)

    def check_version(self, expected: Optional[int]) -> None:
        """Raise StaleOrderError if *expected* doesn't match current version."""
        if expected is not None and expected != self.version:
            from app.services.errors import StaleOrderError
            raise StaleOrderError(self.__tablename__, self.id, expected, self.version)

    def increment_version(self) -> None:
        """Increment the version counter after a successful update."""
        self.version = (self.version or 1) + 1
