"""SQLAlchemy ORM models for the marketplace database.

One table per aggregate type.  Every table has an integer primary key and
foreign-key columns hold the *integer* key of the referenced row.  No
``relationship()`` is declared on purpose: records are loaded one table at a
time and references are resolved by the hydration layer in batches.

Tables:
    users 1--* designs        (designs.owner_id)
    users 1--* products       (products.seller_id)
    designs 1--* products     (products.design_id, nulled on design delete)
    users 1--* notifications  (notifications.recipient_id)
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# SQLite only auto-increments a column declared exactly INTEGER PRIMARY KEY.
PrimaryKey = BigInteger().with_variant(Integer(), "sqlite")


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# UserRecord
# ---------------------------------------------------------------------------

class UserRecord(Base):
    """Persisted marketplace account.  Maps to :class:`domain.models.User`."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    is_seller: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<UserRecord(id={self.id!r}, email={self.email!r})>"


# ---------------------------------------------------------------------------
# DesignRecord
# ---------------------------------------------------------------------------

class DesignRecord(Base):
    """Uploaded artwork.  ``image_path`` points into object storage."""

    __tablename__ = "designs"

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    image_path: Mapped[str] = mapped_column(String(512), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_designs_owner_id", "owner_id"),
    )

    def __repr__(self) -> str:
        return f"<DesignRecord(id={self.id!r}, title={self.title!r})>"


# ---------------------------------------------------------------------------
# ProductRecord
# ---------------------------------------------------------------------------

class ProductRecord(Base):
    """Listed product.  Every update replaces the row's mutable columns."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    seller_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    design_id: Mapped[int | None] = mapped_column(
        ForeignKey("designs.id", ondelete="SET NULL"), nullable=True,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_products_seller_id", "seller_id"),
        Index("ix_products_design_id", "design_id"),
        Index("ix_products_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<ProductRecord(id={self.id!r}, title={self.title!r}, "
            f"status={self.status!r})>"
        )


# ---------------------------------------------------------------------------
# NotificationRecord
# ---------------------------------------------------------------------------

class NotificationRecord(Base):
    """Inbox entry written by the notifications context.

    ``(event_id, recipient_id)`` is unique so a re-delivered event cannot
    notify the same user twice.
    """

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(36), nullable=False)
    recipient_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(64), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint(
            "event_id", "recipient_id", name="uq_notifications_event_recipient",
        ),
        Index("ix_notifications_recipient_id", "recipient_id"),
    )
