"""ORM models backing the local cache and the cross-view broadcast channel."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class LocalCacheEntryModel(TimestampMixin, Base):
    __tablename__ = "local_cache_entries"
    __table_args__ = (
        UniqueConstraint("kind", "learning_path_id", "user_id", name="uq_local_cache_namespace"),
        Index("ix_local_cache_path_user", "learning_path_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(64), nullable=False)
    learning_path_id: Mapped[str] = mapped_column(String(128), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)


class BroadcastMessageModel(Base):
    __tablename__ = "broadcast_messages"
    __table_args__ = (Index("ix_broadcast_messages_user", "user_id", "id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    topic: Mapped[str] = mapped_column(String(64), nullable=False)
    origin: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


__all__ = [
    "BroadcastMessageModel",
    "LocalCacheEntryModel",
]
