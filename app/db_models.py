"""SQLAlchemy ORM models backing the remote user documents."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class UserDocumentRecord(Base):
    """One synchronised state document per user id."""

    __tablename__ = "user_documents"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    watchlist: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    watched_list: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    ratings: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
