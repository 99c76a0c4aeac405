from __future__ import annotations
import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Computed, DateTime, Index, Integer, LargeBinary, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db import Base

SEARCH_KEY_SQL = "lower(full_name || ' ' || country || ' ' || city || ' ' || description)"

class Entry(Base):
    __tablename__ = "entries"
    __table_args__ = (
        CheckConstraint("score >= 0", name="ck_entries_score_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    full_name: Mapped[str] = mapped_column(Text)
    country: Mapped[str] = mapped_column(Text)
    city: Mapped[str] = mapped_column(Text)
    description: Mapped[str] = mapped_column(String(160), default="")

    photo_bytes: Mapped[bytes] = mapped_column(LargeBinary, deferred=True)
    photo_content_type: Mapped[str] = mapped_column(String(64), default="image/jpeg")

    score: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    # maintained by the database, never written by the app
    search_key: Mapped[str] = mapped_column(Text, Computed(SEARCH_KEY_SQL, persisted=True), index=True)

    votes: Mapped[list["VoteRecord"]] = relationship(  # noqa: F821
        "VoteRecord",
        back_populates="entry",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

Index("ix_entries_sort", Entry.score.desc(), Entry.created_at.desc())
