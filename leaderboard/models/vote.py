from __future__ import annotations
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db import Base

class VoteRecord(Base):
    __tablename__ = "vote_records"
    __table_args__ = (Index("ix_vote_records_entry_cast", "entry_id", "cast_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entry_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("entries.id", ondelete="CASCADE"))
    cast_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    entry: Mapped["Entry"] = relationship("Entry", back_populates="votes")  # noqa: F821
