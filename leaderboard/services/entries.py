from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..models.entry import Entry
from ..schemas import EntrySubmission
from .imaging import IngestResult
from .votes import as_utc, utcnow


@dataclass(frozen=True)
class PageLimits:
    default_size: int = 20
    max_size: int = 100

    def clamp(self, page: int | None, page_size: int | None) -> tuple[int, int]:
        safe_page = max(1, page or 1)
        size = self.default_size if page_size is None else page_size
        return safe_page, min(max(1, size), self.max_size)


@dataclass
class EntryPage:
    entries: list[Entry]
    query: str
    page: int
    page_size: int
    total: int
    has_prev: bool = False
    has_next: bool = False


@dataclass(frozen=True)
class PhotoBlob:
    data: bytes
    content_type: str
    updated_at: datetime = field(compare=False)


def create_entry(db: Session, submission: EntrySubmission, photo: IngestResult, now: datetime | None = None) -> Entry:
    if not photo.ok or photo.data is None or photo.content_type is None:
        raise ValueError(f"cannot store a photo with status {photo.status.value}")
    ts = as_utc(now or utcnow())
    entry = Entry(
        full_name=submission.full_name,
        country=submission.country,
        city=submission.city,
        description=submission.description,
        photo_bytes=photo.data,
        photo_content_type=photo.content_type,
        score=0,
        created_at=ts,
        updated_at=ts,
    )
    db.add(entry)
    db.flush()
    return entry


def list_entries(
    db: Session,
    query: str | None = None,
    page: int | None = 1,
    page_size: int | None = None,
    limits: PageLimits = PageLimits(),
) -> EntryPage:
    safe_page, size = limits.clamp(page, page_size)
    needle = (query or "").strip()

    conditions = []
    if needle:
        conditions.append(Entry.search_key.contains(needle.lower(), autoescape=True))

    total = db.execute(select(func.count(Entry.id)).where(*conditions)).scalar_one()
    base = select(Entry).where(*conditions)
    offset = (safe_page - 1) * size
    rows = db.execute(
        base.order_by(Entry.score.desc(), Entry.created_at.desc(), Entry.id)
        .offset(offset)
        .limit(size)
    ).scalars().all()

    return EntryPage(
        entries=list(rows),
        query=needle,
        page=safe_page,
        page_size=size,
        total=total,
        has_prev=safe_page > 1,
        has_next=offset + len(rows) < total,
    )


def get_photo(db: Session, entry_id: uuid.UUID) -> PhotoBlob | None:
    row = db.execute(
        select(Entry.photo_bytes, Entry.photo_content_type, Entry.updated_at).where(Entry.id == entry_id)
    ).first()
    if row is None:
        return None
    return PhotoBlob(data=row.photo_bytes, content_type=row.photo_content_type, updated_at=as_utc(row.updated_at))


def photo_etag(entry_id: uuid.UUID, updated_at: datetime) -> str:
    return f'"{entry_id}-{int(as_utc(updated_at).timestamp())}"'
