"""
Vote admission: at most one accepted vote per entry inside a rolling window.

The window is global per entry, not per voter. Admission runs in one
transaction: lock the entry row, look for a vote newer than ``now - window``,
then either insert a VoteRecord and bump the score or abort without writing.
Two racing callers are ordered by the database (BEGIN IMMEDIATE on SQLite,
SERIALIZABLE elsewhere); a conflict the database reports is returned as
STORAGE_ERROR and is not retried here.
"""
from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from ..db import transaction
from ..models.entry import Entry
from ..models.vote import VoteRecord

logger = logging.getLogger(__name__)

# SQLSTATEs for serialization failure and deadlock
_RETRYABLE_SQLSTATES = {"40001", "40P01"}
_RETRYABLE_SQLITE_MESSAGES = ("database is locked", "database table is locked")


class VoteOutcome(str, enum.Enum):
    ACCEPTED = "accepted"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    STORAGE_ERROR = "storage_error"


@dataclass(frozen=True)
class VoteResult:
    outcome: VoteOutcome
    score: int | None = None
    retry_after: timedelta | None = None
    retryable: bool = False

    @property
    def accepted(self) -> bool:
        return self.outcome is VoteOutcome.ACCEPTED


class _Abort(Exception):
    """Leaves the transaction block so nothing is written."""

    def __init__(self, result: VoteResult):
        super().__init__(result.outcome.value)
        self.result = result


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_retryable_conflict(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in _RETRYABLE_SQLSTATES:
        return True
    message = str(orig).lower()
    return any(m in message for m in _RETRYABLE_SQLITE_MESSAGES)


class VoteAdmission:
    def __init__(self, session_factory: sessionmaker[Session], window: timedelta):
        if window <= timedelta(0):
            raise ValueError("vote window must be positive")
        self._sessions = session_factory
        self.window = window

    def try_vote(self, entry_id: uuid.UUID, now: datetime | None = None) -> VoteResult:
        now = as_utc(now or utcnow())
        cutoff = now - self.window
        try:
            with transaction(self._sessions) as session:
                result = self._admit(session, entry_id, now, cutoff)
        except _Abort as abort:
            return abort.result
        except DBAPIError as exc:
            if not is_retryable_conflict(exc):
                raise
            logger.warning("vote for %s hit a storage conflict: %s", entry_id, exc.orig)
            return VoteResult(VoteOutcome.STORAGE_ERROR, retryable=True)

        logger.info("vote accepted entry=%s score=%s", entry_id, result.score)
        return result

    def _admit(self, session: Session, entry_id: uuid.UUID, now: datetime, cutoff: datetime) -> VoteResult:
        locked = session.execute(
            select(Entry.id).where(Entry.id == entry_id).with_for_update()
        ).scalar_one_or_none()
        if locked is None:
            raise _Abort(VoteResult(VoteOutcome.NOT_FOUND))

        latest = session.execute(
            select(func.max(VoteRecord.cast_at)).where(
                VoteRecord.entry_id == entry_id,
                VoteRecord.cast_at > cutoff,
            )
        ).scalar_one_or_none()
        if latest is not None:
            retry_after = as_utc(latest) + self.window - now
            logger.info("vote rate limited entry=%s retry_after=%s", entry_id, retry_after)
            raise _Abort(VoteResult(VoteOutcome.RATE_LIMITED, retry_after=retry_after))

        session.add(VoteRecord(entry_id=entry_id, cast_at=now))
        session.execute(
            update(Entry)
            .where(Entry.id == entry_id)
            .values(score=Entry.score + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        session.flush()
        score = session.execute(select(Entry.score).where(Entry.id == entry_id)).scalar_one()
        return VoteResult(VoteOutcome.ACCEPTED, score=score)


def prune_votes(session_factory: sessionmaker[Session], window: timedelta, now: datetime | None = None) -> int:
    """
    Delete vote records old enough that they can no longer block a vote,
    i.e. cast at or before ``now - window``. Returns the number removed.
    """
    if window <= timedelta(0):
        raise ValueError("vote window must be positive")
    cutoff = as_utc(now or utcnow()) - window
    with transaction(session_factory) as session:
        removed = session.execute(
            delete(VoteRecord).where(VoteRecord.cast_at <= cutoff)
        ).rowcount or 0
    logger.info("pruned %d vote records cast at or before %s", removed, cutoff.isoformat())
    return removed
