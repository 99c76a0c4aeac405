from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from ..config import settings
from ..db import get_session_factory
from ..services.entries import PageLimits
from ..services.imaging import ImageIngestor, ImagePolicy
from ..services.votes import VoteAdmission, VoteOutcome, VoteResult

logger = logging.getLogger(__name__)

@lru_cache(maxsize=1)
def get_ingestor() -> ImageIngestor:
    return ImageIngestor(ImagePolicy.from_settings(settings))

def get_page_limits() -> PageLimits:
    return PageLimits(default_size=settings.PAGE_SIZE_DEFAULT, max_size=settings.MAX_PAGE_SIZE)

def get_vote_admission(factory: sessionmaker[Session] = Depends(get_session_factory)) -> VoteAdmission:
    return VoteAdmission(factory, window=timedelta(minutes=settings.VOTE_WINDOW_MINUTES))

def vote_with_retry(admission: VoteAdmission, entry_id: uuid.UUID) -> VoteResult:
    """One retry on a storage conflict; a second conflict is reported as-is."""
    result = admission.try_vote(entry_id)
    if result.outcome is VoteOutcome.STORAGE_ERROR and result.retryable:
        logger.info("retrying vote for %s after storage conflict", entry_id)
        result = admission.try_vote(entry_id)
    return result
