from __future__ import annotations

import math
import uuid

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from ..db import get_db, get_session_factory, ping
from ..schemas import EntryOut, EntryPageOut, VoteOut
from ..services.entries import list_entries
from ..services.votes import VoteOutcome
from .deps import get_page_limits, get_vote_admission, vote_with_retry

router = APIRouter(prefix="/api")

_VOTE_STATUS = {
    VoteOutcome.ACCEPTED: 200,
    VoteOutcome.RATE_LIMITED: 429,
    VoteOutcome.NOT_FOUND: 404,
    VoteOutcome.STORAGE_ERROR: 503,
}

@router.get("/entries", name="api_entries", response_model=EntryPageOut)
def entries(
    request: Request,
    q: str | None = None,
    page: int = 1,
    page_size: int | None = None,
    db: Session = Depends(get_db),
    limits=Depends(get_page_limits),
):
    result = list_entries(db, query=q, page=page, page_size=page_size, limits=limits)
    out = []
    for e in result.entries:
        item = EntryOut.model_validate(e)
        item.photo_url = str(request.url_for("entry_photo", entry_id=str(e.id)))
        out.append(item)
    return EntryPageOut(
        entries=out,
        query=result.query,
        page=result.page,
        page_size=result.page_size,
        total=result.total,
        has_prev=result.has_prev,
        has_next=result.has_next,
    )

@router.post("/entries/{entry_id}/vote", name="api_vote")
def vote(entry_id: str, admission=Depends(get_vote_admission)):
    try:
        parsed = uuid.UUID(entry_id)
    except ValueError:
        return JSONResponse(VoteOut(outcome=VoteOutcome.NOT_FOUND.value).model_dump(), status_code=404)

    result = vote_with_retry(admission, parsed)
    retry_after = math.ceil(result.retry_after.total_seconds()) if result.retry_after else None
    body = VoteOut(outcome=result.outcome.value, score=result.score, retry_after=retry_after)
    headers = {"Retry-After": str(retry_after)} if retry_after is not None else None
    return JSONResponse(body.model_dump(), status_code=_VOTE_STATUS[result.outcome], headers=headers)

health_router = APIRouter()

@health_router.get("/healthz", name="healthz")
def healthz():
    return {"ok": True}

@health_router.get("/readyz", name="readyz")
def readyz(factory: sessionmaker[Session] = Depends(get_session_factory)):
    if not ping(factory):
        return JSONResponse({"ok": False}, status_code=503)
    return {"ok": True}
