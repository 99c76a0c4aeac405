from __future__ import annotations

import logging
import math
import uuid
from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from sqlalchemy.orm import Session, sessionmaker

from ..config import settings
from ..db import get_db, get_session_factory, transaction
from ..schemas import MAX_DESCRIPTION_LENGTH, EntrySubmission
from ..services.entries import create_entry, get_photo, list_entries, photo_etag
from ..services.imaging import IngestStatus
from ..services.votes import VoteOutcome
from .deps import get_ingestor, get_page_limits, get_vote_admission, vote_with_retry

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))
router = APIRouter()

_INGEST_ERRORS = {
    IngestStatus.TOO_LARGE: (413, "The photo is too big. Please choose a file under {mb:.0f} MB and {mp:.0f} megapixels."),
    IngestStatus.DECODE_FAILED: (400, "That file is not an image we can read. Try a JPEG or PNG."),
    IngestStatus.CANNOT_FIT: (400, "That photo is too detailed to store. Try a smaller or simpler image."),
}

# -------- helpers --------

def _redirect(to: str, *, request: Request, status_code: int = 303) -> RedirectResponse:
    url = request.url_for(to)
    return RedirectResponse(url=str(url), status_code=status_code)

def _parse_id(raw: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(raw)
    except ValueError:
        return None

def _form_error(request: Request, message: str, values: dict, status_code: int = 400) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "add.html",
        {"app_name": settings.APP_NAME, "error": message, "values": values, "max_description": MAX_DESCRIPTION_LENGTH},
        status_code=status_code,
    )

def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    field = str(first["loc"][-1]).replace("_", " ") if first.get("loc") else "input"
    return f"{field.capitalize()}: {first['msg']}"

# -------- routes --------

@router.get("/", response_class=HTMLResponse, name="home")
def home(
    request: Request,
    q: str | None = None,
    page: int = 1,
    page_size: int | None = None,
    db: Session = Depends(get_db),
    limits=Depends(get_page_limits),
):
    result = list_entries(db, query=q, page=page, page_size=page_size, limits=limits)
    return templates.TemplateResponse(
        request,
        "home.html",
        {"app_name": settings.APP_NAME, "result": result},
    )

@router.get("/add", response_class=HTMLResponse, name="add_page")
def add_page(request: Request):
    return templates.TemplateResponse(
        request,
        "add.html",
        {"app_name": settings.APP_NAME, "error": None, "values": {}, "max_description": MAX_DESCRIPTION_LENGTH},
    )

@router.post("/entries", name="create_entry")
def create(
    request: Request,
    full_name: str = Form(""),
    country: str = Form(""),
    city: str = Form(""),
    description: str = Form(""),
    photo: UploadFile | None = File(None),
    factory: sessionmaker[Session] = Depends(get_session_factory),
    ingestor=Depends(get_ingestor),
):
    values = {"full_name": full_name, "country": country, "city": city, "description": description}
    try:
        submission = EntrySubmission(**values)
    except ValidationError as exc:
        return _form_error(request, _validation_message(exc), values)

    if photo is None or not photo.filename:
        return _form_error(request, "A photo is required.", values)

    # read one byte past the ceiling so oversize uploads are detectable
    raw = photo.file.read(ingestor.policy.max_input_bytes + 1)
    result = ingestor.ingest(raw)
    if not result.ok:
        status_code, template = _INGEST_ERRORS[result.status]
        logger.info("rejected upload %r: %s", photo.filename, result.detail)
        message = template.format(
            mb=ingestor.policy.max_input_bytes / (1024 * 1024),
            mp=ingestor.policy.max_input_pixels / 1_000_000,
        )
        return _form_error(request, message, values, status_code=status_code)

    with transaction(factory) as db:
        entry = create_entry(db, submission, result)
    logger.info("created entry %s (%d bytes, q=%s)", entry.id, len(result.data or b""), result.quality)
    return _redirect("home", request=request)

@router.get("/entries/{entry_id}/photo", name="entry_photo")
def entry_photo(entry_id: str, request: Request, db: Session = Depends(get_db)):
    parsed = _parse_id(entry_id)
    blob = get_photo(db, parsed) if parsed else None
    if blob is None:
        return Response(status_code=404)

    etag = photo_etag(parsed, blob.updated_at)
    headers = {
        "ETag": etag,
        "Cache-Control": f"public, max-age={settings.PHOTO_CACHE_MAX_AGE}",
    }
    match = request.headers.get("if-none-match")
    if match and etag in match:
        return Response(status_code=304, headers=headers)
    return Response(content=blob.data, media_type=blob.content_type, headers=headers)

@router.post("/entries/{entry_id}/vote", name="vote")
def vote(entry_id: str, request: Request, admission=Depends(get_vote_admission)):
    parsed = _parse_id(entry_id)
    if parsed is None:
        return HTMLResponse("Entry not found.", status_code=404)

    result = vote_with_retry(admission, parsed)
    if result.outcome is VoteOutcome.ACCEPTED:
        return _redirect("home", request=request)
    if result.outcome is VoteOutcome.RATE_LIMITED:
        seconds = max(1, math.ceil(result.retry_after.total_seconds())) if result.retry_after else 60
        minutes = -(-seconds // 60)
        return HTMLResponse(
            f"This entry was voted for recently. Try again in about {minutes} minute(s).",
            status_code=429,
            headers={"Retry-After": str(seconds)},
        )
    if result.outcome is VoteOutcome.NOT_FOUND:
        return HTMLResponse("Entry not found.", status_code=404)
    return HTMLResponse("Could not record the vote right now. Please try again.", status_code=503)
