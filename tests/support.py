from __future__ import annotations

import io
import os
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from PIL import Image

from leaderboard.db import init_db, make_engine, make_session_factory, transaction
from leaderboard.schemas import EntrySubmission
from leaderboard.services.entries import create_entry
from leaderboard.services.imaging import IngestResult, IngestStatus

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

FAKE_PHOTO = IngestResult(
    status=IngestStatus.OK,
    data=b"\xff\xd8\xff\xe0fake-jpeg",
    content_type="image/jpeg",
    width=1,
    height=1,
    quality=80,
)


def image_bytes(img: Image.Image, fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def solid_png(width: int, height: int, color=(200, 30, 30)) -> bytes:
    return image_bytes(Image.new("RGB", (width, height), color))


def noise_image(width: int, height: int) -> Image.Image:
    return Image.frombytes("RGB", (width, height), os.urandom(width * height * 3))


class DatabaseTestCase(unittest.TestCase):
    """Fresh SQLite file per test, schema created, session factory on self.factory."""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = Path(self._tmp.name) / "test.db"
        self.url = f"sqlite:///{self.db_path}"
        self.engine = make_engine(self.url, busy_timeout=30)
        init_db(self.engine)
        self.factory = make_session_factory(self.engine)

    def tearDown(self) -> None:
        self.engine.dispose()
        self._tmp.cleanup()

    def add_entry(
        self,
        full_name: str = "Ada Lovelace",
        country: str = "United Kingdom",
        city: str = "London",
        description: str = "Wrote the first program",
        now: datetime = T0,
        score: int = 0,
    ):
        submission = EntrySubmission(full_name=full_name, country=country, city=city, description=description)
        with transaction(self.factory) as db:
            entry = create_entry(db, submission, FAKE_PHOTO, now=now)
            entry.score = score
        return entry
