import io
import tempfile
import unittest
from contextlib import redirect_stdout
from datetime import timedelta
from pathlib import Path

from PIL import Image
from sqlalchemy import func, inspect, select

from leaderboard import ctl
from leaderboard.db import make_engine
from leaderboard.models import VoteRecord
from leaderboard.services.votes import VoteAdmission, utcnow

from support import DatabaseTestCase, solid_png


def run(*argv: str) -> tuple[int, str]:
    out = io.StringIO()
    with redirect_stdout(out):
        code = ctl.main(list(argv))
    return code, out.getvalue()


class TestDbInit(unittest.TestCase):
    def test_init_creates_schema(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db_path = Path(tmp) / "data" / "lb.db"
            url = f"sqlite:///{db_path}"

            code, out = run("--database-url", url, "db", "init")

            self.assertEqual(code, 0)
            self.assertIn("Schema created", out)
            engine = make_engine(url)
            try:
                self.assertIn("vote_records", inspect(engine).get_table_names())
            finally:
                engine.dispose()


class TestPruneVotes(DatabaseTestCase):
    def test_prune_removes_expired_votes(self) -> None:
        entry = self.add_entry()
        admission = VoteAdmission(self.factory, window=timedelta(minutes=60))
        admission.try_vote(entry.id, now=utcnow() - timedelta(hours=3))

        code, out = run("--database-url", self.url, "prune-votes", "--window-minutes", "60")

        self.assertEqual(code, 0)
        self.assertIn("Pruned 1 vote record(s)", out)
        with self.factory() as db:
            self.assertEqual(db.execute(select(func.count(VoteRecord.id))).scalar_one(), 0)

    def test_prune_rejects_empty_window(self) -> None:
        code, _ = run("--database-url", self.url, "prune-votes", "--window-minutes", "0")
        self.assertEqual(code, 2)


class TestIngest(unittest.TestCase):
    def test_ingest_writes_jpeg(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "in.png"
            dst = Path(tmp) / "out.jpg"
            src.write_bytes(solid_png(2000, 1000))

            code, out = run("ingest", str(src), "--out", str(dst))

            self.assertEqual(code, 0)
            self.assertIn("1024x512", out)
            self.assertEqual(Image.open(dst).format, "JPEG")

    def test_ingest_reports_failures(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            bad = Path(tmp) / "bad.png"
            bad.write_bytes(b"nope")

            code, out = run("ingest", str(bad))
            self.assertEqual(code, 1)
            self.assertIn("decode_failed", out)

            code, out = run("ingest", str(Path(tmp) / "missing.png"))
            self.assertEqual(code, 1)


if __name__ == "__main__":
    unittest.main()
