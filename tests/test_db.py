import tempfile
import unittest
from pathlib import Path

from sqlalchemy import func, inspect, select
from sqlalchemy.exc import IntegrityError, OperationalError

from leaderboard.db import init_db, make_engine, make_session_factory, ping, transaction
from leaderboard.models import Entry
from leaderboard.services.entries import list_entries

from support import DatabaseTestCase


class TestTransaction(DatabaseTestCase):
    def count(self) -> int:
        with self.factory() as db:
            return db.execute(select(func.count(Entry.id))).scalar_one()

    def test_commits_on_normal_exit(self) -> None:
        self.add_entry()
        self.assertEqual(self.count(), 1)

    def test_rolls_back_on_exception(self) -> None:
        entry = self.add_entry(full_name="Kept")
        with self.assertRaises(RuntimeError):
            with transaction(self.factory) as db:
                row = db.get(Entry, entry.id)
                row.score = 7
                db.flush()
                raise RuntimeError("boom")
        with self.factory() as db:
            self.assertEqual(db.get(Entry, entry.id).score, 0)

    def test_rolls_back_on_keyboard_interrupt(self) -> None:
        entry = self.add_entry()
        with self.assertRaises(KeyboardInterrupt):
            with transaction(self.factory) as db:
                db.get(Entry, entry.id).score = 3
                db.flush()
                raise KeyboardInterrupt
        with self.factory() as db:
            self.assertEqual(db.get(Entry, entry.id).score, 0)

    def test_negative_score_is_rejected_by_the_store(self) -> None:
        entry = self.add_entry()
        with self.assertRaises(IntegrityError):
            with transaction(self.factory) as db:
                db.get(Entry, entry.id).score = -1
        with self.factory() as db:
            self.assertEqual(db.get(Entry, entry.id).score, 0)

    def test_ping(self) -> None:
        self.assertTrue(ping(self.factory))


class TestSqliteLocking(DatabaseTestCase):
    def other_factory(self):
        engine = make_engine(self.url, busy_timeout=0.2)
        self.addCleanup(engine.dispose)
        return make_session_factory(engine)

    def test_readers_do_not_block_each_other(self) -> None:
        self.add_entry()
        other = self.other_factory()

        with self.factory() as first:
            self.assertEqual(list_entries(first).total, 1)
            # first still holds its read transaction open
            with other() as second:
                self.assertEqual(list_entries(second).total, 1)
            self.assertTrue(ping(other))

    def test_writers_take_the_lock_at_begin(self) -> None:
        other = self.other_factory()

        with transaction(self.factory):
            with self.assertRaises(OperationalError):
                with transaction(other):
                    pass
            # reads still go through while a writer is pending
            with other() as reader:
                self.assertEqual(list_entries(reader).total, 0)


class TestInitDb(unittest.TestCase):
    def test_creates_parent_directory_and_tables(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db_path = Path(tmp) / "nested" / "dir" / "app.db"
            engine = make_engine(f"sqlite:///{db_path}")
            try:
                init_db(engine)
                init_db(engine)  # idempotent
                tables = set(inspect(engine).get_table_names())
            finally:
                engine.dispose()

            self.assertTrue(db_path.exists())
            self.assertEqual(tables, {"entries", "vote_records"})

    def test_ping_fails_without_database(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            engine = make_engine(f"sqlite:///{Path(tmp) / 'missing' / 'x.db'}")
            try:
                self.assertFalse(ping(make_session_factory(engine)))
            finally:
                engine.dispose()


if __name__ == "__main__":
    unittest.main()
