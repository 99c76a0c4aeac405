#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path

from .config import settings
from .db import make_engine, make_session_factory, init_db
from .services.imaging import ImageIngestor, ImagePolicy
from .services.votes import prune_votes

def cmd_db(args: argparse.Namespace) -> int:
    if args.action == "init":
        engine = make_engine(args.database_url)
        try:
            init_db(engine)
        finally:
            engine.dispose()
        print("Schema created (existing tables left untouched).")
        return 0

    print("Unknown db action")
    return 2

def cmd_prune_votes(args: argparse.Namespace) -> int:
    if args.window_minutes < 1:
        print("--window-minutes must be at least 1")
        return 2
    engine = make_engine(args.database_url)
    try:
        removed = prune_votes(make_session_factory(engine), window=timedelta(minutes=args.window_minutes))
    finally:
        engine.dispose()
    print(f"Pruned {removed} vote record(s) older than {args.window_minutes} minute(s).")
    return 0

def cmd_ingest(args: argparse.Namespace) -> int:
    src = Path(args.path)
    if not src.is_file():
        print(f"{src} not found.")
        return 1

    policy = ImagePolicy.from_settings(settings)
    result = ImageIngestor(policy).ingest(src.read_bytes())
    if not result.ok:
        print(f"{src}: {result.status.value} ({result.detail})")
        return 1

    print(f"{src}: {result.width}x{result.height} q={result.quality} {len(result.data)} bytes {result.content_type}")
    if args.out:
        Path(args.out).write_bytes(result.data)
        print(f"Wrote {args.out}")
    return 0

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="leaderboardctl")
    parser.add_argument("--database-url", default=settings.DATABASE_URL)
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_db = sub.add_parser("db")
    p_db.add_argument("action", choices=["init"])
    p_db.set_defaults(func=cmd_db)

    p_prune = sub.add_parser("prune-votes", help="delete vote records that can no longer block a vote")
    p_prune.add_argument("--window-minutes", type=int, default=settings.VOTE_WINDOW_MINUTES)
    p_prune.set_defaults(func=cmd_prune_votes)

    p_ingest = sub.add_parser("ingest", help="run the photo pipeline on a local file")
    p_ingest.add_argument("path")
    p_ingest.add_argument("--out")
    p_ingest.set_defaults(func=cmd_ingest)

    return parser

def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.LOG_LEVEL.upper(),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    return args.func(args)

if __name__ == "__main__":
    raise SystemExit(main())
