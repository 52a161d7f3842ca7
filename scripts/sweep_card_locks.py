#!/usr/bin/env python3
"""
sweep_card_locks.py - Clear expired progress-board card locks.

Usage examples:
  python scripts/sweep_card_locks.py
  python scripts/sweep_card_locks.py --school-id 3
  python scripts/sweep_card_locks.py --env-file /path/to/.env --json

Flags:
  --env-file PATH
    Load environment variables from PATH before connecting (default: .env in the repo root).
  --school-id N
    Only sweep cards of one school.
  --json
    Print the result as JSON.

Meant to run from cron every few minutes; running it twice clears nothing the second time.
"""
import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_ENV_PATH = ROOT_DIR / ".env"
sys.path.append(str(ROOT_DIR / "backend"))


def ParseArgs(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Clear expired progress-board card locks.")
    parser.add_argument("--env-file", default=str(DEFAULT_ENV_PATH))
    parser.add_argument("--school-id", type=int, default=None)
    parser.add_argument("--json", action="store_true")
    return parser.parse_args(argv)


def Main(argv: list[str] | None = None) -> int:
    args = ParseArgs(argv)
    if Path(args.env_file).exists():
        load_dotenv(args.env_file)

    from app.core.logging import setup_logging
    from app.db import SessionScope
    from app.modules.progress.services.card_lock_service import CleanupExpiredLocks

    setup_logging()
    logger = logging.getLogger("progress.sweep")

    started = datetime.now(tz=timezone.utc)
    with SessionScope() as db:
        cleared = CleanupExpiredLocks(db, school_id=args.school_id)

    if args.json:
        print(json.dumps({"Cleared": cleared, "SchoolId": args.school_id, "RanAt": started.isoformat()}))
    else:
        scope = f"school {args.school_id}" if args.school_id is not None else "all schools"
        print(f"Cleared {cleared} expired card lock(s) for {scope}.")
    logger.info("sweep finished cleared=%s school_id=%s", cleared, args.school_id)
    return 0


if __name__ == "__main__":
    sys.exit(Main())
