"""
Database management script for sqlh.

Usage:
  python scripts/manage_db.py up                 # Apply pending migrations
  python scripts/manage_db.py down               # Revert all migrations
  python scripts/manage_db.py to VERSION         # Migrate up or down to VERSION
  python scripts/manage_db.py ping               # Check the database end to end
  python scripts/manage_db.py reset [--yes]      # Delete the DB file and migrate up again

The database file is taken from --db, or SQLH_DB_PATH (see Config).
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from sqlh.core.config import Config
from sqlh.core.database import Helper, initialize_database
from sqlh.core.errors import SqlhError
from sqlh.testing import cleanup
from sqlh.utils.logging_config import get_logger

logger = get_logger("sqlh.manage_db")


def reset(db_path: Path, assume_yes: bool) -> int:
    print("\n=== sqlh reset ===")
    print(f"DB path: {db_path}")

    if not assume_yes:
        try:
            confirm = input("Type 'RESET' to proceed: ").strip()
        except KeyboardInterrupt:
            print("\nAborted.")
            return 1
        if confirm.upper() != "RESET":
            print("Aborted.")
            return 1

    cleanup(str(db_path))
    print(f"Deleted DB files: {db_path}*")

    helper = initialize_database(str(db_path), log=logger)
    helper.close()
    print("Reinitialized database (migrations applied)")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Manage the sqlh database")
    parser.add_argument("--db", default=None, help="Database file (default: SQLH_DB_PATH)")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("up", help="Apply pending migrations")
    subparsers.add_parser("down", help="Revert all migrations")
    to_parser = subparsers.add_parser("to", help="Migrate to a specific version")
    to_parser.add_argument("version")
    subparsers.add_parser("ping", help="Check the database end to end")
    reset_parser = subparsers.add_parser("reset", help="Delete and recreate the database")
    reset_parser.add_argument("--yes", action="store_true", help="Skip confirmation prompt")
    args = parser.parse_args(argv)

    db_path = args.db or Config.DB_PATH
    if args.db is None:
        Config.validate()

    if args.command == "reset":
        return reset(Path(db_path), args.yes)

    helper = Helper(db_path, log=logger)
    try:
        helper.connect()
        if args.command == "up":
            version = helper.migrate_up()
        elif args.command == "down":
            version = helper.migrate_down()
        elif args.command == "to":
            version = helper.migrate_to(args.version)
        else:
            helper.ping()
            print("ok")
            return 0
    except SqlhError as exc:
        print(f"❌ {exc}")
        return 1
    finally:
        helper.close()

    print(f"✅ Current version: {version or '(none)'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
