# scripts/setup/init_db.py
"""
Create the engine's tables, or with --check-only report which are missing.
Exits non-zero when the database is unreachable or a table is still missing.

Usage:
  python scripts/setup/init_db.py
  python scripts/setup/init_db.py --check-only
"""

import argparse
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from fleet_integrity.database import Base, create_tables, engine
from fleet_integrity.models import alert, driver, maintenance_task, trip, vehicle  # noqa: F401  registers the tables


def missing_tables(bind) -> list:
    """Model tables that do not exist in the database behind `bind`."""
    expected = set(Base.metadata.tables)
    existing = set(inspect(bind).get_table_names())
    return sorted(expected - existing)


def run(bind, check_only: bool = False) -> int:
    try:
        missing = missing_tables(bind)
    except SQLAlchemyError as e:
        print(f"Database unreachable: {e}")
        return 2

    if missing and not check_only:
        create_tables(bind=bind)
        missing = missing_tables(bind)

    for name in sorted(Base.metadata.tables):
        print(f"  {'missing' if name in missing else 'ok':8} {name}")
    return 1 if missing else 0


def main():
    parser = argparse.ArgumentParser(description="Fleet Integrity Engine schema setup")
    parser.add_argument("--check-only", action="store_true", help="Report missing tables without creating them")
    args = parser.parse_args()
    sys.exit(run(engine, check_only=args.check_only))


if __name__ == "__main__":
    main()
