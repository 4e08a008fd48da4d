from __future__ import annotations

import argparse
from typing import List, Optional, Sequence

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

# Registers the account and token tables on Base.metadata.
from database import models  # noqa: F401
from database.session import Base, engine
from utils.logger import get_logger, setup_logger

logger = get_logger()


def existing_tables(bind: Engine = engine) -> List[str]:
    return sorted(inspect(bind).get_table_names())


def init_database(bind: Engine = engine, *, drop_existing: bool = False) -> List[str]:
    """Create the account tables and return the names that were missing before."""
    try:
        if drop_existing:
            logger.warning("Dropping %s before re-creating them.", ", ".join(existing_tables(bind)) or "no tables")
            Base.metadata.drop_all(bind=bind)
        before = set(existing_tables(bind))
        Base.metadata.create_all(bind=bind)
    except SQLAlchemyError as exc:
        logger.exception("Failed to create account tables: %s", exc)
        raise

    created = sorted(set(existing_tables(bind)) - before)
    logger.info("Account tables ready (created: %s)", ", ".join(created) or "none")
    return created


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create the local account and access-token tables for the token ledger API."
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--drop-existing",
        action="store_true",
        help="Drop existing tables before creating the schema.",
    )
    mode.add_argument(
        "--list",
        action="store_true",
        help="Only print the tables that already exist.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    setup_logger()
    args = _parse_args(argv)
    if args.list:
        for name in existing_tables():
            print(name)
        return
    init_database(drop_existing=args.drop_existing)


if __name__ == "__main__":
    main()
