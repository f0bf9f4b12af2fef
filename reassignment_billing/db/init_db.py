# reassignment_billing/db/init_db.py
from __future__ import annotations

import argparse
import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from reassignment_billing.db.base import Base
from reassignment_billing.db.session import engine as default_engine

# Import all models so metadata is complete
from reassignment_billing import models  # noqa: F401

logger = logging.getLogger(__name__)


def create_tables(bind: Engine = None) -> None:
    bind = bind or default_engine
    Base.metadata.create_all(bind=bind)


def print_tables(bind: Engine = None) -> set:
    bind = bind or default_engine
    names = set(inspect(bind).get_table_names())
    print("Existing tables:", sorted(names))
    return names


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Create reassignment billing tables")
    parser.add_argument("--list",
                        action="store_true",
                        help="only print the existing tables")
    args = parser.parse_args()

    try:
        if not args.list:
            create_tables()
            logger.info("Tables created on %s", default_engine.url)
        print_tables()
    except SQLAlchemyError:
        logger.exception("Failed to initialise database")
        raise


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
