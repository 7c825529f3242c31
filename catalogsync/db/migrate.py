"""Database migration helpers."""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from catalogsync.db.session import create_engine_from_env
from catalogsync.db.stores import CategoryStore
from catalogsync.db.tables import metadata
from catalogsync.ingest import load_categories, seed_categories

logger = logging.getLogger(__name__)


def run_migrations(engine: Engine) -> None:
    """Create any missing tables and indexes."""
    metadata.create_all(engine)
    logger.info("Schema ready on %s", engine.url.render_as_string(hide_password=True))


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Create the catalog schema")
    parser.add_argument("--seed", action="store_true", help="load categories.yml into an empty store")
    parser.add_argument("--categories", help="alternative categories YAML file")
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    engine = create_engine_from_env()
    try:
        run_migrations(engine)
        if args.seed:
            seed_categories(CategoryStore(engine), load_categories(args.categories))
    except SQLAlchemyError as exc:
        print(f"Migration failed: {exc}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
