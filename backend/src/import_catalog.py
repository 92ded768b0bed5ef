"""
Load a medicine catalog file (CSV / TSV / Excel) into the apteka database.

The file needs a name column (``name`` / ``название``) and may carry an
``aliases`` column with ``;``-separated alternative spellings.  Existing
medicines keep their ids; only new names and new aliases are written.

Usage:
    python src/import_catalog.py catalog.csv
    python src/import_catalog.py catalog.xlsx --dry-run
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

_BACKEND_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_BACKEND_DIR))

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from app.services.catalog_service import import_catalog, prepare_catalog, read_catalog_file

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def main_async(args: argparse.Namespace) -> None:
    dataframe = read_catalog_file(args.path)
    logger.info("Read %d rows from %s", dataframe.height, args.path)

    if args.dry_run:
        prepared = prepare_catalog(dataframe)
        logger.info("--dry-run: %d distinct medicines, first 5:", prepared.height)
        for row in prepared.head(5).to_dicts():
            print(row)
        return

    database_url = args.database_url or os.getenv("DB_URL")
    if not database_url:
        raise SystemExit("DB_URL is not set and --database-url was not given")

    engine = create_async_engine(database_url, echo=False, future=True)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_factory() as session:
            async with session.begin():
                summary = await import_catalog(session, dataframe)
    finally:
        await engine.dispose()
    logger.info("Import finished: %s", summary)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Import a medicine catalog into the apteka database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("path", help="Path to the CSV / TSV / Excel catalog file.")
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="Async PostgreSQL URL. Defaults to DB_URL from the environment.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Parse and normalize the file without writing to the database.",
    )

    args = parser.parse_args()
    asyncio.run(main_async(args))


if __name__ == "__main__":
    main()
