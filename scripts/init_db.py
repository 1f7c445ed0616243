"""
Database initialization script.

Creates the credential tables in the chosen layout:

    inline     user_integrations carries service_name and token columns
    catalogue  user_integrations references the integrations catalogue
    hybrid     both column sets on one table

Existing tables are left untouched (create only, no migrations).
"""

import argparse
import asyncio
import logging

from autoflow.config import get_settings
from autoflow.database.layout import SchemaDetector, create_schema
from autoflow.database.session import create_engine_for_url, ensure_sqlite_directory

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def init_db(database_url: str, layout: str) -> None:
    """Create the tables and report the detected layout."""
    ensure_sqlite_directory(database_url)
    engine = create_engine_for_url(database_url)
    try:
        logger.info(f"🗄️  Creating credential tables ({layout})...")
        async with engine.begin() as conn:
            await create_schema(conn, layout)
        detected = await SchemaDetector(engine).detect()
        logger.info(f"✅ Database ready, detected layout: {detected.name}")
    finally:
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Create the Autoflow credential tables")
    parser.add_argument(
        "--layout",
        choices=["inline", "catalogue", "hybrid"],
        default=None,
        help="Table layout (default: SCHEMA_LAYOUT setting)",
    )
    parser.add_argument("--database-url", default=None, help="Async database URL (default: DATABASE_URL)")
    args = parser.parse_args()

    settings = get_settings()
    asyncio.run(init_db(args.database_url or settings.DATABASE_URL, args.layout or settings.SCHEMA_LAYOUT))


if __name__ == "__main__":
    main()
