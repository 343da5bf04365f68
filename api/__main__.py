"""Command line interface for running the API server."""
import argparse
import asyncio
import logging

import uvicorn

from config import get_settings
from database import init_db, close as db_close

logger = logging.getLogger(__name__)

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the classifieds API server")
    parser.add_argument(
        "--init-schema",
        action="store_true",
        help="Install or migrate the schema on a local stand-in database, then exit"
    )
    parser.add_argument(
        "--force-recreate",
        action="store_true",
        help="With --init-schema, drop all tables first"
    )
    return parser.parse_args(argv)

async def init_schema(force_recreate: bool) -> None:
    """Install the schema and close the pool again."""
    logger.info("Initializing database schema...")
    try:
        await init_db(apply_schema=True, force_recreate=force_recreate)
        logger.info("Schema is up to date")
    finally:
        await db_close()

def main(argv=None) -> None:
    args = parse_args(argv)
    settings = get_settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings['log_level']),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.init_schema:
        asyncio.run(init_schema(args.force_recreate))
        return

    from api import create_app

    logger.info(f"Starting API on {settings['api_host']}:{settings['api_port']}")
    uvicorn.run(
        create_app(settings['cors_origins']),
        host=settings['api_host'],
        port=settings['api_port'],
        log_level=settings['log_level'].lower()
    )

if __name__ == "__main__":
    main()
