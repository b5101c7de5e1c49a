"""
System initialization for the Slotbook booking engine.

- Creates missing database tables
- Seeds the provider/service catalog from a JSON file
- Verifies database tables, catalog rows and (if used) Redis

Designed to be idempotent and safe to run multiple times:
    python scripts/init_system.py [path/to/catalog.json]
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import text  # noqa: E402

from database.connection import get_async_session  # noqa: E402
from database.seeds import EXAMPLE_CATALOG  # noqa: E402
from database.seeds.catalog import create_schema, seed_catalog  # noqa: E402
from shared.config import get_settings  # noqa: E402

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

CRITICAL_TABLES = ["providers", "services", "slots", "slot_holds", "appointments", "notifications"]
CATALOG_TABLES = ["providers", "services"]


async def check_tables_exist() -> dict[str, bool]:
    """
    Check which critical tables exist in the database.

    Returns:
        dict: Mapping of table names to existence status
    """
    table_status = {}

    logger.info("Checking table existence...")
    async with get_async_session() as session:
        for table in CRITICAL_TABLES:
            query = text("""
                SELECT EXISTS (
                    SELECT FROM information_schema.tables
                    WHERE table_schema = 'public'
                    AND table_name = :table_name
                )
            """)
            result = await session.execute(query, {"table_name": table})
            exists = bool(result.scalar())
            table_status[table] = exists
            logger.info(f"  Table '{table}': {'exists' if exists else 'missing'}")

    return table_status


async def check_catalog_rows() -> dict[str, int]:
    """
    Count catalog rows.

    Returns:
        dict: Mapping of table names to row counts
    """
    row_counts = {}

    logger.info("Checking catalog data...")
    async with get_async_session() as session:
        for table in CATALOG_TABLES:
            result = await session.execute(text(f"SELECT COUNT(*) FROM {table}"))
            row_counts[table] = result.scalar()
            logger.info(f"  Table '{table}': {row_counts[table]} rows")

    return row_counts


async def verify_redis_connection() -> bool:
    """Ping Redis (only when it holds the rate limit counters)."""
    if get_settings().RATE_LIMIT_BACKEND != "redis":
        logger.info("Redis not used (in-memory rate limiting)")
        return True

    from shared.redis_client import get_redis_client

    try:
        await get_redis_client().ping()
        logger.info("Redis connection successful")
        return True
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        return False


async def run_system_initialization(catalog_path: Path) -> bool:
    """
    Create schema, seed catalog and verify.

    Returns:
        bool: True if the system is ready to take bookings
    """
    logger.info("=" * 60)
    logger.info("SLOTBOOK - SYSTEM INITIALIZATION")
    logger.info("=" * 60)

    await create_schema()
    await seed_catalog(catalog_path)

    all_checks_passed = True

    table_status = await check_tables_exist()
    missing_tables = [t for t, exists in table_status.items() if not exists]
    if missing_tables:
        all_checks_passed = False
        logger.error(f"Missing tables: {', '.join(missing_tables)}")

    row_counts = await check_catalog_rows()
    empty_tables = [t for t, count in row_counts.items() if count == 0]
    if empty_tables:
        all_checks_passed = False
        logger.error(f"Empty catalog tables: {', '.join(empty_tables)}")

    if not await verify_redis_connection():
        all_checks_passed = False

    logger.info("=" * 60)
    if all_checks_passed:
        logger.info("SYSTEM INITIALIZATION PASSED")
    else:
        logger.error("SYSTEM INITIALIZATION FAILED")
    logger.info("=" * 60)

    return all_checks_passed


async def main():
    catalog_path = Path(sys.argv[1]) if len(sys.argv) > 1 else EXAMPLE_CATALOG
    try:
        success = await run_system_initialization(catalog_path)
        sys.exit(0 if success else 1)
    except Exception as e:
        logger.exception(f"Fatal error during system initialization: {e}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
