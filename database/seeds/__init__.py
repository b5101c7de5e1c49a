"""
Seed data for the reservation catalog.

Provides seed_all() which creates missing tables, then loads providers and
services from a catalog JSON file.
Can be run standalone: python -m database.seeds path/to/catalog.json
"""

import asyncio
import sys
from pathlib import Path

from database.seeds.catalog import create_schema, seed_catalog

EXAMPLE_CATALOG = Path(__file__).parent / "catalog.example.json"


async def seed_all(catalog_path: Path = EXAMPLE_CATALOG) -> None:
    print("Starting database seeding...")
    print("-" * 50)

    await create_schema()
    providers, services = await seed_catalog(catalog_path)

    print("-" * 50)
    print(f"Database seeding complete! ({providers} providers, {services} services created)")


if __name__ == "__main__":
    asyncio.run(seed_all(Path(sys.argv[1]) if len(sys.argv) > 1 else EXAMPLE_CATALOG))
