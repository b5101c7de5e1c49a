"""
Seed data script for the providers and services catalog.

The catalog is read from a JSON file:

    {
      "tenant_id": "cabinet-dupont",
      "providers": [
        {"id": "dr-martin", "name": "Dr Martin", "timezone": "Europe/Paris",
         "weekly_schedule": {"monday": [{"start": "09:00", "end": "12:00"}]},
         "services": [{"id": "consult-30", "name": "Consultation", "duration_minutes": 30}]}
      ]
    }

Existing rows are left untouched, so the script is safe to run repeatedly.
Can be run standalone: python -m database.seeds.catalog path/to/catalog.json
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from booking.models import Provider, Service
from database import models as orm
from database.connection import engine, get_async_session

logger = logging.getLogger(__name__)

DEFAULT_TENANT_ID = "default"


class CatalogError(ValueError):
    """Raised when a catalog file is malformed."""


def parse_catalog(data: dict[str, Any]) -> tuple[list[Provider], list[Service]]:
    """
    Turn catalog JSON into provider and service records.

    Raises:
        CatalogError: unknown timezone, missing ids, non-positive durations
    """
    tenant_id = data.get("tenant_id", DEFAULT_TENANT_ID)
    providers: list[Provider] = []
    services: list[Service] = []

    for entry in data.get("providers", []):
        if not entry.get("id") or not entry.get("name"):
            raise CatalogError(f"Provider entry needs an id and a name: {entry}")
        timezone = entry.get("timezone", "Europe/Paris")
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise CatalogError(f"Unknown timezone {timezone!r} for provider {entry['id']}") from e

        providers.append(
            Provider(
                id=entry["id"],
                tenant_id=tenant_id,
                name=entry["name"],
                timezone=timezone,
                weekly_schedule=entry.get("weekly_schedule", {}),
                is_active=entry.get("is_active", True),
            )
        )

        for service_entry in entry.get("services", []):
            if not service_entry.get("id") or not service_entry.get("name"):
                raise CatalogError(f"Service entry needs an id and a name: {service_entry}")
            service = Service(
                id=service_entry["id"],
                provider_id=entry["id"],
                name=service_entry["name"],
                duration_minutes=service_entry.get("duration_minutes", 60),
                buffer_minutes=service_entry.get("buffer_minutes", 0),
                is_active=service_entry.get("is_active", True),
            )
            if service.duration_minutes <= 0 or service.buffer_minutes < 0:
                raise CatalogError(f"Invalid duration for service {service.id}")
            services.append(service)

    return providers, services


async def create_schema() -> None:
    """Create missing tables (existing tables are not altered)."""
    async with engine.begin() as conn:
        await conn.run_sync(orm.Base.metadata.create_all)
    logger.info("Database schema ready")


async def seed_catalog(path: Path) -> tuple[int, int]:
    """
    Insert providers and services from a catalog file.

    Returns:
        (providers created, services created)
    """
    providers, services = parse_catalog(json.loads(path.read_text()))
    created_providers = 0
    created_services = 0

    async with get_async_session() as session:
        for provider in providers:
            if await session.get(orm.Provider, provider.id) is not None:
                logger.info(f"Provider already exists: {provider.id}")
                continue
            session.add(
                orm.Provider(
                    id=provider.id,
                    tenant_id=provider.tenant_id,
                    name=provider.name,
                    timezone=provider.timezone,
                    weekly_schedule=provider.weekly_schedule,
                    is_active=provider.is_active,
                )
            )
            created_providers += 1
        await session.flush()

        for service in services:
            if await session.get(orm.Service, service.id) is not None:
                logger.info(f"Service already exists: {service.id}")
                continue
            session.add(
                orm.Service(
                    id=service.id,
                    provider_id=service.provider_id,
                    name=service.name,
                    duration_minutes=service.duration_minutes,
                    buffer_minutes=service.buffer_minutes,
                    is_active=service.is_active,
                )
            )
            created_services += 1

        await session.commit()

    logger.info(f"Catalog seeded: {created_providers} providers, {created_services} services created")
    return created_providers, created_services


async def main(path: Path) -> None:
    await create_schema()
    await seed_catalog(path)


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python -m database.seeds.catalog path/to/catalog.json")
        sys.exit(2)
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main(Path(sys.argv[1])))
