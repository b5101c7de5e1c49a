"""
Health check files for long-running workers.

Each worker keeps /tmp/health/{worker}_health.json with the last run of each
of its jobs; container health checks read the overall_status key.
"""

import json
import logging
import time
from datetime import datetime
from pathlib import Path

from booking.models import utc_now

logger = logging.getLogger(__name__)

HEALTH_DIR = Path("/tmp/health")


async def update_health_check(
    worker_name: str,
    job_name: str,
    last_run: datetime,
    status: str,
    processed: int,
    errors: int,
    health_dir: Path = HEALTH_DIR,
) -> None:
    """
    Update health check file with job statistics.

    Args:
        worker_name: Worker owning the file
        job_name: Name of the job
        last_run: Timestamp of job completion
        status: Health status ('healthy' or 'unhealthy')
        processed: Number of items processed
        errors: Number of errors encountered
    """
    health_dir.mkdir(parents=True, exist_ok=True)
    health_file = health_dir / f"{worker_name}_health.json"
    temp_file = health_dir / f"{worker_name}_health.{int(time.time())}.tmp"

    health_data = {}
    if health_file.exists():
        try:
            health_data = json.loads(health_file.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable health file {health_file}: {e}")

    health_data[job_name] = {
        "last_run": last_run.isoformat(),
        "status": status,
        "processed": processed,
        "errors": errors,
    }

    all_healthy = all(
        job.get("status") == "healthy"
        for job in health_data.values()
        if isinstance(job, dict)
    )
    health_data["overall_status"] = "healthy" if all_healthy else "unhealthy"
    health_data["last_updated"] = utc_now().isoformat()

    try:
        temp_file.write_text(json.dumps(health_data, indent=2))
        temp_file.rename(health_file)
        logger.debug(f"Health check file updated: {health_file}")
    except OSError as e:
        logger.error(f"Failed to write health check file: {e}", exc_info=True)
