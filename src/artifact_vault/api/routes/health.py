"""
Health check endpoints.

Reports registry reachability, blob storage and reaper status.
"""

import logging
import shutil
import sqlite3
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from artifact_vault.api.dependencies import get_service
from artifact_vault.api.schemas.responses import HealthResponse
from artifact_vault.artifacts.service import ArtifactService
from artifact_vault.version import __version__

router = APIRouter()
logger = logging.getLogger(__name__)

MIN_FREE_BYTES = 100 * 1024 * 1024


def _check_components(service: ArtifactService) -> dict[str, str]:
    components: dict[str, str] = {}

    try:
        stats = service.stats()
        components["registry"] = f"healthy: {stats['sealed_count']} sealed artifacts"
    except sqlite3.Error as e:
        logger.error(f"Registry health check failed: {e}")
        components["registry"] = f"unhealthy: {e}"

    blobs_dir = service.settings.blobs_dir
    try:
        free = shutil.disk_usage(blobs_dir).free
        state = "healthy" if free >= MIN_FREE_BYTES else "degraded"
        components["storage"] = f"{state}: {free // (1024 * 1024)} MB free"
    except OSError as e:
        components["storage"] = f"unhealthy: {e}"

    components["reaper"] = service.reaper.status.value
    return components


@router.get("", response_model=HealthResponse)
@router.get("/", response_model=HealthResponse, include_in_schema=False)
async def health_check(service: ArtifactService = Depends(get_service)) -> HealthResponse:
    """Perform a health check on the registry and blob storage."""
    components = await run_in_threadpool(_check_components, service)

    if any(value.startswith("unhealthy") for value in components.values()):
        overall = "unhealthy"
    elif any(value.startswith("degraded") for value in components.values()):
        overall = "degraded"
    else:
        overall = "healthy"

    return HealthResponse(
        status=overall,
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        components=components,
    )
