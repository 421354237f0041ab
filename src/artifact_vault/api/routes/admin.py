"""
Administrative endpoints.

Require a capability token carrying the ``artifacts:admin`` permission.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from artifact_vault.api.dependencies import get_service, get_token
from artifact_vault.artifacts.models import ReapResult
from artifact_vault.artifacts.service import ArtifactService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/reap", response_model=ReapResult)
async def reap(
    token: str | None = Depends(get_token),
    service: ArtifactService = Depends(get_service),
) -> ReapResult:
    """Run one retention pass immediately."""
    capability = service.authorize_admin(token)
    logger.info(f"Manual reaper pass requested by {capability.sub}")
    return await run_in_threadpool(service.reap)


@router.get("/stats")
async def stats(
    token: str | None = Depends(get_token),
    service: ArtifactService = Depends(get_service),
) -> dict[str, Any]:
    """Registry statistics."""
    service.authorize_admin(token)
    return await run_in_threadpool(service.stats)
