"""
Artifact endpoints.

Upload, download, merge, listing and retirement of run artifacts. All
packaging and extraction work runs in the threadpool.
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import FileResponse
from starlette.concurrency import run_in_threadpool

from artifact_vault.api.dependencies import (
    get_caller,
    get_optional_caller,
    get_service,
    get_token,
    scope_from_query,
)
from artifact_vault.api.schemas.exceptions import MissingIdentityError
from artifact_vault.api.schemas.requests import DownloadRequest, MergeRequest, UploadRequest
from artifact_vault.api.schemas.responses import (
    ArtifactListResponse,
    ArtifactResponse,
    DeleteResponse,
)
from artifact_vault.artifacts.models import CallerContext, DownloadResult, UploadResult
from artifact_vault.artifacts.service import ArtifactService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=UploadResult, status_code=status.HTTP_201_CREATED)
async def upload_artifact(
    request: UploadRequest,
    caller: CallerContext = Depends(get_caller),
    service: ArtifactService = Depends(get_service),
) -> UploadResult:
    """
    Package files from a workspace into a new sealed artifact.

    Returns the artifact ID, its digest and a signed download URL.
    """
    return await run_in_threadpool(
        service.upload,
        caller,
        request.name,
        request.include_patterns,
        Path(request.workspace),
        exclude_patterns=request.exclude_patterns,
        retention_days=request.retention_days,
        compression_level=request.compression_level,
        if_no_files_found=request.if_no_files_found,
        overwrite=request.overwrite,
        include_hidden=request.include_hidden,
    )


@router.post("/download", response_model=DownloadResult)
async def download_artifacts(
    request: DownloadRequest,
    caller: CallerContext = Depends(get_caller),
    token: str | None = Depends(get_token),
    service: ArtifactService = Depends(get_service),
) -> DownloadResult:
    """
    Extract one or more artifacts into a directory on the service host.

    A pattern that matches several artifacts requires ``merge_multiple``.
    """
    scope = request.scope.to_scope()
    destination = Path(request.destination)

    if request.selectors is not None:
        return await run_in_threadpool(
            service.download_each,
            caller,
            [selector.to_selector() for selector in request.selectors],
            destination,
            scope=scope,
            token=token,
            merge_multiple=request.merge_multiple,
        )

    return await run_in_threadpool(
        service.download,
        caller,
        request.selector.to_selector(),
        destination,
        scope=scope,
        token=token,
        merge_multiple=request.merge_multiple,
    )


@router.post("/merge", response_model=UploadResult, status_code=status.HTTP_201_CREATED)
async def merge_artifacts(
    request: MergeRequest,
    caller: CallerContext = Depends(get_caller),
    service: ArtifactService = Depends(get_service),
) -> UploadResult:
    """Combine artifacts of the caller's run into a new artifact."""
    return await run_in_threadpool(
        service.merge,
        caller,
        request.artifact_ids,
        request.new_name,
        retention_days=request.retention_days,
        compression_level=request.compression_level,
        separate_directories=request.separate_directories,
        delete_merged=request.delete_merged,
        overwrite=request.overwrite,
    )


@router.get("", response_model=ArtifactListResponse)
async def list_artifacts(
    run_id: int | None = Query(None, description="Target run (default: caller's run)"),
    repository_id: str | None = Query(None, description="Target repository"),
    name: str | None = Query(None, description="Exact name filter"),
    pattern: str | None = Query(None, description="Name glob filter"),
    include_expired: bool = Query(False, description="Include retired artifacts"),
    caller: CallerContext = Depends(get_caller),
    token: str | None = Depends(get_token),
    service: ArtifactService = Depends(get_service),
) -> ArtifactListResponse:
    """List artifacts of a run in creation order."""
    records = await run_in_threadpool(
        service.list_artifacts,
        caller,
        scope_from_query(run_id, repository_id),
        token,
        name=name,
        pattern=pattern,
        include_expired=include_expired,
    )
    return ArtifactListResponse(
        artifacts=[ArtifactResponse.from_record(record) for record in records],
        total=len(records),
    )


@router.get("/{artifact_id}", response_model=ArtifactResponse)
async def get_artifact(
    artifact_id: int,
    run_id: int | None = Query(None, description="Target run (default: caller's run)"),
    repository_id: str | None = Query(None, description="Target repository"),
    caller: CallerContext = Depends(get_caller),
    token: str | None = Depends(get_token),
    service: ArtifactService = Depends(get_service),
) -> ArtifactResponse:
    """Get artifact metadata with its manifest and a signed download URL."""
    record = await run_in_threadpool(
        service.get_artifact,
        caller,
        artifact_id,
        scope_from_query(run_id, repository_id),
        token,
    )
    return ArtifactResponse.from_record(
        record,
        include_manifest=True,
        url=service.download_url(record.id),
    )


@router.get("/{artifact_id}/zip")
async def download_bundle(
    artifact_id: int,
    expires: int | None = Query(None, description="Signed URL expiry"),
    sig: str | None = Query(None, description="Signed URL signature"),
    run_id: int | None = Query(None, description="Target run (default: caller's run)"),
    repository_id: str | None = Query(None, description="Target repository"),
    caller: CallerContext | None = Depends(get_optional_caller),
    token: str | None = Depends(get_token),
    service: ArtifactService = Depends(get_service),
) -> FileResponse:
    """
    Stream the sealed bundle of an artifact.

    Accepts either a signed URL (``expires`` and ``sig``) or caller
    run token plus, for other runs, a capability token.
    """
    if sig is not None or expires is not None:
        record = await run_in_threadpool(service.verify_download_url, artifact_id, expires, sig)
    else:
        if caller is None:
            raise MissingIdentityError()
        record = await run_in_threadpool(
            service.get_artifact,
            caller,
            artifact_id,
            scope_from_query(run_id, repository_id),
            token,
        )

    path = await run_in_threadpool(service.open_blob, record)
    return FileResponse(
        path,
        media_type="application/zip",
        filename=f"{record.name}.zip",
        headers={"X-Artifact-Digest": record.digest or ""},
    )


@router.delete("/{name}", response_model=DeleteResponse)
async def delete_artifact(
    name: str,
    caller: CallerContext = Depends(get_caller),
    service: ArtifactService = Depends(get_service),
) -> DeleteResponse:
    """Retire the artifact with this name in the caller's run."""
    record = await run_in_threadpool(service.delete_artifact, caller, name)
    return DeleteResponse(id=record.id, name=record.name)
