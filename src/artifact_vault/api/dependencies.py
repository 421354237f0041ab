"""Shared FastAPI dependencies: the service instance and caller identity."""

from fastapi import Depends, Header, Request

from artifact_vault.api.schemas.exceptions import BadRequestError, MissingIdentityError
from artifact_vault.artifacts.models import (
    CallerContext,
    OtherRepository,
    OtherRun,
    SameRun,
    Scope,
)
from artifact_vault.artifacts.service import ArtifactService
from artifact_vault.auth.tokens import extract_token_from_header


def get_service(request: Request) -> ArtifactService:
    """Service attached to the app by ``create_app``."""
    return request.app.state.service


def get_optional_caller(
    request: Request,
    x_run_token: str | None = Header(None, description="Run token identifying the calling job"),
    service: ArtifactService = Depends(get_service),
) -> CallerContext | None:
    """
    Caller identity from the run token, or None when none was sent.

    The run and repository come from the signed token claims only.

    Raises:
        UnauthorizedError: If the token is invalid or not a run token
    """
    if not x_run_token:
        return None
    caller = service.authenticate_run(x_run_token)
    request.state.caller = caller
    return caller


def get_caller(caller: CallerContext | None = Depends(get_optional_caller)) -> CallerContext:
    """Caller identity; a run token is required."""
    if caller is None:
        raise MissingIdentityError()
    return caller


def get_token(
    authorization: str | None = Header(None, description="Bearer capability token"),
) -> str | None:
    """Capability token from the Authorization header, if any."""
    return extract_token_from_header(authorization)


def scope_from_query(run_id: int | None, repository_id: str | None) -> Scope:
    """Build a scope from ``run_id``/``repository_id`` query parameters."""
    if run_id is None:
        if repository_id is not None:
            raise BadRequestError("run_id is required when repository_id is given")
        return SameRun()
    if repository_id is None:
        return OtherRun(run_id)
    return OtherRepository(repository_id, run_id)
