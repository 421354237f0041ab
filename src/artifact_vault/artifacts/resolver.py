"""
Artifact resolution.

Translates a selector plus a scope into an authorized, ordered list of
sealed artifact records.
"""

import logging

from artifact_vault.artifacts.models import (
    ArtifactRecord,
    ById,
    ByName,
    ByPattern,
    CallerContext,
    OtherRepository,
    OtherRun,
    SameRun,
    Scope,
    Selector,
)
from artifact_vault.artifacts.storage import ArtifactRegistry
from artifact_vault.auth.tokens import (
    READ_PERMISSION,
    TokenError,
    decode_capability_token,
)
from artifact_vault.core.exceptions import (
    ArtifactNotFoundError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def describe_scope(scope: Scope) -> str:
    """Short label for a scope, used in errors and logs."""
    if isinstance(scope, OtherRepository):
        return f"repository {scope.repository_id} run {scope.run_id}"
    if isinstance(scope, OtherRun):
        return f"run {scope.run_id}"
    return "same run"


class Resolver:
    """
    Finds sealed artifacts for a caller.

    Same-run requests need no token. Any other scope requires a capability
    token granting ``artifacts:read`` on the target repository and run, and
    that check runs before the registry is touched.
    """

    def __init__(self, registry: ArtifactRegistry, token_secret: str):
        self._registry = registry
        self._token_secret = token_secret

    def authorize(
        self,
        scope: Scope,
        caller: CallerContext,
        token: str | None = None,
    ) -> tuple[str, int]:
        """
        Authorize a scope for a caller.

        Args:
            scope: Requested scope
            caller: Identity of the requesting job
            token: Capability token for cross-scope requests

        Returns:
            Tuple of (repository_id, run_id) of the target run

        Raises:
            UnauthorizedError: If the scope is not authorized
        """
        if isinstance(scope, SameRun):
            return caller.repository_id, caller.run_id

        if isinstance(scope, OtherRun):
            repository_id, run_id = caller.repository_id, scope.run_id
        elif isinstance(scope, OtherRepository):
            repository_id, run_id = scope.repository_id, scope.run_id
        else:
            raise ValidationError(f"Unsupported scope: {scope!r}", field="scope")

        label = describe_scope(scope)
        if not token:
            logger.warning(f"Denied {label} for run {caller.run_id}: no capability token")
            raise UnauthorizedError(
                f"A capability token is required to read from {label}",
                scope=label,
                reason="missing token",
            )

        try:
            capability = decode_capability_token(token, self._token_secret)
        except TokenError as e:
            logger.warning(f"Denied {label} for run {caller.run_id}: {e}")
            raise UnauthorizedError(
                f"Capability token rejected for {label}",
                scope=label,
                reason=str(e),
            ) from e

        if not capability.grants(repository_id, run_id, READ_PERMISSION):
            logger.warning(f"Denied {label} for run {caller.run_id}: token does not grant the scope")
            raise UnauthorizedError(
                f"Capability token does not grant read access to {label}",
                scope=label,
                reason="insufficient scope",
            )

        return repository_id, run_id

    def resolve(
        self,
        selector: Selector,
        caller: CallerContext,
        scope: Scope | None = None,
        token: str | None = None,
    ) -> list[ArtifactRecord]:
        """
        Resolve a selector to sealed records.

        Args:
            selector: ByName, ById or ByPattern
            caller: Identity of the requesting job
            scope: Where to look (defaults to the caller's run)
            token: Capability token for cross-scope requests

        Returns:
            Matching records; patterns keep the registry's scan order and
            may return an empty list

        Raises:
            UnauthorizedError: If the scope is not authorized
            ArtifactNotFoundError: If a name or ID matches nothing in scope
        """
        scope = scope or SameRun()
        repository_id, run_id = self.authorize(scope, caller, token)

        if isinstance(selector, ByName):
            record = self._registry.lookup_by_name(run_id, selector.name)
            if record.repository_id != repository_id:
                raise ArtifactNotFoundError(
                    f"Artifact '{selector.name}' not found in run {run_id}",
                    run_id=run_id,
                    name=selector.name,
                )
            return [record]

        if isinstance(selector, ById):
            record = self._registry.lookup_by_id(selector.artifact_id)
            # Records outside the scope look exactly like missing ones
            if (
                not record.is_sealed
                or record.run_id != run_id
                or record.repository_id != repository_id
            ):
                raise ArtifactNotFoundError(
                    f"Artifact {selector.artifact_id} not found",
                    artifact_id=selector.artifact_id,
                )
            return [record]

        if isinstance(selector, ByPattern):
            records = [
                record
                for record in self._registry.scan(run_id, selector.pattern)
                if record.repository_id == repository_id
            ]
            logger.debug(f"Pattern '{selector.pattern}' in run {run_id} matched {len(records)} artifact(s)")
            return records

        raise ValidationError(f"Unsupported selector: {selector!r}", field="selector")
