"""API route modules."""

from artifact_vault.api.routes import admin, artifacts, health

__all__ = ["admin", "artifacts", "health"]
