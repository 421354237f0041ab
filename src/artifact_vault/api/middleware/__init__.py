"""API middleware."""

from artifact_vault.api.middleware.logging import RequestLoggingMiddleware

__all__ = ["RequestLoggingMiddleware"]
