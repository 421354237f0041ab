"""
Artifact Vault REST API.

FastAPI application exposing upload, download, merge and retention
administration over HTTP.
"""

from artifact_vault.api.app import create_app

__all__ = ["create_app"]
