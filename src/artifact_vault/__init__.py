"""
Artifact Vault - artifact storage and retrieval for build runs.

Lets jobs persist named, immutable bundles of files during a run and lets
later jobs locate, fetch and merge those bundles by name, id or pattern.
"""

from artifact_vault.version import __version__

# API module is available but not exported by default
# Import explicitly: from artifact_vault.api import create_app

__all__ = ["__version__"]
