"""
Bitbucket Server to Gitea Migration Tool

Migrates Bitbucket Server projects and repositories to Gitea organizations,
translating user and group permissions into teams and collaborators.
"""

from __future__ import annotations

# Package version, defined before the submodule imports so cli can read it
__version__ = "0.1.0"

from .bitbucket_client import BitbucketServerClient
from .cli import main
from .config import MigrationConfig, load_config
from .exceptions import (
    CloneLinkError,
    ConfigError,
    DeadlineExceededError,
    GroupResolutionError,
    InvalidPermissionError,
    MigrationError,
    RemoteAPIError,
)
from .gitea_client import GiteaClient
from .orchestrator import MigrationResult, Migrator
from .permissions import flatten
from .utils import setup_logging

__all__ = [
    "BitbucketServerClient",
    "CloneLinkError",
    "ConfigError",
    "DeadlineExceededError",
    "GiteaClient",
    "GroupResolutionError",
    "InvalidPermissionError",
    "MigrationConfig",
    "MigrationError",
    "MigrationResult",
    "Migrator",
    "RemoteAPIError",
    "flatten",
    "load_config",
    "main",
    "setup_logging",
]
