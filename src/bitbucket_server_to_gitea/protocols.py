"""Protocols defining the contracts for the source and target systems.

The migration architecture separates concerns into three components:

1. SourceClient: Reads projects, repositories and permissions (Bitbucket Server)
2. TargetClient: Provisions organizations, teams, users and repositories (Gitea)
3. Migrator: Orchestrates the flow and maps permissions between the two models

Both clients are narrow so each can be replaced by an in-memory fake in tests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .models import (
        OrgHandle,
        PermissionGrant,
        PermissionScope,
        ProjectInfo,
        RepoHandle,
        RepositoryInfo,
        TargetIdentity,
        TeamHandle,
        UserHandle,
        UserIdentity,
    )


class SourceClient(Protocol):
    """Read-only access to the source system.

    Every method is a single blocking remote call with no internal retry.
    Non-2xx responses raise RemoteAPIError.
    """

    def get_project(self, key: str) -> ProjectInfo:
        """Return the project with the given key."""
        ...

    def get_repository(self, project_key: str, slug: str) -> RepositoryInfo:
        """Return a single repository of a project."""
        ...

    def list_repositories(self, project_key: str) -> list[RepositoryInfo]:
        """Return every repository of a project.

        Pagination is handled internally; the caller sees a fully
        materialized list.
        """
        ...

    def list_user_permissions(
        self, scope: PermissionScope, key: str, slug: str | None = None
    ) -> list[PermissionGrant]:
        """Return the grants held directly by users on a project or repository."""
        ...

    def list_group_permissions(
        self, scope: PermissionScope, key: str, slug: str | None = None
    ) -> list[PermissionGrant]:
        """Return the grants held by groups on a project or repository."""
        ...

    def list_group_members(self, group_name: str) -> list[UserIdentity]:
        """Return the members of a group."""
        ...


class TargetClient(Protocol):
    """Provisioning access to the target system.

    Every ``ensure_*`` method has create-or-get semantics so that a run can be
    repeated, or resumed after a timeout, without creating duplicates.
    """

    def ensure_organization(self, name: str, description: str, is_public: bool) -> OrgHandle:
        """Look up an organization by name, creating it when it does not exist.

        Raises:
            RemoteAPIError: If the lookup fails with anything other than 404,
                or if creation fails
        """
        ...

    def ensure_user(self, identity: TargetIdentity) -> UserHandle:
        """Look up a user by username, creating it when it does not exist."""
        ...

    def ensure_team(self, org: str, level: str) -> TeamHandle:
        """Find or create the team that represents a source permission level.

        Raises:
            InvalidPermissionError: If the level has no team template
        """
        ...

    def add_team_member(self, team: TeamHandle, username: str) -> None:
        """Add a user to a team. Adding an existing member is a no-op."""
        ...

    def add_collaborator(self, owner: str, repo: str, username: str, level: str) -> None:
        """Grant a user direct access to a repository.

        Raises:
            InvalidPermissionError: If the level is not a repository level
        """
        ...

    def migrate_repository(
        self,
        owner: str,
        name: str,
        clone_addr: str,
        description: str,
        is_private: bool,
        auth_username: str,
        auth_password: str,
    ) -> RepoHandle:
        """Import a repository with its full history by server-side clone.

        This is the one long-running call of the pipeline.
        """
        ...
