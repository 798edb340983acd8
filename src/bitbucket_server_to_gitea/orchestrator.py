"""Migration orchestrator that provisions Gitea from a Bitbucket Server project.

The Migrator class is the central coordinator for migration. It:
1. Reads a project, its repositories and their permission grants from the source
2. Flattens group grants into users (see permissions.flatten)
3. Ensures every discovered user, the organization and its teams exist in the target
4. Imports each repository and applies its collaborators

Migration Flow
--------------
    START
      │  get_project
      ▼
    PROJECT_RESOLVED
      │  project user + group grants, flatten
      ▼
    PERMISSIONS_RESOLVED
      │  ensure_user for every identity
      ▼
    USERS_ENSURED
      │  ensure_organization, ensure_team + add_team_member per level
      ▼
    ORG_ENSURED ──► per repository:
                      REPO_RESOLVED
                      REPO_PERMISSIONS_RESOLVED   repo grants, flatten
                      REPO_USERS_ENSURED          ensure_user for new identities
                      REPO_MIGRATED               migrate_repository
                      COLLABORATORS_APPLIED       add_collaborator
      ▼
    DONE

Error Handling
--------------
- Single repository: any failure propagates to the caller.
- Whole project: a failed repository is logged and recorded, the remaining
  repositories are still migrated. Failures before the repository loop
  (project, organization, teams) abort the run.
- A run that runs out of time always aborts. Nothing is rolled back; every
  create is create-or-get, so re-running continues where the last run stopped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from .exceptions import CloneLinkError, DeadlineExceededError, MigrationError
from .models import PermissionScope, TargetIdentity
from .permissions import (
    GroupMembershipCache,
    collect_identities,
    flatten,
    strongest_collaborator_levels,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .config import MigrationConfig
    from .models import (
        CloneLink,
        FlattenedPermissionMap,
        PermissionGrant,
        ProjectInfo,
        RepositoryInfo,
        UserHandle,
    )
    from .protocols import SourceClient, TargetClient

logger = logging.getLogger(__name__)


class MigrationState(Enum):
    START = "start"
    PROJECT_RESOLVED = "project_resolved"
    PERMISSIONS_RESOLVED = "permissions_resolved"
    USERS_ENSURED = "users_ensured"
    ORG_ENSURED = "org_ensured"
    REPO_RESOLVED = "repo_resolved"
    REPO_PERMISSIONS_RESOLVED = "repo_permissions_resolved"
    REPO_USERS_ENSURED = "repo_users_ensured"
    REPO_MIGRATED = "repo_migrated"
    COLLABORATORS_APPLIED = "collaborators_applied"
    DONE = "done"


@dataclass
class MigrationStats:
    """Statistics collected during migration."""

    users_created: int = 0
    users_existing: int = 0
    teams_ensured: int = 0
    team_members_added: int = 0
    repositories_migrated: int = 0
    repositories_reused: int = 0
    collaborators_added: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class RepositoryOutcome:
    """How far one repository got, and why it stopped if it failed."""

    slug: str
    target: str  # owner/name in Gitea
    state: MigrationState = MigrationState.REPO_RESOLVED
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None and self.state is MigrationState.COLLABORATORS_APPLIED


@dataclass
class MigrationResult:
    """Result of a migration run."""

    success: bool
    project_key: str
    target_owner: str
    stats: MigrationStats
    repositories: list[RepositoryOutcome] = field(default_factory=list)


def _log_state(project_key: str, state: MigrationState) -> None:
    logger.debug(f"Project {project_key}: {state.value}")


def select_clone_url(links: Iterable[CloneLink]) -> str:
    """Return the href of the clone link Bitbucket tags as "http".

    Raises:
        CloneLinkError: If there is no such link; another protocol is never
            substituted
    """
    available: list[str] = []
    for link in links:
        if link.name.lower() == "http" and link.href:
            return link.href
        available.append(link.name or "<unnamed>")
    msg = f"No HTTP clone link found (available: {', '.join(available) or 'none'})"
    raise CloneLinkError(msg)


class Migrator:
    """Provisions a Gitea organization from a Bitbucket Server project.

    Usage:
        source = BitbucketServerClient.from_settings(config.bitbucket, deadline)
        target = GiteaClient.from_settings(config.gitea, deadline)
        migrator = Migrator(source, target, config)
        result = migrator.migrate("PROJ", "my-repo")

    Group memberships and ensured users are cached on the instance, so several
    migrate() calls on one Migrator share them.
    """

    _source: SourceClient
    _target: TargetClient

    def __init__(self, source: SourceClient, target: TargetClient, config: MigrationConfig) -> None:
        self._source = source
        self._target = target
        self._source_id: int = config.gitea.source_id
        self._clone_username: str = config.bitbucket.username
        self._clone_password: str = config.bitbucket.token
        self._groups: GroupMembershipCache = GroupMembershipCache(source)
        self._users: dict[str, UserHandle] = {}

    def migrate(
        self,
        project_key: str,
        repo_slug: str | None = None,
        *,
        target_owner: str | None = None,
        target_repo: str | None = None,
    ) -> MigrationResult:
        """Migrate one repository, or every repository of a project when repo_slug is None.

        Args:
            project_key: Bitbucket project key
            repo_slug: Repository to migrate; None for the whole project
            target_owner: Gitea organization name (default: project name)
            target_repo: Gitea repository name (default: repository name).
                Ignored when more than one repository is migrated.

        Returns:
            MigrationResult with per-repository outcomes and statistics

        Raises:
            MigrationError: On any failure in single-repository mode, on a
                failure before the repository loop, or on timeout
        """
        stats = MigrationStats()
        _log_state(project_key, MigrationState.START)
        logger.info(f"Starting migration of project {project_key}" + (f" repository {repo_slug}" if repo_slug else ""))

        project = self._source.get_project(project_key)
        _log_state(project_key, MigrationState.PROJECT_RESOLVED)
        logger.info(f"Resolved project {project.key} ({project.name})")

        grants = self._grants(PermissionScope.PROJECT, project.key)
        org_permissions = flatten(grants, self._groups.usernames)
        _log_state(project_key, MigrationState.PERMISSIONS_RESOLVED)

        self._ensure_users(grants, stats)
        _log_state(project_key, MigrationState.USERS_ENSURED)

        owner = target_owner or project.name
        self._ensure_org(owner, project, org_permissions, stats)
        _log_state(project_key, MigrationState.ORG_ENSURED)

        if repo_slug:
            repository = self._source.get_repository(project.key, repo_slug)
            outcome = RepositoryOutcome(slug=repository.slug, target=f"{owner}/{target_repo or repository.name}")
            self._migrate_repository(project.key, owner, repository, target_repo, outcome, stats)
            outcomes = [outcome]
        else:
            outcomes = self._migrate_all_repositories(project.key, owner, target_repo, stats)

        success = all(outcome.success for outcome in outcomes)
        _log_state(project_key, MigrationState.DONE)
        logger.info(
            f"Migration of project {project.key} finished: "
            f"{sum(o.success for o in outcomes)}/{len(outcomes)} repositories migrated"
        )
        return MigrationResult(
            success=success,
            project_key=project.key,
            target_owner=owner,
            stats=stats,
            repositories=outcomes,
        )

    def _grants(self, scope: PermissionScope, key: str, slug: str | None = None) -> list[PermissionGrant]:
        return [
            *self._source.list_user_permissions(scope, key, slug),
            *self._source.list_group_permissions(scope, key, slug),
        ]

    def _ensure_users(self, grants: list[PermissionGrant], stats: MigrationStats) -> None:
        """Ensure every user the grants refer to exists in the target, once per run."""
        for username, identity in collect_identities(grants, self._groups).items():
            if username in self._users:
                continue
            handle = self._target.ensure_user(
                TargetIdentity(
                    username=identity.username,
                    display_name=identity.display_name or identity.username,
                    email=identity.email,
                    source_id=self._source_id,
                )
            )
            if handle.created:
                stats.users_created += 1
            else:
                stats.users_existing += 1
            self._users[username] = handle

    def _ensure_org(
        self,
        owner: str,
        project: ProjectInfo,
        permissions: FlattenedPermissionMap,
        stats: MigrationStats,
    ) -> None:
        logger.info(f"Ensuring organization {owner}")
        _ = self._target.ensure_organization(owner, project.description, project.is_public)

        logger.info(f"Applying organization permissions for {owner}")
        for level in sorted(permissions):
            team = self._target.ensure_team(owner, level)
            stats.teams_ensured += 1
            for username in sorted(permissions[level]):
                self._target.add_team_member(team, self._target_username(username))
                stats.team_members_added += 1

    def _target_username(self, username: str) -> str:
        handle = self._users.get(username)
        return handle.username if handle is not None else username

    def _migrate_all_repositories(
        self,
        project_key: str,
        owner: str,
        target_repo: str | None,
        stats: MigrationStats,
    ) -> list[RepositoryOutcome]:
        repositories = self._source.list_repositories(project_key)
        if not repositories:
            logger.warning(f"Project {project_key} has no repositories")
        if target_repo and len(repositories) != 1:
            logger.warning(
                f"Ignoring target repository name '{target_repo}': "
                f"it only applies when exactly one repository is migrated ({len(repositories)} found)"
            )
            target_repo = None

        outcomes: list[RepositoryOutcome] = []
        for repository in repositories:
            outcome = RepositoryOutcome(slug=repository.slug, target=f"{owner}/{target_repo or repository.name}")
            outcomes.append(outcome)
            try:
                self._migrate_repository(project_key, owner, repository, target_repo, outcome, stats)
            except DeadlineExceededError:
                raise
            except MigrationError:
                logger.exception(f"Failed to migrate repository {project_key}/{repository.slug}, continuing")
        return outcomes

    def _migrate_repository(
        self,
        project_key: str,
        owner: str,
        repository: RepositoryInfo,
        target_repo: str | None,
        outcome: RepositoryOutcome,
        stats: MigrationStats,
    ) -> None:
        """Run the repository branch of the migration, tracking progress in outcome."""
        name = target_repo or repository.name
        outcome.state = MigrationState.REPO_RESOLVED
        logger.info(f"Migrating repository {project_key}/{repository.slug} -> {owner}/{name}")

        try:
            grants = self._grants(PermissionScope.REPOSITORY, project_key, repository.slug)
            repo_permissions = flatten(grants, self._groups.usernames)
            collaborators = strongest_collaborator_levels(repo_permissions)
            outcome.state = MigrationState.REPO_PERMISSIONS_RESOLVED

            self._ensure_users(grants, stats)
            outcome.state = MigrationState.REPO_USERS_ENSURED

            handle = self._target.migrate_repository(
                owner=owner,
                name=name,
                clone_addr=select_clone_url(repository.clone_links),
                description=repository.description,
                is_private=not repository.is_public,
                auth_username=self._clone_username,
                auth_password=self._clone_password,
            )
            if handle.created:
                stats.repositories_migrated += 1
            else:
                stats.repositories_reused += 1
            outcome.state = MigrationState.REPO_MIGRATED

            for username in sorted(collaborators):
                self._target.add_collaborator(owner, name, self._target_username(username), collaborators[username])
                stats.collaborators_added += 1
            outcome.state = MigrationState.COLLABORATORS_APPLIED
        except MigrationError as e:
            outcome.error = str(e)
            stats.errors.append(f"{project_key}/{repository.slug}: {e}")
            raise

        logger.info(f"Repository {owner}/{name} migrated")
