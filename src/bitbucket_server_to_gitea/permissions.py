"""
Mapping of Bitbucket Server permissions onto Gitea's permission model.

Bitbucket grants PROJECT_*/REPO_* levels to users and to groups. Gitea has no
groups; instead organization-wide access is carried by teams and repository
access by collaborators. Group grants are therefore flattened into the users
they contain before anything is provisioned.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Final

from .exceptions import GroupResolutionError, InvalidPermissionError, RemoteAPIError
from .models import (
    PROJECT_ADMIN,
    PROJECT_READ,
    PROJECT_WRITE,
    REPO_ADMIN,
    REPO_CREATE,
    REPO_READ,
    REPO_WRITE,
    FlattenedPermissionMap,
    PermissionGrant,
    SubjectType,
    TeamTemplate,
    UserIdentity,
)

if TYPE_CHECKING:
    from .protocols import SourceClient

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

GroupResolver = Callable[[str], list[str]]

DEFAULT_UNITS: Final[tuple[str, ...]] = (
    "repo.code",
    "repo.issues",
    "repo.ext_issues",
    "repo.ext_wiki",
    "repo.packages",
    "repo.projects",
    "repo.pulls",
    "repo.releases",
    "repo.wiki",
    "repo.actions",
)

# (team name, access mode, includes all repositories, can create org repo)
_TEAM_TEMPLATES: Final[dict[str, tuple[str, str, bool, bool]]] = {
    PROJECT_ADMIN: ("OrgAdmin", "admin", True, True),
    PROJECT_WRITE: ("OrgWriter", "write", True, False),
    PROJECT_READ: ("OrgReader", "read", True, False),
    REPO_CREATE: ("RepoCreater", "read", False, True),
}

_COLLABORATOR_ACCESS: Final[dict[str, str]] = {
    REPO_ADMIN: "admin",
    REPO_WRITE: "write",
    REPO_READ: "read",
}


def normalize_username(username: str) -> str:
    """Normalize a username for comparison against the target system."""
    return username.strip().lower()


def team_template(level: str) -> TeamTemplate:
    """Return the Gitea team that represents an organization-scope permission level.

    Raises:
        InvalidPermissionError: If the level is not a project level or REPO_CREATE
    """
    try:
        name, permission, includes_all, can_create = _TEAM_TEMPLATES[level]
    except KeyError:
        raise InvalidPermissionError(level, "organization") from None
    return TeamTemplate(
        name=name,
        permission=permission,
        includes_all_repositories=includes_all,
        can_create_org_repo=can_create,
        units=list(DEFAULT_UNITS),
    )


def collaborator_access(level: str) -> str:
    """Return the Gitea access mode for a repository-scope permission level.

    REPO_CREATE only makes sense on an organization, so it is rejected here
    together with anything else that is not REPO_ADMIN/WRITE/READ.
    """
    try:
        return _COLLABORATOR_ACCESS[level]
    except KeyError:
        raise InvalidPermissionError(level, "repository collaborator") from None


def strongest_collaborator_levels(permissions: FlattenedPermissionMap) -> dict[str, str]:
    """Pick one repository level per user, the strongest one they hold.

    Gitea keeps a single access mode per collaborator, so applying every level
    would leave whichever happened to be applied last.

    Raises:
        InvalidPermissionError: If any level is not a repository level
    """
    rank = {level: index for index, level in enumerate((REPO_READ, REPO_WRITE, REPO_ADMIN))}
    strongest: dict[str, str] = {}
    for level, usernames in permissions.items():
        _ = collaborator_access(level)
        for username in usernames:
            current = strongest.get(username)
            if current is None or rank[level] > rank[current]:
                strongest[username] = level
    return strongest


def flatten(grants: Iterable[PermissionGrant], group_resolver: GroupResolver) -> FlattenedPermissionMap:
    """Flatten user and group grants into ``level -> set of usernames``.

    A username appears under every level it holds, directly or through any
    group, exactly once. The result does not depend on grant order.

    Args:
        grants: Direct user grants and group grants, in any order
        group_resolver: Returns the usernames of a group; called once per grant,
            so callers should pass a cached resolver

    Raises:
        GroupResolutionError: If a group's members cannot be fetched
    """
    permissions: FlattenedPermissionMap = {}

    for grant in grants:
        if grant.subject_type is SubjectType.USER:
            members = [grant.subject_name]
        else:
            try:
                members = group_resolver(grant.subject_name)
            except RemoteAPIError as e:
                raise GroupResolutionError(grant.subject_name, str(e)) from e
            logger.debug(f"Group {grant.subject_name} grants {grant.level} to {len(members)} users")

        usernames = permissions.setdefault(grant.level, set())
        usernames.update(normalize_username(member) for member in members)

    return permissions


class GroupMembershipCache:
    """Resolves group members through the source client, once per group per run."""

    def __init__(self, source: SourceClient) -> None:
        self._source: SourceClient = source
        self._members: dict[str, list[UserIdentity]] = {}

    def members(self, group: str) -> list[UserIdentity]:
        if group not in self._members:
            try:
                self._members[group] = self._source.list_group_members(group)
            except RemoteAPIError as e:
                raise GroupResolutionError(group, str(e)) from e
            logger.debug(f"Resolved group {group}: {len(self._members[group])} members")
        return self._members[group]

    def usernames(self, group: str) -> list[str]:
        return [member.username for member in self.members(group)]


def collect_identities(
    grants: Iterable[PermissionGrant], groups: GroupMembershipCache
) -> dict[str, UserIdentity]:
    """Gather every user a set of grants refers to, keyed by normalized username.

    The first identity seen for a username wins.
    """
    identities: dict[str, UserIdentity] = {}

    for grant in grants:
        if grant.subject_type is SubjectType.USER:
            candidates = [grant.identity or UserIdentity(username=grant.subject_name)]
        else:
            candidates = groups.members(grant.subject_name)

        for identity in candidates:
            _ = identities.setdefault(normalize_username(identity.username), identity)

    return identities
