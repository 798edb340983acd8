"""Data models exchanged between the source client, the target client and the Migrator.

These are normalized snapshots of remote state. They live only for the duration
of one run; nothing here is persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Final

# Bitbucket project-scope permissions
PROJECT_ADMIN: Final[str] = "PROJECT_ADMIN"
PROJECT_WRITE: Final[str] = "PROJECT_WRITE"
PROJECT_READ: Final[str] = "PROJECT_READ"
# Bitbucket repository-scope permissions
REPO_ADMIN: Final[str] = "REPO_ADMIN"
REPO_WRITE: Final[str] = "REPO_WRITE"
REPO_READ: Final[str] = "REPO_READ"
REPO_CREATE: Final[str] = "REPO_CREATE"

FlattenedPermissionMap = dict[str, set[str]]


class SubjectType(Enum):
    """Who a permission is granted to."""

    USER = "user"
    GROUP = "group"


class PermissionScope(Enum):
    """Where a permission is granted."""

    PROJECT = "project"
    REPOSITORY = "repository"


@dataclass(frozen=True)
class ProjectInfo:
    """A Bitbucket project."""

    key: str
    name: str
    description: str = ""
    is_public: bool = False


@dataclass(frozen=True)
class CloneLink:
    """One entry of a repository's ``links.clone`` list.

    ``name`` is the protocol Bitbucket tags the link with ("http", "ssh").
    """

    name: str
    href: str


@dataclass(frozen=True)
class RepositoryInfo:
    """A Bitbucket repository."""

    slug: str
    name: str
    description: str = ""
    is_public: bool = False
    clone_links: tuple[CloneLink, ...] = ()
    project_key: str = ""


@dataclass(frozen=True)
class UserIdentity:
    """A Bitbucket user as returned by permission and group endpoints."""

    username: str
    display_name: str = ""
    email: str = ""


@dataclass(frozen=True)
class PermissionGrant:
    """A single permission grant on a project or repository.

    User grants carry the user's identity, since Bitbucket returns it with the
    grant. Group grants only name the group; members are resolved separately.
    """

    subject_type: SubjectType
    subject_name: str
    level: str
    identity: UserIdentity | None = None


@dataclass(frozen=True)
class TargetIdentity:
    """A user to be provisioned in Gitea."""

    username: str
    display_name: str
    email: str
    source_id: int = 0

    @property
    def login_name(self) -> str:
        return self.username.lower()


@dataclass(frozen=True)
class OrgHandle:
    id: int
    name: str


@dataclass(frozen=True)
class UserHandle:
    id: int
    username: str
    created: bool = False


@dataclass(frozen=True)
class TeamHandle:
    id: int
    name: str
    org: str


@dataclass(frozen=True)
class RepoHandle:
    id: int
    owner: str
    name: str
    created: bool = False


@dataclass
class TeamTemplate:
    """How a Bitbucket permission level is rendered as a Gitea team."""

    name: str
    permission: str  # Gitea access mode: "admin", "write" or "read"
    includes_all_repositories: bool
    can_create_org_repo: bool
    units: list[str] = field(default_factory=list)
