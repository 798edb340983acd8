"""Read-only Bitbucket Server client (REST API 1.0)."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any, Final

from .api import RestClient
from .exceptions import ConfigError, RemoteAPIError
from .models import (
    CloneLink,
    PermissionGrant,
    PermissionScope,
    ProjectInfo,
    RepositoryInfo,
    SubjectType,
    UserIdentity,
)

if TYPE_CHECKING:
    import requests

    from .config import BitbucketSettings
    from .utils import Deadline

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

PAGE_SIZE: Final[int] = 200


def _user_identity(data: dict[str, Any]) -> UserIdentity:
    return UserIdentity(
        username=data.get("name") or data.get("slug") or "",
        display_name=data.get("displayName") or "",
        email=data.get("emailAddress") or "",
    )


def _repository_info(data: dict[str, Any]) -> RepositoryInfo:
    links = data.get("links", {}).get("clone", [])
    return RepositoryInfo(
        slug=data["slug"],
        name=data.get("name") or data["slug"],
        description=data.get("description") or "",
        is_public=bool(data.get("public", False)),
        clone_links=tuple(CloneLink(name=link.get("name", ""), href=link.get("href", "")) for link in links),
        project_key=data.get("project", {}).get("key", ""),
    )


class BitbucketServerClient:
    """SourceClient backed by the Bitbucket Server REST API."""

    def __init__(
        self,
        server: str,
        token: str,
        username: str,
        *,
        verify: bool = True,
        deadline: Deadline | None = None,
        session: requests.Session | None = None,
    ) -> None:
        if not server or not token or not username:
            msg = "Missing Bitbucket server, username or token"
            raise ConfigError(msg)
        self.server: str = server.rstrip("/")
        self.username: str = username
        self.token: str = token
        self._api: RestClient = RestClient(
            f"{self.server}/rest/api/1.0",
            token,
            verify=verify,
            deadline=deadline,
            session=session,
        )

    @classmethod
    def from_settings(cls, settings: BitbucketSettings, deadline: Deadline | None = None) -> BitbucketServerClient:
        return cls(
            settings.server,
            settings.token,
            settings.username,
            verify=not settings.skip_verify,
            deadline=deadline,
        )

    def _paginate(
        self, path: str, params: dict[str, Any] | None = None, *, fields: tuple[str, ...] = ()
    ) -> Iterator[dict[str, Any]]:
        """Yield every value of a paged collection, each carrying the given fields."""
        start = 0
        while True:
            query = {**(params or {}), "limit": PAGE_SIZE, "start": start}
            page = self._api.get_json(path, params=query, required=("values",))
            values = page["values"]
            if not isinstance(values, list) or not all(isinstance(v, dict) for v in values):
                msg = f"GET {path}: page values are not a list of objects"
                raise RemoteAPIError(200, msg)
            for value in values:
                missing = [name for name in fields if name not in value]
                if missing:
                    msg = f"GET {path}: page entry is missing {', '.join(missing)}"
                    raise RemoteAPIError(200, msg)
            yield from values
            if page.get("isLastPage", True) or not values:
                break
            start = page.get("nextPageStart", start + len(values))

    @staticmethod
    def _permissions_path(scope: PermissionScope, key: str, slug: str | None, subject: str) -> str:
        if scope is PermissionScope.PROJECT:
            return f"/projects/{key}/permissions/{subject}"
        if not slug:
            msg = "A repository slug is required for repository permissions"
            raise ValueError(msg)
        return f"/projects/{key}/repos/{slug}/permissions/{subject}"

    def get_project(self, key: str) -> ProjectInfo:
        data = self._api.get_json(f"/projects/{key}", required=("key",))
        logger.debug(f"Fetched project {key}")
        return ProjectInfo(
            key=data.get("key", key),
            name=data.get("name") or key,
            description=data.get("description") or "",
            is_public=bool(data.get("public", False)),
        )

    def get_repository(self, project_key: str, slug: str) -> RepositoryInfo:
        data = self._api.get_json(f"/projects/{project_key}/repos/{slug}", required=("slug",))
        logger.debug(f"Fetched repository {project_key}/{slug}")
        return _repository_info(data)

    def list_repositories(self, project_key: str) -> list[RepositoryInfo]:
        repositories = [_repository_info(r) for r in self._paginate(f"/projects/{project_key}/repos", fields=("slug",))]
        logger.debug(f"Project {project_key} has {len(repositories)} repositories")
        return repositories

    def list_user_permissions(
        self, scope: PermissionScope, key: str, slug: str | None = None
    ) -> list[PermissionGrant]:
        grants: list[PermissionGrant] = []
        for entry in self._paginate(self._permissions_path(scope, key, slug, "users"), fields=("permission",)):
            identity = _user_identity(entry.get("user", {}))
            grants.append(
                PermissionGrant(
                    subject_type=SubjectType.USER,
                    subject_name=identity.username,
                    level=entry["permission"],
                    identity=identity,
                )
            )
        return grants

    def list_group_permissions(
        self, scope: PermissionScope, key: str, slug: str | None = None
    ) -> list[PermissionGrant]:
        return [
            PermissionGrant(
                subject_type=SubjectType.GROUP,
                subject_name=entry.get("group", {}).get("name", ""),
                level=entry["permission"],
            )
            for entry in self._paginate(self._permissions_path(scope, key, slug, "groups"), fields=("permission",))
        ]

    def list_group_members(self, group_name: str) -> list[UserIdentity]:
        return [
            _user_identity(user)
            for user in self._paginate("/admin/groups/more-members", params={"context": group_name})
        ]
