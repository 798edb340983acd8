"""Gitea client with create-or-get semantics for everything the migration provisions."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Any, Final

from .api import RestClient
from .exceptions import ConfigError, RemoteAPIError
from .models import OrgHandle, RepoHandle, TargetIdentity, TeamHandle, UserHandle
from .permissions import collaborator_access, team_template

if TYPE_CHECKING:
    import requests

    from .config import GiteaSettings
    from .utils import Deadline

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

_ID: Final[tuple[str, ...]] = ("id",)


class GiteaClient:
    """TargetClient backed by the Gitea REST API (v1).

    The token must belong to a site administrator: users are created through
    the admin API.
    """

    def __init__(
        self,
        server: str,
        token: str,
        *,
        verify: bool = True,
        deadline: Deadline | None = None,
        session: requests.Session | None = None,
    ) -> None:
        if not server or not token:
            msg = "Missing Gitea server or token"
            raise ConfigError(msg)
        self.server: str = server.rstrip("/")
        self._api: RestClient = RestClient(
            f"{self.server}/api/v1",
            token,
            token_prefix="token",
            verify=verify,
            deadline=deadline,
            session=session,
        )

    @classmethod
    def from_settings(cls, settings: GiteaSettings, deadline: Deadline | None = None) -> GiteaClient:
        return cls(settings.server, settings.token, verify=not settings.skip_verify, deadline=deadline)

    def ensure_organization(self, name: str, description: str, is_public: bool) -> OrgHandle:
        org = self._api.find_json(f"/orgs/{name}", required=_ID)
        if org is None:
            org = self._api.post_json(
                "/orgs",
                {
                    "username": name,
                    "description": description,
                    "visibility": "public" if is_public else "private",
                },
                required=_ID,
            )
            logger.info(f"Created organization {name}")
        else:
            logger.debug(f"Using existing organization {name}")
        return OrgHandle(id=org["id"], name=org.get("username") or name)

    def ensure_user(self, identity: TargetIdentity) -> UserHandle:
        user = self._api.find_json(f"/users/{identity.username}", required=_ID)
        if user is not None:
            logger.debug(f"Using existing user {identity.username}")
            return UserHandle(id=user["id"], username=user.get("login") or identity.username)

        payload: dict[str, Any] = {
            "username": identity.username,
            "login_name": identity.login_name,
            "full_name": identity.display_name,
            "email": identity.email,
            "source_id": identity.source_id,
            "must_change_password": False,
            "send_notify": False,
        }
        if identity.source_id == 0:
            # Local accounts need a password; users reset it on first sign-in
            payload["password"] = secrets.token_urlsafe(24)

        user = self._api.post_json("/admin/users", payload, required=_ID)
        logger.info(f"Created user {identity.username} ({identity.display_name})")
        return UserHandle(id=user["id"], username=user.get("login") or identity.username, created=True)

    def _find_team(self, org: str, name: str) -> dict[str, Any] | None:
        result = self._api.get_json(f"/orgs/{org}/teams/search", params={"q": name})
        # Gitea wraps search results: {"ok": true, "data": [...]}
        teams = (result.get("data") or []) if isinstance(result, dict) else result
        if not isinstance(teams, list):
            msg = f"GET /orgs/{org}/teams/search: expected a list of teams"
            raise RemoteAPIError(200, msg)
        for team in teams:
            if isinstance(team, dict) and team.get("name") == name:
                if "id" not in team:
                    msg = f"GET /orgs/{org}/teams/search: team {name} has no id"
                    raise RemoteAPIError(200, msg)
                return team
        return None

    def ensure_team(self, org: str, level: str) -> TeamHandle:
        template = team_template(level)

        team = self._find_team(org, template.name)
        if team is None:
            team = self._api.post_json(
                f"/orgs/{org}/teams",
                {
                    "name": template.name,
                    "description": template.name,
                    "permission": template.permission,
                    "includes_all_repositories": template.includes_all_repositories,
                    "can_create_org_repo": template.can_create_org_repo,
                    "units": template.units,
                },
                required=_ID,
            )
            logger.info(f"Created team {template.name} in {org}")
        else:
            logger.debug(f"Using existing team {template.name} in {org}")
        return TeamHandle(id=team["id"], name=template.name, org=org)

    def add_team_member(self, team: TeamHandle, username: str) -> None:
        _ = self._api.request("PUT", f"/teams/{team.id}/members/{username}")
        logger.debug(f"Added {username} to team {team.org}/{team.name}")

    def add_collaborator(self, owner: str, repo: str, username: str, level: str) -> None:
        access = collaborator_access(level)
        _ = self._api.request(
            "PUT",
            f"/repos/{owner}/{repo}/collaborators/{username}",
            json={"permission": access},
        )
        logger.debug(f"Granted {access} on {owner}/{repo} to {username}")

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
        existing = self._api.find_json(f"/repos/{owner}/{name}", required=_ID)
        if existing is not None:
            logger.info(f"Repository {owner}/{name} already exists, skipping import")
            return RepoHandle(id=existing["id"], owner=owner, name=name)

        repo = self._api.post_json(
            "/repos/migrate",
            {
                "service": "git",
                "clone_addr": clone_addr,
                "repo_owner": owner,
                "repo_name": name,
                "description": description,
                "private": is_private,
                "auth_username": auth_username,
                "auth_password": auth_password,
            },
            required=_ID,
        )
        logger.info(f"Imported repository {owner}/{name}")
        return RepoHandle(id=repo["id"], owner=owner, name=name, created=True)
