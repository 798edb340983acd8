"""
Tests for the Bitbucket Server client: paging, permission listing and parsing.
"""

from typing import Any
from unittest.mock import Mock

import pytest

from bitbucket_server_to_gitea.bitbucket_client import PAGE_SIZE, BitbucketServerClient
from bitbucket_server_to_gitea.config import BitbucketSettings
from bitbucket_server_to_gitea.exceptions import ConfigError, RemoteAPIError
from bitbucket_server_to_gitea.models import CloneLink, PermissionScope, SubjectType, UserIdentity

BASE = "https://bitbucket.example.com/rest/api/1.0"


def json_response(body: Any, status: int = 200) -> Mock:
    response = Mock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.reason = ""
    response.text = ""
    response.json.return_value = body
    return response


def page(values: list[dict[str, Any]], *, last: bool = True, next_start: int | None = None) -> Mock:
    body: dict[str, Any] = {"values": values, "isLastPage": last, "size": len(values)}
    if next_start is not None:
        body["nextPageStart"] = next_start
    return json_response(body)


def user_json(name: str, display: str = "", email: str = "") -> dict[str, Any]:
    return {"name": name, "slug": name.lower(), "displayName": display, "emailAddress": email}


@pytest.mark.unit
class TestBitbucketServerClient:
    def setup_method(self) -> None:
        self.session: Mock = Mock()
        self.session.headers = {}
        self.client: BitbucketServerClient = BitbucketServerClient(
            "https://bitbucket.example.com/", "bb-token", "migrator", session=self.session
        )

    def _urls(self) -> list[str]:
        return [c.args[1] for c in self.session.request.call_args_list]

    def test_missing_credentials(self) -> None:
        with pytest.raises(ConfigError):
            BitbucketServerClient("https://bitbucket.example.com", "", "migrator", session=Mock())
        with pytest.raises(ConfigError):
            BitbucketServerClient("", "token", "migrator", session=Mock())

    def test_bearer_token(self) -> None:
        assert self.session.headers["Authorization"] == "Bearer bb-token"

    def test_from_settings(self) -> None:
        settings = BitbucketSettings(server="https://bb", token="t", username="u", skip_verify=True)
        client = BitbucketServerClient.from_settings(settings)
        assert client.server == "https://bb"
        assert client.username == "u"

    def test_get_project(self) -> None:
        self.session.request.return_value = json_response(
            {"key": "PROJ", "name": "Project", "description": "Demo", "public": True}
        )

        project = self.client.get_project("PROJ")

        assert project.key == "PROJ"
        assert project.name == "Project"
        assert project.description == "Demo"
        assert project.is_public is True
        assert self._urls() == [f"{BASE}/projects/PROJ"]

    def test_get_project_without_description(self) -> None:
        self.session.request.return_value = json_response({"key": "PROJ", "name": "Project"})
        project = self.client.get_project("PROJ")
        assert project.description == ""
        assert project.is_public is False

    def test_get_project_not_found(self) -> None:
        self.session.request.return_value = json_response(
            {"errors": [{"message": "Project PROJ does not exist."}]}, status=404
        )
        with pytest.raises(RemoteAPIError, match="does not exist") as exc_info:
            self.client.get_project("PROJ")
        assert exc_info.value.status == 404

    def test_get_repository(self) -> None:
        self.session.request.return_value = json_response(
            {
                "slug": "api",
                "name": "API",
                "public": False,
                "project": {"key": "PROJ"},
                "links": {
                    "clone": [
                        {"name": "ssh", "href": "ssh://git@bitbucket.example.com:7999/proj/api.git"},
                        {"name": "http", "href": "https://bitbucket.example.com/scm/proj/api.git"},
                    ]
                },
            }
        )

        repository = self.client.get_repository("PROJ", "api")

        assert repository.slug == "api"
        assert repository.name == "API"
        assert repository.description == ""
        assert repository.project_key == "PROJ"
        assert repository.clone_links == (
            CloneLink("ssh", "ssh://git@bitbucket.example.com:7999/proj/api.git"),
            CloneLink("http", "https://bitbucket.example.com/scm/proj/api.git"),
        )
        assert self._urls() == [f"{BASE}/projects/PROJ/repos/api"]

    def test_list_repositories_follows_pages(self) -> None:
        self.session.request.side_effect = [
            page([{"slug": "one"}, {"slug": "two"}], last=False, next_start=2),
            page([{"slug": "three"}]),
        ]

        repositories = self.client.list_repositories("PROJ")

        assert [r.slug for r in repositories] == ["one", "two", "three"]
        starts = [c.kwargs["params"]["start"] for c in self.session.request.call_args_list]
        limits = {c.kwargs["params"]["limit"] for c in self.session.request.call_args_list}
        assert starts == [0, 2]
        assert limits == {PAGE_SIZE}

    def test_pagination_stops_on_empty_page(self) -> None:
        self.session.request.return_value = page([], last=False, next_start=0)
        assert self.client.list_repositories("PROJ") == []
        assert self.session.request.call_count == 1

    def test_project_user_permissions(self) -> None:
        self.session.request.return_value = page(
            [
                {"user": user_json("Alice", "Alice A", "alice@example.com"), "permission": "PROJECT_ADMIN"},
                {"user": user_json("bob"), "permission": "PROJECT_READ"},
            ]
        )

        grants = self.client.list_user_permissions(PermissionScope.PROJECT, "PROJ")

        assert [(g.subject_type, g.subject_name, g.level) for g in grants] == [
            (SubjectType.USER, "Alice", "PROJECT_ADMIN"),
            (SubjectType.USER, "bob", "PROJECT_READ"),
        ]
        assert grants[0].identity == UserIdentity("Alice", "Alice A", "alice@example.com")
        assert self._urls() == [f"{BASE}/projects/PROJ/permissions/users"]

    def test_repository_group_permissions(self) -> None:
        self.session.request.return_value = page([{"group": {"name": "devs"}, "permission": "REPO_WRITE"}])

        grants = self.client.list_group_permissions(PermissionScope.REPOSITORY, "PROJ", "api")

        assert len(grants) == 1
        assert grants[0].subject_type is SubjectType.GROUP
        assert grants[0].subject_name == "devs"
        assert grants[0].level == "REPO_WRITE"
        assert grants[0].identity is None
        assert self._urls() == [f"{BASE}/projects/PROJ/repos/api/permissions/groups"]

    def test_repository_permissions_need_slug(self) -> None:
        with pytest.raises(ValueError, match="slug"):
            self.client.list_user_permissions(PermissionScope.REPOSITORY, "PROJ")
        self.session.request.assert_not_called()

    def test_group_members(self) -> None:
        self.session.request.side_effect = [
            page([user_json("alice", "Alice", "alice@example.com")], last=False, next_start=1),
            page([user_json("bob", "Bob", "bob@example.com")]),
        ]

        members = self.client.list_group_members("devs")

        assert members == [
            UserIdentity("alice", "Alice", "alice@example.com"),
            UserIdentity("bob", "Bob", "bob@example.com"),
        ]
        first = self.session.request.call_args_list[0]
        assert first.args[1] == f"{BASE}/admin/groups/more-members"
        assert first.kwargs["params"]["context"] == "devs"

    def test_group_members_remote_failure(self) -> None:
        self.session.request.return_value = json_response({"errors": [{"message": "Forbidden"}]}, status=403)
        with pytest.raises(RemoteAPIError) as exc_info:
            self.client.list_group_members("admins")
        assert exc_info.value.status == 403

    def test_page_without_values(self) -> None:
        self.session.request.return_value = json_response({"size": 0, "isLastPage": True})
        with pytest.raises(RemoteAPIError, match="missing values"):
            self.client.list_repositories("PROJ")

    def test_permission_entry_without_level(self) -> None:
        self.session.request.return_value = page([{"group": {"name": "devs"}}])
        with pytest.raises(RemoteAPIError, match="missing permission"):
            self.client.list_group_permissions(PermissionScope.PROJECT, "PROJ")

    def test_repository_without_slug(self) -> None:
        self.session.request.return_value = json_response({"name": "API"})
        with pytest.raises(RemoteAPIError, match="missing slug"):
            self.client.get_repository("PROJ", "api")
