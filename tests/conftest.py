"""
Pytest configuration and fixtures.

This module configures pytest behavior for different test types:
- Integration tests: Skipped unless the test servers are configured, and fail
  on any warnings from the code under test
- Unit tests: Allow warnings, and use the in-memory source and target below
"""

from __future__ import annotations

import logging
import os
from collections import Counter
from typing import TYPE_CHECKING

from typing_extensions import override

import pytest

from bitbucket_server_to_gitea.config import BitbucketSettings, GiteaSettings, MigrationConfig
from bitbucket_server_to_gitea.exceptions import RemoteAPIError
from bitbucket_server_to_gitea.models import (
    CloneLink,
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
from bitbucket_server_to_gitea.permissions import collaborator_access, team_template

if TYPE_CHECKING:
    from collections.abc import Generator

INTEGRATION_ENV_VARS = ("BITBUCKET_TEST_PROJECT", "GITEA_TEST_OWNER")

# Store warning records during test execution
_integration_test_warnings: dict[str, list[logging.LogRecord]] = {}


class IntegrationTestWarningHandler(logging.Handler):
    """Custom logging handler to capture warnings during integration tests."""

    test_nodeid: str

    def __init__(self, test_nodeid: str) -> None:
        super().__init__()
        self.test_nodeid = test_nodeid
        self.setLevel(logging.WARNING)

    @override
    def emit(self, record: logging.LogRecord) -> None:
        """Capture WARNING and above level logs."""
        if self.test_nodeid not in _integration_test_warnings:
            _integration_test_warnings[self.test_nodeid] = []
        _integration_test_warnings[self.test_nodeid].append(record)


@pytest.fixture(autouse=True)
def check_integration_test_env_vars(request: pytest.FixtureRequest) -> None:
    """Skip integration tests when the test Bitbucket project or Gitea owner is not configured."""
    if request.node.get_closest_marker("integration") is None:
        return

    missing = [name for name in INTEGRATION_ENV_VARS if not os.environ.get(name)]
    if missing:
        pytest.skip(f"Integration tests require environment variables: {', '.join(missing)}")


@pytest.fixture(autouse=True)
def fail_on_log_warnings_for_integration_tests(
    request: pytest.FixtureRequest,
) -> Generator[None]:
    """
    Automatically fail integration tests if any WARNING level logs are emitted from the code under test.

    Warnings are acceptable when running the tool as a user, but in the test context
    we don't expect any warnings from the migrator code and treat them as test failures.
    """
    is_integration_test = request.node.get_closest_marker("integration") is not None

    if not is_integration_test:
        yield
        return

    test_nodeid = request.node.nodeid
    _integration_test_warnings[test_nodeid] = []

    handler = IntegrationTestWarningHandler(test_nodeid)
    root_logger = logging.getLogger()
    root_logger.addHandler(handler)

    try:
        yield
    finally:
        root_logger.removeHandler(handler)


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(
    item: pytest.Item, call: pytest.CallInfo[None]
) -> Generator[None]:  # type: ignore[misc]
    """
    Hook to check for warnings after test execution and mark test as failed if warnings were detected.
    """
    outcome = yield
    report = outcome.get_result()

    if call.when == "call" and report.outcome == "passed":
        test_nodeid = item.nodeid
        warning_records = _integration_test_warnings.get(test_nodeid, [])

        if warning_records:
            warning_messages = [
                f"{record.levelname}: {record.getMessage()} (in {record.name}:{record.lineno})"
                for record in warning_records
            ]

            report.outcome = "failed"
            report.longrepr = f"Integration test failed: {len(warning_records)} warning(s) detected:\n" + "\n".join(
                f"  - {msg}" for msg in warning_messages
            )

        _integration_test_warnings.pop(test_nodeid, None)


class FakeSource:
    """In-memory Bitbucket Server."""

    def __init__(self) -> None:
        self.projects: dict[str, ProjectInfo] = {}
        self.repositories: dict[str, list[RepositoryInfo]] = {}
        self.user_grants: dict[tuple[PermissionScope, str, str | None], list[PermissionGrant]] = {}
        self.group_grants: dict[tuple[PermissionScope, str, str | None], list[PermissionGrant]] = {}
        self.groups: dict[str, list[UserIdentity]] = {}
        self.group_lookups: Counter[str] = Counter()

    def add_repository(self, project_key: str, slug: str, *, public: bool = False, links: tuple[CloneLink, ...] | None = None) -> RepositoryInfo:
        if links is None:
            links = (
                CloneLink("ssh", f"ssh://git@bitbucket.example.com:7999/{project_key.lower()}/{slug}.git"),
                CloneLink("http", f"https://bitbucket.example.com/scm/{project_key.lower()}/{slug}.git"),
            )
        repository = RepositoryInfo(
            slug=slug,
            name=slug.replace("-", " ").title().replace(" ", "-"),
            description=f"{slug} description",
            is_public=public,
            clone_links=links,
            project_key=project_key,
        )
        self.repositories.setdefault(project_key, []).append(repository)
        return repository

    def get_project(self, key: str) -> ProjectInfo:
        if key not in self.projects:
            raise RemoteAPIError(404, f"Project {key} does not exist")
        return self.projects[key]

    def get_repository(self, project_key: str, slug: str) -> RepositoryInfo:
        for repository in self.repositories.get(project_key, []):
            if repository.slug == slug:
                return repository
        raise RemoteAPIError(404, f"Repository {project_key}/{slug} does not exist")

    def list_repositories(self, project_key: str) -> list[RepositoryInfo]:
        return list(self.repositories.get(project_key, []))

    def list_user_permissions(self, scope: PermissionScope, key: str, slug: str | None = None) -> list[PermissionGrant]:
        return list(self.user_grants.get((scope, key, slug), []))

    def list_group_permissions(self, scope: PermissionScope, key: str, slug: str | None = None) -> list[PermissionGrant]:
        return list(self.group_grants.get((scope, key, slug), []))

    def list_group_members(self, group_name: str) -> list[UserIdentity]:
        self.group_lookups[group_name] += 1
        if group_name not in self.groups:
            raise RemoteAPIError(404, f"Group {group_name} does not exist")
        return list(self.groups[group_name])


class FakeTarget:
    """In-memory Gitea with create-or-get semantics."""

    def __init__(self) -> None:
        self.orgs: dict[str, dict[str, object]] = {}
        self.users: dict[str, TargetIdentity] = {}
        self.teams: dict[tuple[str, str], TeamHandle] = {}
        self.team_members: dict[tuple[str, str], set[str]] = {}
        self.repos: dict[tuple[str, str], dict[str, object]] = {}
        self.collaborators: dict[tuple[str, str, str], str] = {}
        self.calls: Counter[str] = Counter()
        self.fail_migration_for: set[str] = set()
        self._next_id = 1

    def _id(self) -> int:
        self._next_id += 1
        return self._next_id

    def ensure_organization(self, name: str, description: str, is_public: bool) -> OrgHandle:
        self.calls["ensure_organization"] += 1
        if name not in self.orgs:
            self.orgs[name] = {"id": self._id(), "description": description, "public": is_public}
        return OrgHandle(id=int(self.orgs[name]["id"]), name=name)  # type: ignore[arg-type]

    def ensure_user(self, identity: TargetIdentity) -> UserHandle:
        self.calls["ensure_user"] += 1
        key = identity.username.lower()
        created = key not in self.users
        if created:
            self.users[key] = identity
        return UserHandle(id=hash(key), username=self.users[key].username, created=created)

    def ensure_team(self, org: str, level: str) -> TeamHandle:
        self.calls["ensure_team"] += 1
        template = team_template(level)
        if (org, template.name) not in self.teams:
            self.teams[(org, template.name)] = TeamHandle(id=self._id(), name=template.name, org=org)
        return self.teams[(org, template.name)]

    def add_team_member(self, team: TeamHandle, username: str) -> None:
        self.calls["add_team_member"] += 1
        self.team_members.setdefault((team.org, team.name), set()).add(username.lower())

    def add_collaborator(self, owner: str, repo: str, username: str, level: str) -> None:
        self.calls["add_collaborator"] += 1
        self.collaborators[(owner, repo, username.lower())] = collaborator_access(level)

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
        self.calls["migrate_repository"] += 1
        if name in self.fail_migration_for:
            raise RemoteAPIError(500, f"clone of {clone_addr} failed")
        if (owner, name) in self.repos:
            return RepoHandle(id=int(self.repos[(owner, name)]["id"]), owner=owner, name=name)  # type: ignore[arg-type]
        self.repos[(owner, name)] = {
            "id": self._id(),
            "clone_addr": clone_addr,
            "description": description,
            "private": is_private,
            "auth": (auth_username, auth_password),
        }
        return RepoHandle(id=int(self.repos[(owner, name)]["id"]), owner=owner, name=name, created=True)  # type: ignore[arg-type]


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def fake_target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def migration_config() -> MigrationConfig:
    return MigrationConfig(
        bitbucket=BitbucketSettings(
            server="https://bitbucket.example.com",
            token="bb-token",
            username="migrator",
        ),
        gitea=GiteaSettings(server="https://gitea.example.com", token="gt-token", source_id=2),
        timeout="10m",
    )
