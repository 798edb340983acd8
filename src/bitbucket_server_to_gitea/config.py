"""
Configuration for the Bitbucket Server to Gitea migration tool.

Settings are stored as a small YAML file and can be overridden per key from the
environment: ``gitea.skip-verify`` is read from ``GITEA_SKIP_VERIFY``,
``bitbucket.token`` from ``BITBUCKET_TOKEN`` and so on.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import yaml

from .exceptions import ConfigError
from .utils import parse_duration

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH: Final[Path] = Path.home() / ".config" / "bitbucket-server-to-gitea" / "config.yaml"
DEFAULT_TIMEOUT: Final[str] = "10m"

_BOOL_KEYS: Final[frozenset[str]] = frozenset({"bitbucket.skip-verify", "gitea.skip-verify"})
_INT_KEYS: Final[frozenset[str]] = frozenset({"gitea.source-id"})
KNOWN_KEYS: Final[tuple[str, ...]] = (
    "bitbucket.server",
    "bitbucket.token",
    "bitbucket.username",
    "bitbucket.skip-verify",
    "gitea.server",
    "gitea.token",
    "gitea.skip-verify",
    "gitea.source-id",
    "timeout",
)
_TRUE_VALUES: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES: Final[frozenset[str]] = frozenset({"0", "false", "no", "off", ""})


@dataclass(frozen=True)
class BitbucketSettings:
    server: str = ""
    token: str = ""
    username: str = ""
    skip_verify: bool = False


@dataclass(frozen=True)
class GiteaSettings:
    server: str = ""
    token: str = ""
    skip_verify: bool = False
    source_id: int = 0


@dataclass(frozen=True)
class MigrationConfig:
    """Everything a migration run needs, built once and passed down explicitly."""

    bitbucket: BitbucketSettings
    gitea: GiteaSettings
    timeout: str = DEFAULT_TIMEOUT

    @property
    def timeout_seconds(self) -> float:
        return parse_duration(self.timeout)

    def validate(self) -> None:
        """Check that both servers and their credentials are configured.

        Raises:
            ConfigError: Listing every missing key
        """
        missing = [
            key
            for key, value in (
                ("bitbucket.server", self.bitbucket.server),
                ("bitbucket.username", self.bitbucket.username),
                ("bitbucket.token", self.bitbucket.token),
                ("gitea.server", self.gitea.server),
                ("gitea.token", self.gitea.token),
            )
            if not value
        ]
        if missing:
            msg = f"Missing configuration: {', '.join(missing)}. Set them with 'config set <key> <value>'."
            raise ConfigError(msg)
        _ = self.timeout_seconds


def env_var_name(key: str) -> str:
    """Return the environment variable that overrides a config key."""
    return key.replace(".", "_").replace("-", "_").upper()


def _coerce(key: str, value: Any) -> Any:
    if key in _BOOL_KEYS:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        msg = f"Invalid boolean for {key}: {value!r}"
        raise ConfigError(msg)
    if key in _INT_KEYS:
        try:
            return int(value or 0)
        except (TypeError, ValueError) as e:
            msg = f"Invalid integer for {key}: {value!r}"
            raise ConfigError(msg) from e
    if key == "timeout":
        _ = parse_duration(str(value))
    return "" if value is None else str(value)


def _read_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        logger.debug(f"Config file {path} not found, using defaults")
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        msg = f"Invalid config file {path}: {e}"
        raise ConfigError(msg) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Invalid config file {path}: expected a mapping at the top level"
        raise ConfigError(msg)
    return data


def _lookup(data: Mapping[str, Any], key: str) -> Any:
    node: Any = data
    for part in key.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


def load_config(path: Path | None = None, env: Mapping[str, str] | None = None) -> MigrationConfig:
    """Load the config file and apply environment overrides."""
    path = path or DEFAULT_CONFIG_PATH
    env = os.environ if env is None else env
    data = _read_file(path)

    values: dict[str, Any] = {}
    for key in KNOWN_KEYS:
        value = env.get(env_var_name(key))
        if value is None:
            value = _lookup(data, key)
        if value is not None:
            values[key] = _coerce(key, value)

    return MigrationConfig(
        bitbucket=BitbucketSettings(
            server=values.get("bitbucket.server", ""),
            token=values.get("bitbucket.token", ""),
            username=values.get("bitbucket.username", ""),
            skip_verify=values.get("bitbucket.skip-verify", False),
        ),
        gitea=GiteaSettings(
            server=values.get("gitea.server", ""),
            token=values.get("gitea.token", ""),
            skip_verify=values.get("gitea.skip-verify", False),
            source_id=values.get("gitea.source-id", 0),
        ),
        timeout=values.get("timeout") or DEFAULT_TIMEOUT,
    )


def set_value(path: Path | None, key: str, value: str) -> Path:
    """Persist a single config key and return the file it was written to.

    Raises:
        ConfigError: If the key is unknown or the value does not parse
    """
    if key not in KNOWN_KEYS:
        msg = f"Unknown config key '{key}'. Known keys: {', '.join(KNOWN_KEYS)}"
        raise ConfigError(msg)

    path = path or DEFAULT_CONFIG_PATH
    data = _read_file(path)

    section, _, name = key.rpartition(".")
    node = data.setdefault(section, {}) if section else data
    if not isinstance(node, dict):
        msg = f"Invalid config file {path}: '{section}' is not a mapping"
        raise ConfigError(msg)
    node[name] = _coerce(key, value)

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=True)

    logger.debug(f"Wrote {key} to {path}")
    return path
