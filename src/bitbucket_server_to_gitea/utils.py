"""
Utility functions for the Bitbucket Server to Gitea migration tool.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Final

from .exceptions import ConfigError, DeadlineExceededError

_DURATION_UNITS: Final[dict[str, float]] = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART: Final[re.Pattern[str]] = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")


def setup_logging(*, verbosity: int = 0, log_file: str | None = "migration.log") -> None:
    """Configure logging for the migration process.

    The console shows warnings by default, INFO with ``-v`` and DEBUG with
    ``-vv``. The log file always receives everything.
    """
    console_level = {0: logging.WARNING, 1: logging.INFO}.get(verbosity, logging.DEBUG)
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

    console = logging.StreamHandler()
    console.setLevel(console_level)
    console.setFormatter(formatter)
    handlers: list[logging.Handler] = [console]

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=logging.DEBUG, handlers=handlers, force=True)

    # Keep HTTP internals out of the debug log
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


def parse_duration(value: str) -> float:
    """Parse a Go-style duration such as "10m", "1h30m" or "500ms" into seconds.

    A bare number is taken as seconds.
    """
    text = value.strip()
    if not text:
        msg = "Empty duration"
        raise ConfigError(msg)

    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return float(text)

    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position != len(text):
        msg = f"Invalid duration: {value!r} (expected e.g. '10m', '1h30m', '45s')"
        raise ConfigError(msg)
    if total <= 0:
        msg = f"Duration must be positive: {value!r}"
        raise ConfigError(msg)
    return total


class Deadline:
    """Overall time budget of a migration run, shared by both API clients."""

    def __init__(self, seconds: float | None) -> None:
        self.seconds: float | None = seconds
        self._expires_at: float | None = time.monotonic() + seconds if seconds is not None else None

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining(self) -> float | None:
        """Return the seconds left, or None when the run is unbounded.

        Raises:
            DeadlineExceededError: If the budget is used up
        """
        if self._expires_at is None:
            return None
        left = self._expires_at - time.monotonic()
        if left <= 0:
            msg = f"Migration timed out after {self.seconds:g}s"
            raise DeadlineExceededError(msg)
        return left
