"""Shared REST plumbing for the Bitbucket Server and Gitea clients."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import requests
import urllib3

from .exceptions import DeadlineExceededError, RemoteAPIError
from .utils import Deadline

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)


def _error_message(response: requests.Response) -> str:
    """Extract a readable error from a Bitbucket or Gitea error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()[:500] or response.reason or "no details"

    if isinstance(body, dict):
        # Bitbucket: {"errors": [{"message": ...}]}, Gitea: {"message": ...}
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            messages = [str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors]
            return "; ".join(messages)
        if body.get("message"):
            return str(body["message"])
    return str(body)[:500]


class RestClient:
    """A requests session bound to one API root, one token and the run deadline.

    No retries: every failure is reported to the caller as RemoteAPIError.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        token_prefix: str = "Bearer",
        verify: bool = True,
        deadline: Deadline | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url: str = base_url.rstrip("/")
        self.deadline: Deadline = deadline or Deadline(None)
        self.session: requests.Session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"{token_prefix} {token}",
                "Accept": "application/json",
            }
        )
        self.session.verify = verify
        if not verify:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> requests.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        timeout = self.deadline.remaining()

        try:
            response = self.session.request(method, url, params=params, json=json, timeout=timeout)
        except requests.Timeout as e:
            if self.deadline.expired:
                msg = f"Migration timed out during {method} {path}"
                raise DeadlineExceededError(msg) from e
            raise RemoteAPIError(None, f"{method} {path} timed out: {e}") from e
        except requests.RequestException as e:
            raise RemoteAPIError(None, f"{method} {path} failed: {e}") from e

        logger.debug(f"{method} {path} -> {response.status_code}")
        return response

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> requests.Response:
        """Send a request and return the response.

        Raises:
            RemoteAPIError: On a non-2xx status or a transport failure
            DeadlineExceededError: If the run's time budget is used up
        """
        response = self._send(method, path, params=params, json=json)
        if not response.ok:
            raise RemoteAPIError(response.status_code, f"{method} {path}: {_error_message(response)}")
        return response

    @staticmethod
    def _decode(response: requests.Response, method: str, path: str, required: Sequence[str]) -> Any:
        """Parse a JSON body, checking that it is an object carrying the required fields."""
        try:
            body = response.json()
        except ValueError as e:
            snippet = response.text.strip()[:100]
            msg = f"{method} {path}: invalid JSON in response ({snippet!r})"
            raise RemoteAPIError(response.status_code, msg) from e

        if required:
            if not isinstance(body, dict):
                msg = f"{method} {path}: expected a JSON object, got {type(body).__name__}"
                raise RemoteAPIError(response.status_code, msg)
            missing = [name for name in required if name not in body]
            if missing:
                msg = f"{method} {path}: response is missing {', '.join(missing)}"
                raise RemoteAPIError(response.status_code, msg)
        return body

    def get_json(self, path: str, *, params: dict[str, Any] | None = None, required: Sequence[str] = ()) -> Any:
        return self._decode(self.request("GET", path, params=params), "GET", path, required)

    def find_json(
        self, path: str, *, params: dict[str, Any] | None = None, required: Sequence[str] = ()
    ) -> Any | None:
        """GET a resource, returning None when it does not exist."""
        response = self._send("GET", path, params=params)
        if response.status_code == 404:
            return None
        if not response.ok:
            raise RemoteAPIError(response.status_code, f"GET {path}: {_error_message(response)}")
        return self._decode(response, "GET", path, required)

    def post_json(self, path: str, payload: dict[str, Any], *, required: Sequence[str] = ()) -> Any:
        return self._decode(self.request("POST", path, json=payload), "POST", path, required)
