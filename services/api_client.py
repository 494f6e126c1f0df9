"""HTTP client for the Case Desk API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests
from requests.exceptions import ConnectionError, RequestException, Timeout

logger = logging.getLogger("casedesk.api")


class CaseDeskAPIError(Exception):
    """Base error for API calls; ``status`` is None when no response arrived."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class LoginRejected(CaseDeskAPIError):
    """The server answered the login request with an error status."""


class ConnectionFailed(CaseDeskAPIError):
    """The server could not be reached or did not answer in time."""


class CaseDeskClient:
    """Thin wrapper over ``requests.Session`` with explicit timeouts."""

    def __init__(self, base_url: str, timeout: float = 15.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def login(self, identifier: str, password: str) -> Dict[str, Any]:
        """Authenticate and return the account payload (``data`` of the response)."""
        field = "email" if "@" in (identifier or "") else "username"
        payload = {field: identifier, "password": password}
        try:
            response = self.session.post(
                f"{self.base_url}/api/auth/login",
                json=payload,
                timeout=self.timeout,
            )
        except Timeout as exc:
            logger.warning("Login request timed out after %ss", self.timeout)
            raise ConnectionFailed("The server did not respond in time. Please try again.") from exc
        except ConnectionError as exc:
            logger.warning("Login request could not reach %s", self.base_url)
            raise ConnectionFailed("Connection error. Please try again.") from exc
        except RequestException as exc:
            logger.error("Login request failed", exc_info=True)
            raise ConnectionFailed("Connection error. Please try again.") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if not response.ok:
            message = body.get("error") if isinstance(body, dict) else None
            raise LoginRejected(message or "Unable to sign in.", status=response.status_code)

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise CaseDeskAPIError("Unexpected response from server.", status=response.status_code)
        return data
