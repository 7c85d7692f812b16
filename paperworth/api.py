# paperworth/api.py
import logging
from typing import Any, Callable, Dict, Optional

import requests

from . import config

logger = logging.getLogger("paperworth.api")

# identity-sync calls go out without a bearer token
UNAUTHENTICATED_PATH_MARKER = "firebase-auth"


class ApiError(Exception):
    """A failed backend call. status is 0 when the request never got a response."""

    def __init__(self, status: int, message: str = "", body: Any = None, operation: str = ""):
        super().__init__(message or f"HTTP {status}")
        self.status = status
        self.message = message or f"HTTP {status}"
        self.body = body
        self.operation = operation

    @property
    def category(self) -> str:
        if self.status == 401:
            return "auth"
        if self.status == 0:
            return "network"
        if self.status >= 500:
            return "server"
        return "general"


ERROR_MESSAGES = {
    "auth": "Invalid email or password",
    "network": "Network error. Please check your connection.",
    "server": "Server error, please try again later.",
}


def user_message(error: Exception, fallback: str = "Something went wrong. Please try again.") -> str:
    """Banner text for a failed call."""
    if isinstance(error, ApiError):
        return ERROR_MESSAGES.get(error.category, fallback)
    return fallback


def safe_json(resp):
    if resp is None or not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return None


class ApiClient:
    """Thin wrapper over requests.Session bound to the backend base URL."""

    def __init__(self, base_url: str = None, token_provider: Optional[Callable[[], Optional[str]]] = None,
                 session: requests.Session = None, timeout: float = None):
        self.base_url = (base_url or config.API_BASE).rstrip("/")
        self.token_provider = token_provider
        self.session = session or requests.Session()
        self.timeout = timeout or config.REQUEST_TIMEOUT

    def url(self, path: str) -> str:
        return self.base_url + path

    def _headers(self, path: str) -> Dict[str, str]:
        headers = {}
        if self.token_provider and UNAUTHENTICATED_PATH_MARKER not in path:
            token = self.token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    def request(self, method: str, path: str, json=None, files=None, params=None, data=None):
        operation = f"{method.upper()} {path}"
        try:
            resp = self.session.request(
                method.upper(),
                self.url(path),
                headers=self._headers(path),
                json=json,
                files=files,
                params=params,
                data=data,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"{operation} failed: {e}")
            raise ApiError(0, str(e), operation=operation) from e

        body = safe_json(resp)
        if resp.status_code >= 400:
            message = ""
            if isinstance(body, dict):
                message = body.get("message") or body.get("error") or ""
            logger.warning(f"{operation} returned {resp.status_code}")
            raise ApiError(resp.status_code, message, body=body, operation=operation)
        return body

    def get(self, path, params=None):
        return self.request("GET", path, params=params)

    def post(self, path, json=None, files=None, params=None, data=None):
        return self.request("POST", path, json=json, files=files, params=params, data=data)

    def put(self, path, json=None):
        return self.request("PUT", path, json=json)

    def delete(self, path):
        return self.request("DELETE", path)
