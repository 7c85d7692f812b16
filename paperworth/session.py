# paperworth/session.py
import json
import logging
import os
import tempfile
import threading
from typing import Any, Dict, Optional

from . import config

logger = logging.getLogger("paperworth.session")

PROTECTED_ROUTES = {
    "homepage", "promotions", "past-receipts", "expense-tracker",
    "budget-settings", "rewards", "saved-promotions",
}
LOGIN_ROUTE = "login"


class SessionStore:
    """Durable key-value store backed by one JSON file.

    Holds the signed-in user under SESSION_USER_KEY so a restart keeps the session.
    """

    def __init__(self, path: str = None):
        self.path = path or config.SESSION_FILE
        # request threads share one store, so read-modify-write cycles are serialized
        self._lock = threading.RLock()

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (json.JSONDecodeError, OSError) as e:
            # corrupt file: start over, the next write replaces it
            logger.warning(f"Ignoring unreadable session file {self.path}: {e}")
            return {}

    def _save(self, data: Dict[str, Any]):
        directory = os.path.dirname(self.path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory)
        # write beside the target and swap it in, readers never see a partial file
        fd, tmp_path = tempfile.mkstemp(dir=directory or ".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=4)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError):
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def get(self, key: str, default=None):
        with self._lock:
            return self._load().get(key, default)

    def set(self, key: str, value):
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def remove(self, key: str):
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)

    def load_user(self) -> Dict[str, Any]:
        user = self.get(config.SESSION_USER_KEY)
        return user if isinstance(user, dict) else {}

    def save_user(self, user: Dict[str, Any]):
        self.set(config.SESSION_USER_KEY, user)

    def clear_user(self):
        self.remove(config.SESSION_USER_KEY)


class AuthGate:
    """Keeps signed-out users away from protected views."""

    def __init__(self, auth_service):
        self.auth_service = auth_service
        self.redirect: Optional[Dict[str, str]] = None

    def can_activate(self, route: str) -> bool:
        if route not in PROTECTED_ROUTES or self.auth_service.is_authenticated():
            self.redirect = None
            return True
        self.redirect = {"route": LOGIN_ROUTE, "return_url": route}
        logger.info(f"Redirecting to login, return_url={route}")
        return False
