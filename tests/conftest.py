import threading
import time

import pytest

from paperworth.api import ApiError
from paperworth.models import User
from paperworth.session import SessionStore


class FakeApi:
    """Stands in for ApiClient: canned responses keyed by (METHOD, path), calls recorded."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self._lock = threading.Lock()

    def respond(self, method, path, value):
        self.routes[(method.upper(), path)] = value
        return self

    def request(self, method, path, **kwargs):
        method = method.upper()
        with self._lock:
            self.calls.append((method, path, kwargs))
        if (method, path) not in self.routes:
            raise ApiError(404, "Not found", operation=f"{method} {path}")
        value = self.routes[(method, path)]
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return value(**kwargs)
        return value

    def get(self, path, params=None):
        return self.request("GET", path, params=params)

    def post(self, path, json=None, files=None, params=None, data=None):
        return self.request("POST", path, json=json, files=files, params=params, data=data)

    def put(self, path, json=None):
        return self.request("PUT", path, json=json)

    def delete(self, path):
        return self.request("DELETE", path)

    def paths(self, method=None):
        return [p for m, p, _ in self.calls if method is None or m == method.upper()]


class FakeAuth:
    def __init__(self, user=None):
        self.user = user

    def get_current_user(self):
        return self.user

    def is_authenticated(self):
        return self.user is not None


@pytest.fixture
def fake_api():
    """Return an empty FakeApi; tests register the routes they need."""
    return FakeApi()


@pytest.fixture
def user():
    return User(id="u1", name="Jane Tan", email="jane@example.com")


@pytest.fixture
def fake_auth(user):
    return FakeAuth(user)


@pytest.fixture
def session_store(tmp_path):
    """Session store backed by a file in a temp dir."""
    return SessionStore(str(tmp_path / "state" / "session.json"))


@pytest.fixture
def local_timezone(monkeypatch):
    """Switch the process timezone for one test; the original zone comes back afterwards."""
    if not hasattr(time, "tzset"):
        pytest.skip("timezone switching needs time.tzset")

    def use(name):
        monkeypatch.setenv("TZ", name)
        time.tzset()

    yield use
    monkeypatch.undo()
    time.tzset()
