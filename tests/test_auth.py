import time
from unittest.mock import MagicMock, patch

import pytest
import requests
from jose import jwt

from paperworth import config
from paperworth.api import ApiClient, ApiError
from paperworth.auth import (AuthError, FirebaseAuthService, UserService, auth_error_message, token_expiry,
                             validate_login, validate_signup)
from paperworth.promotions import SavedPromotionsService


def id_token(expires_in=3600):
    return jwt.encode({"sub": "fb1", "exp": int(time.time()) + expires_in}, "test-secret", algorithm="HS256")


def provider_response(status=200, body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body or {}
    return resp


def sign_in_body(token=None, name="Jane Tan"):
    return {"localId": "fb1", "email": "jane@example.com", "displayName": name,
            "idToken": token or id_token(), "refreshToken": "refresh-1"}


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def auth(fake_api, session_store, http):
    fake_api.respond("POST", "/users/firebase-auth",
                     lambda json, **kw: {"id": "u1", "name": json["name"], "email": json["email"],
                                         "firebaseId": json["firebaseId"]})
    return FirebaseAuthService(fake_api, session_store, api_key="web-key", http=http)


# ============================================================================
# FORM VALIDATION
# ============================================================================

class TestValidation:

    def test_login(self):
        assert validate_login("jane@example.com", "secret") == {}
        errors = validate_login("jane@", "123")
        assert errors == {"email": "Please enter a valid email address",
                          "password": "Password must be at least 6 characters"}
        assert validate_login("", "")["email"] == "Email is required"

    def test_signup(self):
        assert validate_signup("Jane", "jane@example.com", "longpass", "longpass", True) == {}
        errors = validate_signup("J", "bad", "short", "other", False)
        assert set(errors) == {"name", "email", "password", "confirm_password", "agree_terms"}

    def test_error_messages(self):
        assert auth_error_message("EMAIL_NOT_FOUND") == "Invalid email or password"
        assert auth_error_message("EMAIL_EXISTS", signup=True).startswith("Email already in use")
        assert auth_error_message("SOMETHING") == "An error occurred during login. Please try again."
        assert auth_error_message("SOMETHING", signup=True) == "Registration failed. Please try again."

    def test_token_expiry(self):
        token = id_token(100)
        assert abs(token_expiry(token) - (time.time() + 100)) < 5
        assert token_expiry("not-a-jwt") is None


# ============================================================================
# SIGN IN / SIGN UP
# ============================================================================

class TestFirebaseAuthService:

    def test_sign_in_syncs_backend_user(self, auth, http, session_store, fake_api):
        http.post.return_value = provider_response(200, sign_in_body())

        user = auth.sign_in_with_email_password("jane@example.com", "secret")

        assert user.id == "u1"
        assert user.firebase_id == "fb1"
        assert auth.is_authenticated()
        assert session_store.load_user()["id"] == "u1"
        url = http.post.call_args[0][0]
        assert url == f"{config.FIREBASE_AUTH_URL}/accounts:signInWithPassword"
        assert http.post.call_args[1]["params"] == {"key": "web-key"}
        assert fake_api.paths() == ["/users/firebase-auth"]

    def test_sign_in_keeps_provider_data_when_backend_fails(self, auth, http, fake_api):
        fake_api.respond("POST", "/users/firebase-auth", ApiError(500))
        http.post.return_value = provider_response(200, sign_in_body())

        user = auth.sign_in_with_email_password("jane@example.com", "secret")

        assert user.id == "fb1"
        assert user.name == "Jane Tan"

    def test_sign_in_rejected(self, auth, http):
        http.post.return_value = provider_response(400, {"error": {"message": "INVALID_PASSWORD"}})
        with pytest.raises(AuthError) as exc:
            auth.sign_in_with_email_password("jane@example.com", "wrong1")
        assert exc.value.code == "INVALID_PASSWORD"
        assert not auth.is_authenticated()

    def test_error_code_is_first_word(self, auth, http):
        http.post.return_value = provider_response(
            400, {"error": {"message": "WEAK_PASSWORD : Password should be at least 6 characters"}})
        with pytest.raises(AuthError) as exc:
            auth.sign_up_with_email_password("jane@example.com", "abc")
        assert exc.value.code == "WEAK_PASSWORD"

    def test_sign_up_sets_display_name(self, auth, http):
        http.post.side_effect = [
            provider_response(200, sign_in_body(name=None)),
            provider_response(200, {"displayName": "Jane Tan", "idToken": id_token(), "refreshToken": "r2"}),
        ]
        user = auth.sign_up_with_email_password("jane@example.com", "longpass", "Jane Tan")

        assert user.name == "Jane Tan"
        assert http.post.call_args_list[1][0][0].endswith("/accounts:update")
        assert auth.tokens["refreshToken"] == "r2"

    def test_restores_user_from_session(self, auth, http, fake_api, session_store):
        http.post.return_value = provider_response(200, sign_in_body())
        auth.sign_in_with_email_password("jane@example.com", "secret")

        restored = FirebaseAuthService(fake_api, session_store, api_key="web-key", http=http)

        assert restored.get_current_user().id == "u1"
        assert restored.get_id_token() == auth.tokens["idToken"]

    def test_sign_out(self, auth, http, session_store):
        http.post.return_value = provider_response(200, sign_in_body())
        auth.sign_in_with_email_password("jane@example.com", "secret")
        auth.sign_out()

        assert auth.get_current_user() is None
        assert auth.get_id_token() is None
        assert session_store.load_user() == {}
        assert session_store.get("firebaseAuth") is None


# ============================================================================
# ID TOKENS
# ============================================================================

class TestIdTokens:

    def test_fresh_token_returned_as_is(self, auth, http):
        token = id_token(3600)
        http.post.return_value = provider_response(200, sign_in_body(token))
        auth.sign_in_with_email_password("jane@example.com", "secret")
        assert auth.get_id_token() == token
        assert http.post.call_count == 1

    def test_expiring_token_is_refreshed(self, auth, http):
        http.post.return_value = provider_response(200, sign_in_body(id_token(60)))
        auth.sign_in_with_email_password("jane@example.com", "secret")
        fresh = id_token(3600)
        http.post.return_value = provider_response(200, {"id_token": fresh, "refresh_token": "refresh-2"})

        assert auth.get_id_token() == fresh
        assert http.post.call_args[0][0] == config.FIREBASE_TOKEN_URL
        assert http.post.call_args[1]["data"] == {"grant_type": "refresh_token", "refresh_token": "refresh-1"}
        assert auth.tokens["refreshToken"] == "refresh-2"

    def test_token_refreshed_when_clock_nears_expiry(self, auth, http):
        token = id_token(3600)
        http.post.return_value = provider_response(200, sign_in_body(token))
        auth.sign_in_with_email_password("jane@example.com", "secret")
        fresh = id_token(7200)
        http.post.return_value = provider_response(200, {"id_token": fresh, "refresh_token": "refresh-2"})

        with patch("paperworth.auth.time.time", return_value=time.time() + 3400):
            assert auth.get_id_token() == fresh

    def test_concurrent_requests_share_one_refresh(self, auth, http, session_store):
        http.post.return_value = provider_response(200, sign_in_body(id_token(10)))
        auth.sign_in_with_email_password("jane@example.com", "secret")
        fresh = id_token(3600)

        def slow_refresh(*args, **kwargs):
            time.sleep(0.05)
            return provider_response(200, {"id_token": fresh, "refresh_token": "refresh-2"})

        http.post.reset_mock()
        http.post.side_effect = slow_refresh

        def backend_response(*args, **kwargs):
            resp = requests.Response()
            resp.status_code = 200
            resp._content = b'{"saved": true}'
            return resp

        backend = MagicMock(spec=requests.Session)
        backend.request.side_effect = backend_response
        client = ApiClient("http://api.test", token_provider=auth.get_id_token, session=backend)

        status = SavedPromotionsService(client).saved_status("u1", list(range(1, 9)))

        assert status == {pid: True for pid in range(1, 9)}
        assert http.post.call_count == 1
        headers = {call[1]["headers"]["Authorization"] for call in backend.request.call_args_list}
        assert headers == {f"Bearer {fresh}"}
        assert session_store.load_user()["id"] == "u1"
        assert session_store.get("firebaseAuth")["refreshToken"] == "refresh-2"

    def test_failed_refresh_gives_no_token(self, auth, http):
        http.post.return_value = provider_response(200, sign_in_body(id_token(60)))
        auth.sign_in_with_email_password("jane@example.com", "secret")
        http.post.return_value = provider_response(400, {"error": {"message": "TOKEN_EXPIRED"}})
        assert auth.get_id_token() is None

    def test_network_failure(self, auth, http):
        http.post.side_effect = requests.ConnectionError("offline")
        with pytest.raises(AuthError) as exc:
            auth.sign_in_with_email_password("jane@example.com", "secret")
        assert exc.value.code == "NETWORK_REQUEST_FAILED"


# ============================================================================
# BACKEND USER SERVICE
# ============================================================================

class TestUserService:

    def test_current_user_requires_session(self, fake_api, session_store):
        with pytest.raises(ApiError) as exc:
            UserService(fake_api, session_store).get_current_user()
        assert exc.value.status == 401

    def test_current_user(self, fake_api, session_store):
        session_store.save_user({"id": "u1"})
        fake_api.respond("GET", "/users/me", {"id": "u1", "name": "Jane", "email": "j@x.io"})
        user = UserService(fake_api, session_store).get_current_user()
        assert user.name == "Jane"
        assert fake_api.calls[0][2]["params"] == {"userId": "u1"}

    def test_logout_clears_session(self, fake_api, session_store):
        session_store.save_user({"id": "u1"})
        UserService(fake_api, session_store).logout()
        assert session_store.load_user() == {}
