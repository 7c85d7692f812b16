# paperworth/auth.py
import logging
import re
import threading
import time
from typing import Any, Dict, Optional

import requests
from jose import JWTError, jwt

from . import config
from .api import ApiError
from .models import User
from .session import SessionStore
from .utils import utcnow

logger = logging.getLogger("paperworth.auth")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
TOKENS_KEY = "firebaseAuth"
# refresh the ID token when it has less than this many seconds left
TOKEN_REFRESH_MARGIN = 300

LOGIN_ERRORS = {
    "EMAIL_NOT_FOUND": "Invalid email or password",
    "INVALID_PASSWORD": "Invalid email or password",
    "INVALID_LOGIN_CREDENTIALS": "Invalid email or password",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many failed login attempts. Please try again later.",
}
SIGNUP_ERRORS = {
    "EMAIL_EXISTS": "Email already in use. Please try another email address.",
    "WEAK_PASSWORD": "Password is too weak. Please choose a stronger password.",
}


# ---------------- Form validation ----------------
def validate_email(email: str) -> Optional[str]:
    if not email:
        return "Email is required"
    if not EMAIL_RE.match(email):
        return "Please enter a valid email address"
    return None


def validate_login(email: str, password: str) -> Dict[str, str]:
    errors = {}
    email_error = validate_email(email)
    if email_error:
        errors["email"] = email_error
    if not password:
        errors["password"] = "Password is required"
    elif len(password) < 6:
        errors["password"] = "Password must be at least 6 characters"
    return errors


def validate_signup(name: str, email: str, password: str, confirm_password: str,
                    agree_terms: bool) -> Dict[str, str]:
    errors = {}
    if not name or len(name.strip()) < 2:
        errors["name"] = "Name must be at least 2 characters"
    email_error = validate_email(email)
    if email_error:
        errors["email"] = email_error
    if not password or len(password) < 8:
        errors["password"] = "Password must be at least 8 characters"
    if password != confirm_password:
        errors["confirm_password"] = "Passwords do not match"
    if not agree_terms:
        errors["agree_terms"] = "You must accept the terms and conditions"
    return errors


class AuthError(Exception):
    """Identity provider rejection, code is the provider's error code (e.g. EMAIL_NOT_FOUND)."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


def auth_error_message(code: str, signup: bool = False) -> str:
    if signup:
        return SIGNUP_ERRORS.get(code, "Registration failed. Please try again.")
    return LOGIN_ERRORS.get(code, "An error occurred during login. Please try again.")


def token_expiry(id_token: str) -> Optional[int]:
    """exp claim of an ID token, read without verifying the signature."""
    try:
        return int(jwt.get_unverified_claims(id_token).get("exp"))
    except (JWTError, TypeError, ValueError):
        return None


class FirebaseAuthService:
    """Email/password sign-in through the Firebase REST API, synced with the backend user."""

    def __init__(self, api, session: SessionStore, api_key: str = None, http: requests.Session = None):
        self.api = api
        self.session = session
        self.api_key = api_key if api_key is not None else config.FIREBASE_API_KEY
        self.http = http or requests.Session()
        self.tokens: Dict[str, Any] = session.get(TOKENS_KEY) or {}
        stored = session.load_user()
        self.current_user: Optional[User] = User.from_dict(stored) if stored else None
        self._refresh_lock = threading.Lock()

    # ---- identity provider calls ----
    def _call(self, url: str, payload: Dict[str, Any], form: bool = False) -> Dict[str, Any]:
        try:
            if form:
                resp = self.http.post(url, params={"key": self.api_key}, data=payload, timeout=config.REQUEST_TIMEOUT)
            else:
                resp = self.http.post(url, params={"key": self.api_key}, json=payload, timeout=config.REQUEST_TIMEOUT)
        except requests.RequestException as e:
            logger.error(f"Identity provider unreachable: {e}")
            raise AuthError("NETWORK_REQUEST_FAILED") from e
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code >= 400:
            message = (body.get("error") or {}).get("message", "UNKNOWN")
            # messages look like "WEAK_PASSWORD : Password should be at least 6 characters"
            raise AuthError(message.split(" ")[0])
        return body

    def _store_tokens(self, id_token: str, refresh_token: str):
        self.tokens = {"idToken": id_token, "refreshToken": refresh_token}
        self.session.set(TOKENS_KEY, self.tokens)

    def sign_in_with_email_password(self, email: str, password: str) -> User:
        body = self._call(f"{config.FIREBASE_AUTH_URL}/accounts:signInWithPassword",
                          {"email": email, "password": password, "returnSecureToken": True})
        self._store_tokens(body["idToken"], body["refreshToken"])
        logger.info(f"Signed in {email}")
        return self._sync_user(body)

    def sign_up_with_email_password(self, email: str, password: str, name: str = None) -> User:
        body = self._call(f"{config.FIREBASE_AUTH_URL}/accounts:signUp",
                          {"email": email, "password": password, "returnSecureToken": True})
        if name:
            updated = self._call(f"{config.FIREBASE_AUTH_URL}/accounts:update",
                                 {"idToken": body["idToken"], "displayName": name, "returnSecureToken": True})
            body["displayName"] = updated.get("displayName", name)
            body["idToken"] = updated.get("idToken", body["idToken"])
            body["refreshToken"] = updated.get("refreshToken", body["refreshToken"])
        self._store_tokens(body["idToken"], body["refreshToken"])
        logger.info(f"Registered {email}")
        return self._sync_user(body)

    def _sync_user(self, provider_user: Dict[str, Any]) -> User:
        user_data = {
            "id": provider_user.get("localId"),
            "name": provider_user.get("displayName") or "User",
            "email": provider_user.get("email"),
            "createdAt": utcnow().isoformat() + "Z",
        }
        try:
            backend_user = self.api.post("/users/firebase-auth", json={
                "firebaseId": user_data["id"],
                "email": user_data["email"],
                "name": user_data["name"],
            }) or {}
            user_data = {**user_data, **backend_user}
        except ApiError as e:
            logger.error(f"Backend user sync failed, keeping identity provider data: {e}")
        self.session.save_user(user_data)
        self.current_user = User.from_dict(user_data)
        return self.current_user

    def refresh_id_token(self) -> Optional[str]:
        refresh_token = self.tokens.get("refreshToken")
        if not refresh_token:
            return None
        body = self._call(config.FIREBASE_TOKEN_URL,
                          {"grant_type": "refresh_token", "refresh_token": refresh_token}, form=True)
        self._store_tokens(body["id_token"], body["refresh_token"])
        return body["id_token"]

    def _needs_refresh(self, id_token: str) -> bool:
        exp = token_expiry(id_token)
        return exp is not None and exp - time.time() < TOKEN_REFRESH_MARGIN

    def get_id_token(self) -> Optional[str]:
        id_token = self.tokens.get("idToken")
        if not id_token or self.current_user is None:
            return None
        if not self._needs_refresh(id_token):
            return id_token
        with self._refresh_lock:
            # another request thread may have refreshed while this one waited
            id_token = self.tokens.get("idToken")
            if id_token and not self._needs_refresh(id_token):
                return id_token
            try:
                return self.refresh_id_token()
            except AuthError as e:
                logger.error(f"ID token refresh failed: {e.code}")
                return None

    def get_current_user(self) -> Optional[User]:
        return self.current_user

    def is_authenticated(self) -> bool:
        return self.current_user is not None

    def sign_out(self):
        self.current_user = None
        self.tokens = {}
        self.session.remove(TOKENS_KEY)
        self.session.clear_user()
        logger.info("Signed out")


class UserService:
    """Backend user endpoints that do not go through the identity provider."""

    def __init__(self, api, session: SessionStore):
        self.api = api
        self.session = session

    def login(self, credentials: Dict[str, str]) -> Dict[str, Any]:
        return self.api.post("/users/login", json=credentials)

    def register(self, user: Dict[str, Any]) -> Dict[str, Any]:
        return self.api.post("/users/register", json=user)

    def get_current_user(self) -> User:
        user_id = self.session.load_user().get("id")
        if not user_id:
            raise ApiError(401, "User not logged in", operation="GET /users/me")
        return User.from_dict(self.api.get("/users/me", params={"userId": user_id}) or {})

    def logout(self):
        self.session.clear_user()
