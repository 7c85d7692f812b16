# paperworth/config.py
import os
import logging

# Backend REST API (every service builds its URLs from this one value)
API_BASE = os.environ.get("PAPERWORTH_API_URL", "http://localhost:8080/api")

# Identity provider (Firebase web API key)
FIREBASE_API_KEY = os.environ.get("PAPERWORTH_FIREBASE_API_KEY", "")
FIREBASE_AUTH_URL = "https://identitytoolkit.googleapis.com/v1"
FIREBASE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"

# Durable key-value store for the session record
SESSION_FILE = os.environ.get(
    "PAPERWORTH_SESSION_FILE",
    os.path.join(os.path.expanduser("~"), ".paperworth", "session.json"),
)
SESSION_USER_KEY = "currentUser"

REQUEST_TIMEOUT = float(os.environ.get("PAPERWORTH_REQUEST_TIMEOUT", "10"))

IMAGE_BASE_URL = os.environ.get(
    "PAPERWORTH_IMAGE_BASE_URL", "https://paperworth.sgp1.digitaloceanspaces.com"
)
PLACEHOLDER_IMAGE = "placeholder-image.jpg"

LOG_LEVEL = os.environ.get("PAPERWORTH_LOG_LEVEL", "INFO")

# Upload rules for receipt images
MAX_UPLOAD_BYTES = 5 * 1024 * 1024
ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "heic", "pdf"}

DEFAULT_MONTHLY_BUDGET = 1500


def setup_logging(level=None):
    """Configure root logging once for the UI entry point."""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
