import os
from typing import Optional
from dotenv import load_dotenv
from .utils.exceptions import ConfigurationError

load_dotenv()


DEFAULT_CANVAS_URL = "https://canvas.instructure.com"
DEFAULT_REDIRECT_URI = "http://localhost:3000/oauth/callback"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


def _env_list(name: str) -> list[str]:
    value = os.getenv(name) or ""
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    """
    Gateway settings, read from the environment (and `.env`) at construction.

    Keyword arguments override the environment, which is how tests build
    isolated instances.
    """

    def __init__(self, **overrides):
        # Upstream Canvas instance and the statically registered OAuth client
        self.CANVAS_URL = os.getenv("CANVAS_URL", DEFAULT_CANVAS_URL)
        self.CLIENT_ID = os.getenv("CANVAS_CLIENT_ID")
        self.CLIENT_SECRET = os.getenv("CANVAS_CLIENT_SECRET")
        self.REDIRECT_URI = os.getenv("CANVAS_REDIRECT_URI", DEFAULT_REDIRECT_URI)

        ## Session cookie
        self.APP_ENTRY_PATH = os.getenv("APP_ENTRY_PATH", "/app")
        self.SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "canvas_session")
        self.SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE")
        self.SESSION_TTL_SECONDS = _env_int("SESSION_TTL_SECONDS")

        ## Persistence
        self.STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "memory").lower()
        self.REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
        self.REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
        self.REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")

        ## Proxy
        self.UPSTREAM_TIMEOUT_SECONDS = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS") or 30)
        self.PROXY_ALLOWED_PATH_PREFIXES = _env_list("PROXY_ALLOWED_PATH_PREFIXES")

        ## Server
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_FILE = os.getenv("LOG_FILE")
        self.HOST = os.getenv("HOST", "0.0.0.0")
        self.PORT = int(os.getenv("PORT", "3000"))

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise TypeError(f"Unknown setting: {key}")
            setattr(self, key, value)

    @property
    def canvas_base_url(self) -> str:
        return self.CANVAS_URL.rstrip("/")

    def validate(self) -> "Settings":
        """Fail fast on a misconfigured server. Called once at startup."""
        missing = [
            name for name, value in (
                ("CANVAS_CLIENT_ID", self.CLIENT_ID),
                ("CANVAS_CLIENT_SECRET", self.CLIENT_SECRET),
            ) if not value
        ]
        if missing:
            raise ConfigurationError(
                f"{', '.join(missing)} environment variable(s) not set. "
                "Register a developer key on your Canvas instance and set them."
            )
        if not self.CANVAS_URL:
            raise ConfigurationError("CANVAS_URL must not be empty.")
        if self.STORAGE_BACKEND not in ("memory", "redis"):
            raise ConfigurationError(
                f"Unsupported STORAGE_BACKEND '{self.STORAGE_BACKEND}'. Use 'memory' or 'redis'."
            )
        return self
