import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from google.cloud import firestore


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    firebase_api_key: str
    firebase_project_id: str
    session_secret: str
    timezone: str
    page_size: int
    enable_realtime: bool
    login_attempts_per_minute: int


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        firebase_api_key=os.getenv("FIREBASE_API_KEY", "").strip(),
        firebase_project_id=(
            os.getenv("FIREBASE_PROJECT_ID") or os.getenv("GOOGLE_CLOUD_PROJECT") or ""
        ).strip(),
        session_secret=os.getenv("SESSION_SECRET", "dev-session-secret-change-me"),
        timezone=os.getenv("DASHBOARD_TIMEZONE", "UTC"),
        page_size=int(os.getenv("PAGE_SIZE", "50")),
        enable_realtime=_env_flag("ENABLE_REALTIME", True),
        login_attempts_per_minute=int(os.getenv("LOGIN_ATTEMPTS_PER_MINUTE", "10")),
    )


@lru_cache(maxsize=1)
def get_firestore_client():
    """
    Central Firestore client used by the application.
    Auth is provided via GOOGLE_APPLICATION_CREDENTIALS env var.
    """
    cred_path = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")

    if not cred_path:
        raise RuntimeError(
            "GOOGLE_APPLICATION_CREDENTIALS is not set. "
            "Run: export GOOGLE_APPLICATION_CREDENTIALS=/path/to/service-account.json"
        )

    project = get_settings().firebase_project_id or None
    return firestore.Client(project=project)


def get_db():
    # FastAPI dependency; tests override it with an in-memory client
    return get_firestore_client()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or os.getenv("LOG_LEVEL", "INFO")).upper(),
        format=LOG_FORMAT,
    )
