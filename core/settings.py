"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(env or os.environ)
    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "TaskMirror"


DATA_DIR = Path(os.environ.get("TASK_MIRROR_DATA_DIR") or get_default_data_dir(APP_NAME))
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "app.db"
SYNC_LOG_PATH = LOG_DIR / "sync.log"
DATABASE_URL = os.environ.get("TASK_MIRROR_DATABASE_URL") or f"sqlite:///{DB_PATH.as_posix()}"

TASKS_SCOPE = "https://www.googleapis.com/auth/tasks"
DEFAULT_TASKLIST_ID = "@default"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"

DEFAULT_STATUS_INTERVAL_MINUTES = 5
DEFAULT_IMPORT_INTERVAL_MINUTES = 1


def _env_flag(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or not str(raw).strip():
        return default
    return str(raw).strip().lower() != "false"


def _env_positive(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class GoogleSyncSettings:
    enabled: bool = True
    status_sync_enabled: bool = True
    status_interval_minutes: float = DEFAULT_STATUS_INTERVAL_MINUTES
    import_enabled: bool = False
    import_interval_minutes: float = DEFAULT_IMPORT_INTERVAL_MINUTES
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = "http://localhost:9000/api/google/callback"
    scopes: tuple[str, ...] = (TASKS_SCOPE,)
    token_uri: str = GOOGLE_TOKEN_URI
    request_timeout_sec: float = 30
    initial_lookback_days: int = 30


def load_sync_settings(env: Optional[Mapping[str, str]] = None) -> GoogleSyncSettings:
    """Build :class:`GoogleSyncSettings` from environment variables."""

    environ = os.environ if env is None else env
    return GoogleSyncSettings(
        enabled=_env_flag(environ, "GOOGLE_TASKS_SYNC_ENABLED", True),
        status_sync_enabled=_env_flag(environ, "GOOGLE_TASKS_STATUS_SYNC_ENABLED", True),
        status_interval_minutes=_env_positive(
            environ, "GOOGLE_TASKS_SYNC_INTERVAL_MINUTES", DEFAULT_STATUS_INTERVAL_MINUTES
        ),
        import_enabled=_env_flag(environ, "GOOGLE_TASKS_IMPORT_ENABLED", False),
        import_interval_minutes=_env_positive(
            environ, "GOOGLE_TASKS_IMPORT_INTERVAL_MINUTES", DEFAULT_IMPORT_INTERVAL_MINUTES
        ),
        client_id=(environ.get("GOOGLE_CLIENT_ID") or "").strip(),
        client_secret=(environ.get("GOOGLE_CLIENT_SECRET") or "").strip(),
        redirect_uri=(
            (environ.get("GOOGLE_REDIRECT_URI") or "").strip()
            or "http://localhost:9000/api/google/callback"
        ),
        request_timeout_sec=_env_positive(environ, "GOOGLE_TASKS_REQUEST_TIMEOUT_SEC", 30),
        initial_lookback_days=int(_env_positive(environ, "GOOGLE_TASKS_INITIAL_LOOKBACK_DAYS", 30)),
    )


GOOGLE_SYNC = load_sync_settings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "LOG_DIR",
    "DB_PATH",
    "SYNC_LOG_PATH",
    "DATABASE_URL",
    "TASKS_SCOPE",
    "DEFAULT_TASKLIST_ID",
    "GOOGLE_SYNC",
    "GoogleSyncSettings",
    "get_default_data_dir",
    "load_sync_settings",
]
