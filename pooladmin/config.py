from __future__ import annotations

import os
import json
import sys
from dataclasses import dataclass
from typing import Optional


# Debug flag: default off. Enable via CLI arg "--pool-admin-debug" or env POOL_ADMIN_DEBUG=1.
DEBUG = "--pool-admin-debug" in sys.argv or os.environ.get("POOL_ADMIN_DEBUG") == "1"

DEFAULT_USAGE_API_URL = "https://q.us-east-1.amazonaws.com/getUsageLimits"
DEFAULT_ADMIN_UI_DIST = "admin-ui/dist"


def dlog(label: str, data):
    if not DEBUG:
        return
    try:
        printable = data if isinstance(data, str) else json.dumps(data, indent=2, ensure_ascii=False)
    except Exception:
        printable = str(data)
    print(f"[pool-admin-debug] {label}: {printable}")


def normalize_base_path(raw: Optional[str]) -> str:
    """Return "" or a "/prefix" path without a trailing slash."""
    if not raw:
        return ""
    path = raw.strip().strip("/")
    if not path:
        return ""
    return "/" + path


@dataclass(frozen=True)
class ServerSettings:
    base_path: str = ""
    admin_ui_dist: str = DEFAULT_ADMIN_UI_DIST
    credentials_file: Optional[str] = None
    usage_api_url: str = DEFAULT_USAGE_API_URL
    usage_api_timeout: float = 30.0
    event_log_path: Optional[str] = None

    @property
    def api_prefix(self) -> str:
        return f"{self.base_path}/api/admin"

    @property
    def ui_prefix(self) -> str:
        return f"{self.base_path}/admin"


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be a number of seconds, got {raw!r}") from e
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {raw!r}")
    return value


def load_settings() -> ServerSettings:
    """Read server settings from env."""
    settings = ServerSettings(
        base_path=normalize_base_path(os.environ.get("POOL_ADMIN_BASE_PATH")),
        admin_ui_dist=os.environ.get("ADMIN_UI_DIST") or DEFAULT_ADMIN_UI_DIST,
        credentials_file=os.environ.get("CREDENTIALS_FILE") or None,
        usage_api_url=os.environ.get("USAGE_API_URL") or DEFAULT_USAGE_API_URL,
        usage_api_timeout=_float_env("USAGE_API_TIMEOUT", 30.0),
        event_log_path=os.environ.get("ADMIN_EVENT_LOG") or None,
    )
    dlog(
        "server_settings",
        {
            "base_path": settings.base_path,
            "admin_ui_dist": settings.admin_ui_dist,
            "credentials_file": settings.credentials_file,
            "usage_api_url": settings.usage_api_url,
            "usage_api_timeout": settings.usage_api_timeout,
        },
    )
    return settings
