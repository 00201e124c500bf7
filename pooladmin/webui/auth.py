from __future__ import annotations

import os
import hmac
from dataclasses import dataclass
from typing import Optional, Callable, Dict, Any

import bcrypt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from pooladmin.config import dlog


security = HTTPBasic(auto_error=False)


def _truthy(val: Optional[str]) -> bool:
    if val is None:
        return False
    return val.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AdminAuthConfig:
    enabled: bool
    username: str
    password_hash: Optional[str]
    password_plain: Optional[str]
    api_key: Optional[str]
    read_only: bool = False
    disabled_reason: Optional[str] = None

    @property
    def auth_mode(self) -> str:
        if not self.enabled:
            return "disabled"
        modes = []
        if self.password_hash:
            modes.append("hash")
        elif self.password_plain:
            modes.append("password")
        if self.api_key:
            modes.append("api-key")
        return "+".join(modes) or "unknown"


def load_admin_auth_config() -> AdminAuthConfig:
    """Read admin auth settings from env."""
    enabled = _truthy(os.environ.get("ENABLE_ADMIN") or os.environ.get("ADMIN_ENABLED"))
    username = os.environ.get("ADMIN_USERNAME", "admin").strip() or "admin"
    password_hash = os.environ.get("ADMIN_PASSWORD_HASH") or None
    password_plain = os.environ.get("ADMIN_PASSWORD") or None
    api_key = os.environ.get("ADMIN_API_KEY") or None
    read_only = _truthy(os.environ.get("ADMIN_READ_ONLY"))

    disabled_reason = None
    if enabled and not (password_hash or password_plain or api_key):
        disabled_reason = (
            "Admin disabled: ENABLE_ADMIN set but no ADMIN_PASSWORD_HASH, ADMIN_PASSWORD or ADMIN_API_KEY provided."
        )
        enabled = False

    cfg = AdminAuthConfig(
        enabled=enabled,
        username=username,
        password_hash=password_hash,
        password_plain=password_plain,
        api_key=api_key,
        read_only=read_only,
        disabled_reason=disabled_reason,
    )
    dlog(
        "admin_auth_config",
        {
            "enabled": cfg.enabled,
            "username": cfg.username,
            "auth_mode": cfg.auth_mode,
            "read_only": cfg.read_only,
            "disabled_reason": cfg.disabled_reason,
        },
    )
    return cfg


def _verify_password(config: AdminAuthConfig, provided: str) -> bool:
    if config.password_hash:
        try:
            return bcrypt.checkpw(provided.encode("utf-8"), config.password_hash.encode("utf-8"))
        except ValueError:
            return False
    if config.password_plain:
        return hmac.compare_digest(config.password_plain, provided or "")
    return False


def _presented_api_key(request: Request) -> Optional[str]:
    key = request.headers.get("x-api-key")
    if key:
        return key.strip()
    auth_header = request.headers.get("authorization") or ""
    if auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return None


def require_admin(config: AdminAuthConfig) -> Callable[..., Dict[str, Any]]:
    def dependency(
        request: Request,
        credentials: Optional[HTTPBasicCredentials] = Depends(security),
    ) -> Dict[str, Any]:
        if not config.enabled:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

        if config.api_key:
            presented = _presented_api_key(request)
            if presented and hmac.compare_digest(config.api_key, presented):
                return {"username": config.username, "auth_mode": "api-key"}

        if credentials is not None and (config.password_hash or config.password_plain):
            user_ok = hmac.compare_digest(config.username, credentials.username or "")
            if user_ok and _verify_password(config, credentials.password or ""):
                return {"username": config.username, "auth_mode": config.auth_mode}
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials",
                headers={"WWW-Authenticate": "Basic"},
            )

        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Basic"},
        )

    return dependency


def require_writable(config: AdminAuthConfig) -> None:
    if config.read_only:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin API is read-only.")


def public_admin_config(config: AdminAuthConfig) -> Dict[str, Any]:
    """Return a redacted view suitable for admin status endpoints."""
    return {
        "enabled": config.enabled,
        "username": config.username if config.enabled else None,
        "auth_mode": config.auth_mode,
        "has_password_hash": bool(config.password_hash),
        "has_password_plain": bool(config.password_plain),
        "has_api_key": bool(config.api_key),
        "read_only": config.read_only,
        "disabled_reason": config.disabled_reason,
    }
