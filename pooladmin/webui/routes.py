from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from pooladmin.errors import AdminServiceError, invalid_request
from pooladmin.models import success_response
from pooladmin.webui.auth import AdminAuthConfig, require_admin, require_writable
from pooladmin.webui.state import AdminRuntimeState


def _error_response(err: AdminServiceError) -> JSONResponse:
    return JSONResponse(err.to_dict(), status_code=err.status_code)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(invalid_request(message), status_code=400)


def _read_disabled(payload: Optional[Dict[str, Any]]) -> Optional[bool]:
    value = (payload or {}).get("disabled")
    return value if isinstance(value, bool) else None


def _read_priority(payload: Optional[Dict[str, Any]]) -> Optional[int]:
    value = (payload or {}).get("priority")
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


def create_admin_api_router(config: AdminAuthConfig, state: AdminRuntimeState, prefix: str = "/api/admin") -> APIRouter:
    """Create the JSON admin API for inspecting and steering the credential pool."""
    router = APIRouter(prefix=prefix, dependencies=[Depends(require_admin(config))])
    service = state.service

    @router.get("/health")
    async def admin_health():
        return {
            "status": "ok",
            "uptime_seconds": state.uptime_seconds,
            "config": state.public_config(),
        }

    @router.get("/credentials")
    async def list_credentials():
        return service.get_all_credentials().to_dict()

    @router.post("/credentials/{index}/disabled")
    async def set_credential_disabled(index: int, payload: Optional[dict] = None):
        require_writable(config)
        disabled = _read_disabled(payload)
        if disabled is None:
            return _bad_request("Field 'disabled' must be a boolean.")
        try:
            service.set_disabled(index, disabled)
        except AdminServiceError as e:
            return _error_response(e)
        action = "Credential disabled" if disabled else "Credential enabled"
        state.events.add(action, index)
        return success_response(f"Credential #{index} {'disabled' if disabled else 'enabled'}")

    @router.post("/credentials/{index}/priority")
    async def set_credential_priority(index: int, payload: Optional[dict] = None):
        require_writable(config)
        priority = _read_priority(payload)
        if priority is None:
            return _bad_request("Field 'priority' must be a non-negative integer.")
        try:
            service.set_priority(index, priority)
        except AdminServiceError as e:
            return _error_response(e)
        state.events.add("Priority changed", index, f"priority={priority}")
        return success_response(f"Credential #{index} priority set to {priority}")

    @router.post("/credentials/{index}/reset")
    async def reset_credential(index: int):
        require_writable(config)
        try:
            service.reset_and_enable(index)
        except AdminServiceError as e:
            return _error_response(e)
        state.events.add("Credential reset", index)
        return success_response(f"Credential #{index} failure count reset and re-enabled")

    @router.get("/credentials/{index}/balance")
    async def credential_balance(index: int):
        try:
            balance = await service.get_balance(index)
        except AdminServiceError as e:
            return _error_response(e)
        return balance.to_dict()

    @router.get("/events")
    async def admin_events():
        return {
            "status": "ok",
            "events": state.events.snapshot(),
            "persisted": bool(state.events.path),
        }

    return router
