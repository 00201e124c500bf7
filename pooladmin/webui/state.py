from __future__ import annotations

import os
import json
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Any, List, Optional

from pooladmin.config import dlog
from pooladmin.service import AdminService
from pooladmin.webui.auth import AdminAuthConfig, public_admin_config


MAX_EVENTS = 200


@dataclass
class AdminEvent:
    ts: float
    action: str
    index: Optional[int] = None
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"ts": self.ts, "action": self.action, "index": self.index, "detail": self.detail}


class AdminEventLog:
    """Bounded record of admin actions against the credential pool."""

    def __init__(self, max_events: int = MAX_EVENTS, path: Optional[str] = None) -> None:
        self.path = path
        self.events: Deque[AdminEvent] = deque(maxlen=max_events)
        self._load()

    def add(self, action: str, index: Optional[int] = None, detail: Optional[str] = None) -> AdminEvent:
        event = AdminEvent(ts=time.time(), action=action, index=index, detail=detail)
        self.events.append(event)
        self._append(event)
        return event

    def snapshot(self) -> List[Dict[str, Any]]:
        """Newest first."""
        return [e.to_dict() for e in reversed(self.events)]

    def _load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    data = json.loads(line)
                    if not isinstance(data, dict):
                        dlog("admin_events_load_skip", f"Ignoring non-object event line: {line[:80]}")
                        continue
                    self.events.append(
                        AdminEvent(
                            ts=float(data.get("ts") or time.time()),
                            action=data.get("action") or "unknown",
                            index=data.get("index"),
                            detail=data.get("detail"),
                        )
                    )
        except (OSError, TypeError, ValueError) as e:
            dlog("admin_events_load_error", str(e))
            self.events.clear()

    def _append(self, event: AdminEvent) -> None:
        if not self.path:
            return
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, "a") as f:
                f.write(json.dumps(event.to_dict()) + "\n")
        except OSError as e:
            dlog("admin_events_persist_error", str(e))


@dataclass
class AdminRuntimeState:
    start_time: float
    auth_config: AdminAuthConfig
    service: AdminService
    events: AdminEventLog = field(default_factory=AdminEventLog)

    @property
    def uptime_seconds(self) -> int:
        return int(time.time() - self.start_time)

    def public_config(self) -> Dict[str, Any]:
        return public_admin_config(self.auth_config)


def init_admin_state(
    config: AdminAuthConfig,
    service: AdminService,
    event_log_path: Optional[str] = None,
) -> AdminRuntimeState:
    """Capture startup time and wire the service and event log together."""
    return AdminRuntimeState(
        start_time=time.time(),
        auth_config=config,
        service=service,
        events=AdminEventLog(path=event_log_path),
    )
