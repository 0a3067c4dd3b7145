"""
Plain records shared by the engine, the control API and event subscribers.

Routes own no sockets; backend connections live only for one request or
one tunnel.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

DEFAULT_TARGET_HOST = "127.0.0.1"

EventType = Literal["started", "stopped", "route:added", "route:removed", "route:status", "error"]


def utc_now() -> str:
    """ISO 8601 timestamp in UTC with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RouteStatus(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


@dataclass
class Route:
    """One registered name -> backend mapping."""

    name: str
    target_port: int
    target_host: str = DEFAULT_TARGET_HOST
    status: RouteStatus = RouteStatus.RUNNING
    task_id: str | None = None
    url: str = ""
    registered_at: str = field(default_factory=utc_now)
    last_accessed: str | None = None

    @property
    def target(self) -> str:
        return f"{self.target_host}:{self.target_port}"

    def copy(self) -> "Route":
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "target_host": self.target_host,
            "target_port": self.target_port,
            "status": self.status.value,
            "url": self.url,
            "registered_at": self.registered_at,
        }
        if self.task_id is not None:
            data["task_id"] = self.task_id
        if self.last_accessed is not None:
            data["last_accessed"] = self.last_accessed
        return data


@dataclass
class ProxyState:
    running: bool
    port: int | None
    routes: list[Route] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "port": self.port,
            "routes": [route.to_dict() for route in self.routes],
        }


@dataclass(frozen=True)
class ProxyEvent:
    type: EventType
    route: Route | None = None
    error: str | None = None
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "timestamp": self.timestamp}
        if self.route is not None:
            data["route"] = self.route.to_dict()
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class StartResult:
    ok: bool
    port: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"ok": self.ok}
        if self.port is not None:
            data["port"] = self.port
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class StopResult:
    ok: bool

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok}
