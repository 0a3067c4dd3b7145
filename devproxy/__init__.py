"""
devproxy - local subdomain reverse proxy for development servers

Exposes many local backends as http://<name>.localhost:<port> on one port.
"""

__version__ = "1.0.0"

from .engine import EngineState, ProxyEngine
from .errors import BindFailure, DuplicateName, InvalidName, ProxyError, UnknownRoute, UpstreamUnavailable
from .events import LifecycleEventBus
from .models import ProxyEvent, ProxyState, Route, RouteStatus, StartResult, StopResult
from .ports import DEFAULT_PORTS, PortAllocator
from .registry import RouteRegistry, validate_name

__all__ = [
    "ProxyEngine",
    "EngineState",
    "Route",
    "RouteStatus",
    "ProxyState",
    "ProxyEvent",
    "StartResult",
    "StopResult",
    "RouteRegistry",
    "validate_name",
    "LifecycleEventBus",
    "PortAllocator",
    "DEFAULT_PORTS",
    "ProxyError",
    "InvalidName",
    "DuplicateName",
    "BindFailure",
    "UpstreamUnavailable",
    "UnknownRoute",
    "__version__",
]
