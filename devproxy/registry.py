"""In-memory route registry keyed by slug name."""

import logging
import re

from .errors import DuplicateName, InvalidName
from .models import DEFAULT_TARGET_HOST, Route, RouteStatus, utc_now

logger = logging.getLogger("devproxy.registry")

SLUG_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")


def validate_name(name: object) -> str:
    """Return the name unchanged, or raise InvalidName if it is not a slug"""
    if not isinstance(name, str) or not SLUG_PATTERN.match(name):
        raise InvalidName(name)
    return name


def validate_port(port: object) -> int:
    """Validate a backend port number"""
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"Port must be an integer, got {port!r}")
    if port < 1 or port > 65535:
        raise ValueError("Port must be between 1 and 65535")
    return port


class RouteRegistry:
    """
    Named mappings from slug to backend address.

    Only `status` and `last_accessed` ever change on a stored Route. Callers
    outside the engine should work with copies.
    """

    def __init__(self) -> None:
        self._routes: dict[str, Route] = {}

    def __len__(self) -> int:
        return len(self._routes)

    def __contains__(self, name: object) -> bool:
        return name in self._routes

    def add(
        self,
        name: str,
        target_host: str | None,
        target_port: int,
        url: str,
        task_id: str | None = None,
    ) -> Route:
        validate_name(name)
        if name in self._routes:
            raise DuplicateName(name)
        validate_port(target_port)

        route = Route(
            name=name,
            target_port=target_port,
            target_host=target_host or DEFAULT_TARGET_HOST,
            status=RouteStatus.RUNNING,
            task_id=task_id,
            url=url,
        )
        self._routes[name] = route
        logger.debug("Stored route %s -> %s", name, route.target)
        return route

    def remove(self, name: str) -> bool:
        """Delete a route; False if it was not registered"""
        return self._routes.pop(name, None) is not None

    def update_status(self, name: str, status: RouteStatus | str) -> bool:
        status = RouteStatus(status)
        route = self._routes.get(name)
        if route is None:
            return False
        route.status = status
        return True

    def touch(self, name: str) -> Route | None:
        """Stamp last_accessed on a route that is being used"""
        route = self._routes.get(name)
        if route is not None:
            route.last_accessed = utc_now()
        return route

    def get(self, name: str) -> Route | None:
        return self._routes.get(name)

    def list(self) -> list[Route]:
        return list(self._routes.values())

    def clear(self) -> None:
        self._routes.clear()
