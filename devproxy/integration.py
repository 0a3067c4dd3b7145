"""
Binds background task lifecycles to proxy routes.

When a task reports the URL of its dev server, a route named after the task
is registered; when the task exits the route is marked stopped.
"""

import logging
import re
import time
from collections.abc import Callable
from urllib.parse import urlparse

from .errors import ProxyError
from .models import Route, RouteStatus

logger = logging.getLogger("devproxy.integration")

MAX_SLUG_LENGTH = 30


def to_slug(task_id: str) -> str:
    """Sanitize a task id into a valid route slug (max 30 chars)"""
    slug = re.sub(r"[^a-z0-9-]", "-", task_id.lower())
    slug = re.sub(r"-+", "-", slug).strip("-")
    slug = slug[:MAX_SLUG_LENGTH].rstrip("-")
    return slug or "task"


def unique_slug(base: str, exists: Callable[[str], bool]) -> str:
    """Append a numeric suffix until the slug is free"""
    if not exists(base):
        return base
    for i in range(2, 100):
        candidate = f"{base}-{i}"
        if not exists(candidate):
            return candidate
    return f"{base}-{int(time.time() * 1000)}"


def parse_port(url: str) -> int | None:
    """Explicit port of a URL, or None"""
    try:
        port = urlparse(url).port
    except ValueError:
        return None
    return port if port and port > 0 else None


class TaskRouteBinder:
    """
    Keeps a task_id -> route name mapping for one engine.

    Registration failures are logged and reported as None; they never
    propagate into the task runner that emitted the event.
    """

    def __init__(self, engine):
        self.engine = engine
        self._slugs: dict[str, str] = {}

    def slug_for(self, task_id: str) -> str | None:
        return self._slugs.get(task_id)

    async def on_task_url(self, task_id: str, url: str) -> Route | None:
        port = parse_port(url)
        if not port:
            logger.debug("Ignoring URL without port for task %s: %s", task_id, url)
            return None

        slug = unique_slug(to_slug(task_id), lambda name: self.engine.get_route(name) is not None)
        self._slugs[task_id] = slug
        try:
            return await self.engine.add_route(slug, port, task_id=task_id)
        except ProxyError as exc:
            logger.warning("Failed to add route for task %s: %s", task_id, exc)
            return None

    def on_task_exit(self, task_id: str) -> bool:
        slug = self._slugs.get(task_id)
        if not slug:
            return False
        return self.engine.update_route_status(slug, RouteStatus.STOPPED)
