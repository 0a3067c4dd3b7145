"""Listening port selection for the proxy socket."""

import logging
import socket
from collections.abc import Iterable

logger = logging.getLogger("devproxy.ports")

LOOPBACK_HOST = "127.0.0.1"

# Tried in order when the caller has no preference
DEFAULT_PORTS: tuple[int, ...] = (9000, 9001, 9002, 9100)


def build_candidates(preferred: int | None = None, defaults: Iterable[int] = DEFAULT_PORTS) -> list[int]:
    """Preferred port first (if any), then the defaults, without duplicates."""
    candidates: list[int] = []
    if preferred:
        candidates.append(int(preferred))
    for port in defaults:
        if port not in candidates:
            candidates.append(port)
    return candidates


class PortAllocator:
    """
    Finds a free TCP port by binding and immediately releasing a probe socket.

    A port reported free was free at probe time only; the caller's real bind
    can still lose the race and must treat that as a hard failure.
    """

    def __init__(self, host: str = LOOPBACK_HOST):
        self.host = host

    def is_free(self, port: int) -> bool:
        """Check whether a listener could bind the port right now"""
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind((self.host, port))
                s.listen(1)
                return True
        except OSError:
            return False

    def ephemeral(self) -> int:
        """Let the OS pick a port"""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((self.host, 0))
            return s.getsockname()[1]

    def pick(self, candidates: Iterable[int]) -> int:
        """
        Return the first free candidate, or an ephemeral port if none is free.

        Args:
            candidates: Ports in order of preference

        Returns:
            Port number that was free at the moment of the check
        """
        for port in candidates:
            if self.is_free(port):
                return port
            logger.debug("Port %d is busy, trying next candidate", port)
        port = self.ephemeral()
        logger.info("All candidate ports busy; using ephemeral port %d", port)
        return port
