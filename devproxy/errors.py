"""Exception types raised by the proxy engine and its collaborators."""


class ProxyError(Exception):
    """Base class for all devproxy errors."""


class InvalidName(ProxyError, ValueError):
    """Route name does not match the slug grammar."""

    def __init__(self, name: object):
        self.name = name
        super().__init__(f'Invalid route name: "{name}" (must be lowercase alphanumeric with hyphens)')


class DuplicateName(ProxyError):
    """A route with this name is already registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f'Route "{name}" already exists')


class BindFailure(ProxyError):
    """The listening socket could not be acquired."""

    def __init__(self, port: int | None, reason: str):
        self.port = port
        self.reason = reason
        super().__init__(f"Failed to listen on port {port}: {reason}")


class UpstreamUnavailable(ProxyError):
    """The backend connection failed while forwarding."""

    def __init__(self, target: str, reason: str):
        self.target = target
        self.reason = reason
        super().__init__(f"Upstream {target} unavailable: {reason}")


class UnknownRoute(ProxyError):
    """No route is registered for the requested subdomain."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown route: {name}")
