"""Main entry point for the devproxy CLI"""

import argparse
import asyncio
import signal
import sys

from . import __version__
from .config import ProxyConfig
from .engine import ProxyEngine
from .errors import ProxyError
from .integration import to_slug
from .output import console, print_error, print_event, print_info, print_routes, print_success, status_icon
from .ports import PortAllocator, build_candidates
from .registry import SLUG_PATTERN
from .router.utils import parse_target
from .structured_logging import setup_logging


def parse_route_arg(value: str) -> tuple[str, tuple[str, int]]:
    """Parse NAME=TARGET from --route"""
    name, sep, target = value.partition("=")
    name = name.strip()
    if not sep or not SLUG_PATTERN.match(name):
        raise argparse.ArgumentTypeError(f"invalid route '{value}': expected NAME=TARGET with a lowercase slug name")
    parsed = parse_target(target)
    if parsed is None:
        raise argparse.ArgumentTypeError(f"invalid target in '{value}': use PORT, HOST:PORT or http://HOST:PORT")
    return name, parsed


async def serve(port: int | None, routes: dict[str, tuple[str, int]], log_requests: bool = False) -> bool:
    """Run the proxy until SIGINT/SIGTERM"""
    engine = ProxyEngine(log_requests=log_requests)
    engine.on_event(print_event)

    result = await engine.start(port)
    if not result.ok:
        print_error(result.error or "Failed to start proxy")
        return False

    for name, (host, target_port) in routes.items():
        try:
            await engine.add_route(name, target_port, target_host=host)
        except ProxyError as exc:
            print_error(str(exc))

    print_success(f"Proxy listening on http://127.0.0.1:{result.port} (dashboard: http://localhost:{result.port})")
    if routes:
        print_routes(engine.get_routes())

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops; Ctrl+C cancels asyncio.run instead
            pass

    try:
        await stop_event.wait()
    finally:
        print_info("Stopping proxy...")
        await engine.stop()
    return True


def cmd_serve(args) -> bool:
    try:
        config = ProxyConfig.load(args.config)
    except (OSError, ValueError) as e:
        print_error(f"Failed to load config: {e}")
        return False

    if args.port:
        config.config["port"] = args.port
    if args.log_requests:
        config.config["log_requests"] = True

    is_valid, errors = config.validate()
    if not is_valid:
        print_error("Config validation failed:")
        for error in errors:
            print_error(f"  - {error}")
        return False

    setup_logging(level=config.log_level, log_file=config.log_file, log_format=config.log_format)

    routes = config.routes
    for name, target in args.route or []:
        routes[name] = target

    return asyncio.run(serve(config.port, routes, config.log_requests))


def cmd_ports(args) -> bool:
    """Show which listening port the proxy would pick"""
    allocator = PortAllocator()
    for port in build_candidates(args.port):
        free = allocator.is_free(port)
        console.print(status_icon("ok" if free else "error"), f"{port}", "free" if free else "busy")
    print_info(f"Selected port: {allocator.pick(build_candidates(args.port))}")
    return True


def cmd_slug(args) -> bool:
    console.print(to_slug(args.task_id))
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devproxy",
        description="devproxy - local subdomain reverse proxy (http://<name>.localhost:<port>)",
    )
    parser.add_argument("--version", action="version", version=f"devproxy {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    serve_parser = subparsers.add_parser("serve", help="Run the proxy in the foreground")
    serve_parser.add_argument("--port", type=int, help="Preferred listening port")
    serve_parser.add_argument("--config", help="Path to devproxy.yml")
    serve_parser.add_argument(
        "--route",
        action="append",
        type=parse_route_arg,
        metavar="NAME=TARGET",
        help="Register a route at startup (repeatable); TARGET is PORT, HOST:PORT or http://HOST:PORT",
    )
    serve_parser.add_argument("--log-requests", action="store_true", help="Log one line per proxied request")

    ports_parser = subparsers.add_parser("ports", help="Show candidate listening ports")
    ports_parser.add_argument("--port", type=int, help="Preferred listening port")

    slug_parser = subparsers.add_parser("slug", help="Show the route name derived from a task id")
    slug_parser.add_argument("task_id", help="Task identifier")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "serve":
            success = cmd_serve(args)
        elif args.command == "ports":
            success = cmd_ports(args)
        elif args.command == "slug":
            success = cmd_slug(args)
        else:
            parser.print_help()
            return 1

        return 0 if success else 1

    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
