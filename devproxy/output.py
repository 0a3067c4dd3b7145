"""
Rich-powered console output for the devproxy CLI.
"""

import sys

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .models import ProxyEvent, Route

console = Console(force_terminal=None, legacy_windows=True)

# ASCII-safe icons when not attached to a TTY
_USE_ASCII = not sys.stdout.isatty()

STATUS_STYLES = {
    "ok": ("+" if _USE_ASCII else "✓", "green"),
    "error": ("x" if _USE_ASCII else "✗", "red"),
    "running": ("+" if _USE_ASCII else "●", "green"),
    "starting": ("~" if _USE_ASCII else "◐", "yellow"),
    "stopped": ("-" if _USE_ASCII else "○", "dim"),
}

EVENT_STYLES = {
    "started": "green",
    "stopped": "dim",
    "route:added": "cyan",
    "route:removed": "yellow",
    "route:status": "blue",
    "error": "red",
}


def print_success(message: str):
    icon = "+" if _USE_ASCII else "✓"
    console.print(f"[green]{icon}[/green] {message}")


def print_error(message: str):
    icon = "x" if _USE_ASCII else "✗"
    console.print(f"[red]{icon}[/red] {message}", style="red")


def print_info(message: str):
    icon = "i" if _USE_ASCII else "ℹ"
    console.print(f"[blue]{icon}[/blue] {message}")


def status_icon(status: str) -> Text:
    icon, style = STATUS_STYLES.get(status, ("?", "dim"))
    return Text(icon, style=style)


def routes_table(routes: list[Route]) -> Table:
    """Table of registered routes"""
    table = Table(title="Routes", show_header=True, header_style="bold cyan")

    table.add_column("Name", style="bold")
    table.add_column("URL", style="cyan")
    table.add_column("Upstream", style="dim")
    table.add_column("Status", justify="center")

    for route in routes:
        status = Text.assemble(status_icon(route.status.value), " ", route.status.value)
        table.add_row(route.name, route.url, route.target, status)

    return table


def format_event(event: ProxyEvent) -> Text:
    """One console line for a lifecycle event"""
    text = Text()
    text.append(f"{event.timestamp} ", style="dim")
    text.append(f"{event.type:<14}", style=f"bold {EVENT_STYLES.get(event.type, 'white')}")
    if event.route is not None:
        text.append(f" {event.route.name}", style="bold")
        text.append(f" -> {event.route.target} [{event.route.status.value}]")
    if event.error:
        text.append(f" {event.error}", style="red")
    return text


def print_routes(routes: list[Route]):
    console.print(routes_table(routes))


def print_event(event: ProxyEvent):
    console.print(format_event(event))
