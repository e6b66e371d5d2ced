"""
Output formatting utilities for the CLI.

Rendering for provider tables, dispatch results and aggregate failures.
"""

from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from airoute.providers.capabilities import ProviderHandle
from airoute.providers.exceptions import AllProvidersFailedError
from airoute.providers.models import DispatchResult, HealthStatus

# Global console instance
console = Console()

HEALTH_STYLES = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.DEGRADED: "yellow",
    HealthStatus.UNHEALTHY: "red",
    HealthStatus.UNKNOWN: "dim",
}


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str) -> None:
    console.print(f"[blue]i[/blue] {message}")


def print_table(
    headers: list[str],
    rows: list[list[Any]],
    title: str | None = None,
) -> None:
    """Print rows under the given headers, one column per header."""
    table = Table(title=title)
    for header in headers:
        table.add_column(header)
    for row in rows:
        table.add_row(*[str(cell) for cell in row])
    console.print(table)


def provider_row(name: str, handle: ProviderHandle) -> list[str]:
    """Table row for one configured profile: name, id, availability, capabilities."""
    capabilities = ", ".join(sorted(op.value for op in handle.capabilities)) or "-"
    available = "[green]yes[/green]" if handle.is_available() else "[red]no[/red]"
    return [escape(name), escape(handle.provider_id), available, capabilities]


def format_health(status: HealthStatus) -> str:
    """Colorize a health status for display."""
    style = HEALTH_STYLES.get(status, "dim")
    return f"[{style}]{status.value}[/{style}]"


def format_latency(latency_ms: float | None) -> str:
    return f"{latency_ms:.0f}ms" if latency_ms is not None else "-"


def print_dispatch_footer(result: DispatchResult, model: str | None = None) -> None:
    """Print which provider answered and how many attempts it took."""
    footer = f"provider={result.provider_id} attempts={result.attempt_count}"
    if model:
        footer += f" model={model}"
    console.print(f"[dim]{escape(footer)}[/dim]")


def print_dispatch_failure(error: AllProvidersFailedError) -> None:
    """Print the aggregate failure and each provider's normalized error."""
    print_error(str(error))
    for provider_id, failure in error.errors:
        console.print(f"  [dim]{escape(provider_id)}:[/dim] {escape(str(failure))}")
