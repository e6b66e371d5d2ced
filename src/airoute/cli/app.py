"""
Main Typer application for the airoute CLI.

Diagnostic commands for inspecting configured providers and running
one-off operations through the dispatch chain.
"""

import asyncio
from collections.abc import Coroutine
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.markup import escape

from airoute import __version__
from airoute.cli.output import (
    console,
    format_health,
    format_latency,
    print_dispatch_failure,
    print_dispatch_footer,
    print_error,
    print_info,
    print_table,
    print_warning,
    provider_row,
)
from airoute.config import ConfigurationError, load_config
from airoute.providers import (
    AllProvidersFailedError,
    ProviderManager,
    get_provider_manager,
)

app = typer.Typer(
    name="airoute",
    help="Route AI operations across providers with retries and fallback.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
)

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Config file (default: ~/.airoute/config.yaml)."),
]
ProfileOption = Annotated[
    str | None,
    typer.Option("--profile", "-p", help="Use a single profile instead of the chain."),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        print_info(f"airoute version [green]{__version__}[/green]")
        raise typer.Exit()


# noinspection PyUnusedLocal
@app.callback()
def main_callback(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    [bold blue]airoute[/bold blue] - provider dispatch for AI operations
    """


def _get_manager(config_path: Path | None) -> ProviderManager:
    try:
        if config_path is not None:
            return ProviderManager(load_config(config_path))
        return get_provider_manager()
    except (ConfigurationError, ValueError) as e:
        print_error(f"Failed to initialize provider manager: {e}")
        raise typer.Exit(1)


def _run(call: Coroutine[Any, Any, Any]) -> Any:
    """Run one dispatch, exiting with status 1 on failure."""
    try:
        return asyncio.run(call)
    except AllProvidersFailedError as e:
        print_dispatch_failure(e)
        raise typer.Exit(1)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command()
def providers(config_path: ConfigOption = None) -> None:
    """List configured providers and their capabilities."""
    manager = _get_manager(config_path)

    rows = [provider_row(name, handle) for name, handle in manager.list_providers()]
    print_table(["Profile", "Provider", "Available", "Capabilities"], rows, title="Providers")
    console.print(f"\n[dim]Chain:[/dim] {escape(manager.composite().describe())}")


@app.command()
def generate(
    prompt: Annotated[str, typer.Argument(help="Prompt to send.")],
    profile: ProfileOption = None,
    config_path: ConfigOption = None,
) -> None:
    """Generate text through the dispatch chain."""
    manager = _get_manager(config_path)
    result = _run(manager.generate(prompt, profile=profile))

    console.print(result.value.content, markup=False)
    console.print()
    print_dispatch_footer(result, result.value.model)


@app.command()
def classify(
    text: Annotated[str, typer.Argument(help="Text to classify.")],
    labels: Annotated[
        list[str],
        typer.Option("--label", "-l", help="Candidate label (repeatable)."),
    ],
    profile: ProfileOption = None,
    config_path: ConfigOption = None,
) -> None:
    """Classify text into one of the given labels."""
    manager = _get_manager(config_path)
    result = _run(manager.classify(text, labels, profile=profile))

    classification = result.value
    rows = [[label, f"{score:.3f}"] for label, score in classification.scores.items()]
    title = f"{classification.label} ({classification.confidence:.2f})"
    print_table(["Label", "Score"], rows, title=title)
    print_dispatch_footer(result)


@app.command()
def health(
    profile: Annotated[str | None, typer.Argument(help="Profile to check.")] = None,
    config_path: ConfigOption = None,
) -> None:
    """Call each provider once and report its health."""
    manager = _get_manager(config_path)
    results = _run(manager.health_check(profile))

    rows = [
        [
            escape(name),
            format_health(status.status),
            format_latency(status.latency_ms),
            escape(status.error or ""),
        ]
        for name, status in results.items()
    ]
    print_table(["Profile", "Status", "Latency", "Error"], rows, title="Provider Health")

    if any(status.error for status in results.values()):
        print_warning("Some providers are not healthy")
