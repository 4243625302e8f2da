"""
CLI for the download cache.

Commands:
    dlcache get URL - Serve a URL from the cache, fetching it if needed
    dlcache key URL - Show the cache key and blob path for a URL
    dlcache config - Show current configuration
    dlcache version - Print version
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from dlcache import __version__
from dlcache.cache.keys import derive_cache_key, identifier_from_key
from dlcache.config import Settings, clear_settings_cache, get_settings
from dlcache.exceptions import ConfigurationError, FetchError, InvalidArgumentError
from dlcache.logging import setup_logging
from dlcache.service import DownloadCache

app = typer.Typer(
    name="dlcache",
    help="Download Cache - single-flight, disk-backed cache for web pages",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except Exception:
        return None


async def _fetch(settings: Settings, url: str, invalidate: bool) -> bytes:
    async with DownloadCache.from_settings(settings) as cache:
        return await cache.get(url, invalidate=invalidate)


@app.command()
def get(
    url: Annotated[str, typer.Argument(help="URL to serve")],
    invalidate: Annotated[
        bool,
        typer.Option("--invalidate", "-i", help="Ignore the cached copy and refetch"),
    ] = False,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write content to this file instead of stdout"),
    ] = None,
) -> None:
    """Serve a URL from the cache, fetching and caching it on a miss."""
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'dlcache config' to see what's wrong."
        )
        raise typer.Exit(1)

    setup_logging(settings.LOG_LEVEL, log_file=settings.LOG_FILE)

    try:
        content = asyncio.run(_fetch(settings, url, invalidate))
    except (ConfigurationError, InvalidArgumentError, FetchError) as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(content)
        error_console.print(f"[dim]Wrote {len(content)} bytes to[/dim] {output}")
    else:
        typer.echo(content, nl=False)


@app.command()
def key(
    url: Annotated[str, typer.Argument(help="URL to derive a cache key for")],
) -> None:
    """Show the cache key, its decoded identifier and blob path for a URL."""
    settings = _get_settings_safe()
    cache_key = derive_cache_key(url)

    console.print(f"[bold]Key:[/bold] {escape(cache_key)}", highlight=False, soft_wrap=True)
    # Keys are reversible; show the decoded form so escaping can be checked
    console.print(
        f"[bold]Identifier:[/bold] {escape(identifier_from_key(cache_key))}",
        highlight=False,
        soft_wrap=True,
    )
    if settings is not None:
        path = settings.CACHE_DIR / cache_key
        state = "cached" if path.is_file() else "not cached"
        console.print(f"[bold]Path:[/bold] {escape(str(path))} [dim]({state})[/dim]", highlight=False, soft_wrap=True)


@app.command()
def config() -> None:
    """Show current configuration.

    Displays all configuration values with secrets redacted.
    """
    console.print()
    console.print("[bold]Download Cache Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()

    if settings is None:
        error_console.print(
            "[red]Configuration is invalid or incomplete.[/red]"
        )
        error_console.print()
        error_console.print("Check these environment variables:")
        error_console.print("  - FETCH_TIMEOUT_SECONDS (must be > 0)")
        error_console.print("  - FETCH_BACKEND (http or browser)")
        error_console.print("  - BROWSER_ENDPOINT (required when FETCH_BACKEND=browser)")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for name, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(name, display_value)

    console.print(table)
    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"dlcache version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
