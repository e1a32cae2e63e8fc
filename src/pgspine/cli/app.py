"""
Root Typer application for the pgspine CLI.

Commands:
    serve          run the HTTP exporter under uvicorn
    collectors     list registered collectors and whether they are enabled
    check-queries  validate custom query files without starting the server
    version        print the version
"""

from __future__ import annotations

from pathlib import Path

import typer

from pgspine import __version__
from pgspine.cli.utils import console, err_console, fail, print_table
from pgspine.collectors.defaults import create_default_registry
from pgspine.core.errors import ConfigError
from pgspine.core.logging import configure_logging
from pgspine.core.settings import ExporterSettings, get_settings
from pgspine.mapping.user_queries import QueryLibrary

app = typer.Typer(
    name="pgspine",
    help="pgspine: PostgreSQL metrics exporter.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"pgspine {__version__}")
        raise typer.Exit()


@app.callback()
def root(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """pgspine CLI: serve metrics, inspect collectors, validate query files."""


def _load_settings() -> ExporterSettings:
    try:
        return get_settings()
    except ValueError as exc:
        # pydantic ValidationError is a ValueError
        err_console.print(f"[bold red]Error[/bold red] (CONFIG): invalid settings: {exc}")
        raise typer.Exit(code=1) from exc


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address (default: settings)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port (default: settings)"),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level (default: settings)"),
) -> None:
    """Start the exporter HTTP server."""
    import uvicorn

    from pgspine.api.app import create_app

    settings = _load_settings()
    level = log_level or settings.log_level
    configure_logging(level=level, json_format=settings.log_json)

    try:
        application = create_app(settings=settings)
    except ConfigError as exc:
        raise fail(exc) from exc

    bind_host, bind_port = host or settings.host, port or settings.port
    console.print(f"[bold green]Starting pgspine[/bold green] on {bind_host}:{bind_port}")
    uvicorn.run(application, host=bind_host, port=bind_port, log_level=level.lower())


@app.command("collectors")
def collectors(
    as_json: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """List registered collectors."""
    settings = _load_settings()
    try:
        registry = create_default_registry(settings, QueryLibrary(include_builtin=False))
    except ConfigError as exc:
        raise fail(exc) from exc

    rows = [
        {"name": r.name, "default": r.default_enabled, "enabled": r.enabled, "overridden": r.explicitly_set}
        for r in registry.registrations()
    ]
    print_table(rows, title="Collectors", as_json=as_json)


@app.command("check-queries")
def check_queries(
    paths: list[Path] = typer.Argument(None, help="Query files (default: configured files)"),
    no_builtin: bool = typer.Option(False, "--no-builtin", help="Do not merge the built-in namespaces"),
) -> None:
    """Validate custom query files and list the resulting namespaces."""
    settings = _load_settings()
    files = list(paths) if paths else settings.query_file_paths()
    library = QueryLibrary(files, include_builtin=not (no_builtin or settings.disable_default_metrics))
    try:
        query_set = library.load()
    except ConfigError as exc:
        raise fail(exc) from exc

    rows = [
        {
            "namespace": namespace,
            "columns": len(definition.column_mappings),
            "master": definition.master,
            "cache_seconds": definition.cache_seconds,
            "overrides": len(query_set.overrides.get(namespace, [])),
        }
        for namespace, definition in sorted(query_set.definitions.items())
    ]
    print_table(rows, title=f"{len(files)} file(s) OK")


@app.command("version")
def version() -> None:
    """Print the version."""
    typer.echo(f"pgspine {__version__}")


def main() -> None:
    app()
