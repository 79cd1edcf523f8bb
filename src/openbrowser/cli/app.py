"""Unified CLI entry point for OpenBrowser.

Config precedence: settings.default.toml -> settings.<env>.toml -> settings.local.toml -> env vars (OPENBROWSER_* with double underscores) -> CLI flags.
"""

from __future__ import annotations

import json
from typing import Optional

import typer
from rich.console import Console

from openbrowser.cli.settings_cmd import settings_app

try:
    from importlib.metadata import version

    VERSION = version("openbrowser")
except Exception:
    VERSION = "unknown"

APP_HELP = (
    "openbrowser: headless browser automation engine. "
    "Scrape, crawl, extract and automate pages over a JSON RPC bridge. "
    "Config precedence: settings.default.toml -> settings.local.toml -> env vars (OPENBROWSER_* with __) -> CLI flags."
)

app = typer.Typer(add_completion=True, help=APP_HELP)
app.add_typer(settings_app, name="settings")

console = Console()


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context, version: bool = typer.Option(False, "--version", help="Show version and exit.")) -> None:
    """Show help when no subcommand is provided."""
    if version:
        typer.echo(f"openbrowser {VERSION}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default: engine.host)."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (default: engine.port)."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level (default: engine.log_level)."),
) -> None:
    """Run the engine RPC server in the foreground."""
    import uvicorn

    from openbrowser.api.app import create_app
    from openbrowser.logging_config import configure_logging
    from openbrowser.settings import get_settings

    settings = get_settings()
    level = (log_level or settings.engine.log_level).upper()
    configure_logging(level)

    uvicorn.run(
        create_app(),
        host=host or settings.engine.host,
        port=port or settings.engine.port,
        log_level=level.lower(),
        log_config=None,
    )


@app.command("call")
def call(
    method: str = typer.Argument(..., help="RPC method, e.g. scrape, crawl, list_profiles."),
    params: str = typer.Option("{}", "--params", help="JSON object of camelCase parameters."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Engine port (default: engine.port)."),
    retries: Optional[int] = typer.Option(None, "--retries", help="Attempts before giving up."),
    keep_engine: bool = typer.Option(False, "--keep-engine", help="Leave a spawned engine running after the call."),
) -> None:
    """Send one RPC call through the supervisor, starting the engine if needed."""
    from openbrowser.exceptions import OpenBrowserError
    from openbrowser.logging_config import configure_logging
    from openbrowser.supervisor import EngineSupervisor, install_signal_handlers

    configure_logging("WARNING")

    try:
        parsed = json.loads(params)
    except json.JSONDecodeError as e:
        console.print(f"[red]✗[/red] --params is not valid JSON: {e}")
        raise typer.Exit(code=2)
    if not isinstance(parsed, dict):
        console.print("[red]✗[/red] --params must be a JSON object")
        raise typer.Exit(code=2)

    supervisor = EngineSupervisor(port=port)
    if not keep_engine:
        install_signal_handlers(supervisor)
    try:
        data = supervisor.call(method, parsed, retries=retries)
    except OpenBrowserError as e:
        console.print(f"[red]✗[/red] {method} failed ({e.code.value}): {e}")
        raise typer.Exit(code=1)
    finally:
        if keep_engine:
            supervisor.detach()
        else:
            supervisor.close()

    console.print_json(json.dumps(data, default=str))


if __name__ == "__main__":
    app()
