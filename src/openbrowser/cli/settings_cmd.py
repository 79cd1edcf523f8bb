"""CLI commands for inspecting and validating OpenBrowser settings."""

from __future__ import annotations

import json

import typer
from rich.console import Console

settings_app = typer.Typer(help="Inspect and validate OpenBrowser configuration.")
console = Console()


@settings_app.command("show")
def show_settings() -> None:
    """Display the currently resolved settings."""
    from openbrowser.settings import get_settings

    settings = get_settings()
    console.print_json(json.dumps(settings.model_dump(mode="json"), indent=2, default=str))


@settings_app.command("validate")
def validate_settings() -> None:
    """Validate settings and report any issues."""
    from openbrowser.settings import get_settings

    try:
        settings = get_settings()
    except Exception as e:
        console.print(f"[red]✗[/red] Settings validation failed: {e}")
        raise typer.Exit(code=1)

    problems: list[str] = []
    if settings.captcha.strategy not in ("handoff", "solver"):
        problems.append(f"captcha.strategy must be 'handoff' or 'solver', got {settings.captcha.strategy!r}")
    if settings.captcha.strategy == "solver" and not settings.captcha.solver_url:
        problems.append("captcha.solver_url is required when captcha.strategy = 'solver'")
    if settings.stealth.rotation_strategy not in ("round_robin", "random"):
        problems.append(f"stealth.rotation_strategy must be 'round_robin' or 'random', got {settings.stealth.rotation_strategy!r}")

    if problems:
        for problem in problems:
            console.print(f"[red]✗[/red] {problem}")
        raise typer.Exit(code=1)

    console.print("[green]✓[/green] Settings are valid.")
    console.print(f"  Environment: {settings.env}")
    console.print(f"  Engine: {settings.engine.host}:{settings.engine.port}")
    console.print(f"  CAPTCHA strategy: {settings.captcha.strategy}")
    console.print(f"  Profile dir: {settings.profiles.storage_dir}")
