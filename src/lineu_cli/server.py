from pathlib import Path
from typing import Optional

import typer

from lineu_cli.utils import console, load_settings


def serve(
    repo: Optional[Path] = typer.Option(None, "--repo", "-r", help="Path to local repository"),
    repo_url: Optional[str] = typer.Option(None, "--repo-url", "-u", help="Git URL to clone"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Routing file (default: ~/.lineu/config.yml)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Process jobs but do not create Linear issues"),
) -> None:
    """Start the webhook server and the worker."""
    from lineu_server.main import serve as run_server

    settings = load_settings(
        repo_path=str(repo) if repo else None,
        repo_url=repo_url,
        port=port,
        config_file=str(config) if config else None,
        dry_run=dry_run or None,
    )
    if not settings.repo_path and not settings.repo_url:
        console.print("[red]Error: Either --repo or --repo-url is required[/red]")
        raise typer.Exit(1)

    mode = " [yellow](dry-run, no Linear issues created)[/yellow]" if settings.dry_run else ""
    console.print(f"[green]lineu listening on port {settings.port}[/green]{mode}")
    run_server(settings)
