import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from lineu_cli.utils import console, load_settings, read_payload, setup_logging
from lineu_core.config.settings import Settings
from lineu_core.fingerprint import resolve_fingerprint
from lineu_worker.agent.errors import AgentError
from lineu_worker.agent.process import AgentRunner
from lineu_worker.agent.schemas import Analysis
from lineu_worker.issues import IssueServiceError, LinearIssueService, RoutingError
from lineu_worker.repo import RepoSync, RepoSyncError

DEFAULT_MESSAGE = "TypeError: Cannot read property of undefined"


async def _analyze(settings: Settings, payload: Dict[str, Any]) -> None:
    repo = RepoSync.from_settings(settings)
    if settings.repo_url:
        await repo.clone(settings.repo_url)
    if repo.path is None:
        raise RepoSyncError("Either --repo or --repo-url is required")

    issues = LinearIssueService.from_settings(settings)
    try:
        routing = await issues.load_configured_routing(settings)

        console.print("\n[cyan]Running analysis...[/cyan]\n")
        runner = AgentRunner.from_settings(settings)
        raw = await runner.analyze(repo.path, payload, routing=routing)
        console.print("\n[bold]Analysis:[/bold]")
        console.print_json(data=raw)

        if settings.dry_run:
            console.print("\n(Dry run - Linear issue not created)")
            return

        analysis = Analysis.model_validate(raw)
        team = issues.resolve_destination(analysis.suggested_team)
        if team is None:
            raise RoutingError(f"Invalid team suggestion: {analysis.suggested_team}")

        console.print(f"\nCreating Linear issue in team {team.key}...")
        ticket = await issues.create_ticket(team, payload, analysis, resolve_fingerprint(payload))
        console.print(f"[green]Created: {ticket.identifier} - {ticket.url}[/green]")
    finally:
        await issues.aclose()


def run_test(
    repo: Optional[Path] = typer.Option(None, "--repo", "-r", help="Path to local repository"),
    repo_url: Optional[str] = typer.Option(None, "--repo-url", "-u", help="Git URL to clone"),
    message: str = typer.Option(DEFAULT_MESSAGE, "--message", "-m", help="Error message"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="JSON file with payload"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Routing file (default: ~/.lineu/config.yml)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Don't create a Linear issue"),
) -> None:
    """Analyze a sample error once, outside the queue."""
    settings = load_settings(
        repo_path=str(repo) if repo else None,
        repo_url=repo_url,
        config_file=str(config) if config else None,
        dry_run=dry_run or None,
    )
    setup_logging(settings)

    if file is not None:
        payload = read_payload(file)
    else:
        payload = {"message": message, "timestamp": datetime.now(timezone.utc).isoformat()}

    console.print("[bold]Payload:[/bold]")
    console.print_json(json.dumps(payload, default=str))
    console.print(f"\n[bold]Fingerprint:[/bold] {resolve_fingerprint(payload)}")

    try:
        asyncio.run(_analyze(settings, payload))
    except (AgentError, IssueServiceError, RoutingError, RepoSyncError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
