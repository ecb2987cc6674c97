import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from lineu_cli.utils import console, load_settings, read_payload, sqlite_url
from lineu_core.fingerprint import resolve_fingerprint
from lineu_server.database import create_all_tables, create_session_maker, get_session
from lineu_server.queues import store
from lineu_server.schemas.jobs import JobStats


async def _fetch_stats(db_url: str) -> JobStats:
    engine, session_maker = create_session_maker(db_url)
    try:
        await create_all_tables(engine)
        async with get_session(session_maker, read_only=True) as session:
            return await store.get_stats(session)
    finally:
        await engine.dispose()


def show_stats(db: Optional[str] = typer.Option(None, "--db", "-d", help="Database path")) -> None:
    """Show job statistics."""
    db_url = sqlite_url(db) if db else load_settings().database_path
    stats = asyncio.run(_fetch_stats(db_url))

    table = Table(title="Job Statistics")
    table.add_column("Status", style="cyan")
    table.add_column("Count", style="green", justify="right")
    table.add_row("Total", str(stats.total))
    table.add_row("Pending", str(stats.pending))
    table.add_row("Processing", str(stats.processing))
    table.add_row("Completed", str(stats.completed))
    table.add_row("Failed", str(stats.failed))
    table.add_row("Duplicate", str(stats.duplicate))
    console.print(table)


def show_fingerprint(file: Path = typer.Argument(..., help="JSON file with payload")) -> None:
    """Print the fingerprint a payload would be deduplicated by."""
    print(resolve_fingerprint(read_payload(file)))
