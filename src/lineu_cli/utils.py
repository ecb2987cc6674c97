import json
import logging
from pathlib import Path
from typing import Any, Dict

import typer
from rich.console import Console

from lineu_core.config.settings import Settings

console = Console()


def setup_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=settings.log_format,
    )


def load_settings(**overrides: Any) -> Settings:
    return Settings(**{key: value for key, value in overrides.items() if value is not None})


def sqlite_url(path: str) -> str:
    if "://" in path:
        return path
    return f"sqlite+aiosqlite:///{Path(path).expanduser()}"


def read_payload(path: Path) -> Dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        console.print(f"[red]Error: could not read payload from {path}: {e}[/red]")
        raise typer.Exit(1)
    if not isinstance(payload, dict):
        console.print(f"[red]Error: payload in {path} must be a JSON object[/red]")
        raise typer.Exit(1)
    return payload
