"""Routing file: which Linear teams issues may be filed against."""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class RoutingFile(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    teams: tuple[str, ...] = Field(default_factory=tuple)
    prefix: Optional[str] = None
    default_team: Optional[str] = None

    @field_validator("teams", mode="before")
    @classmethod
    def _validate_teams(cls, value: Any) -> Any:
        if value is None:
            return ()
        if not isinstance(value, list) or not all(isinstance(team, str) for team in value):
            raise ValueError("teams must be an array of strings")
        return tuple(value)

    @field_validator("prefix", "default_team", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if not isinstance(value, str) or not value.strip():
            return None
        return value.strip()


def load_routing_file(path: Path, explicit: bool = False) -> Optional[RoutingFile]:
    """Load the YAML routing file.

    A missing file is only an error when the path was given explicitly.
    Files without a ``teams`` key are ignored.
    """
    path = path.expanduser()
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        if explicit:
            raise FileNotFoundError(f"Config file not found: {path}") from None
        return None

    payload = yaml.safe_load(raw)
    if not isinstance(payload, dict) or "teams" not in payload:
        return None

    routing = RoutingFile.model_validate(payload)
    logger.info("Loaded routing file %s (%d teams)", path, len(routing.teams))
    return routing
