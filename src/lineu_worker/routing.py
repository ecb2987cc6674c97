"""Immutable view of the teams a ticket can be filed against."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping


@dataclass(frozen=True)
class Team:
    id: str
    key: str
    name: str


@dataclass(frozen=True)
class RoutingRegistry:
    """Teams keyed by their short key, built once at startup."""

    teams: Mapping[str, Team] = field(default_factory=lambda: MappingProxyType({}))
    default_team: str | None = None
    prefix: str | None = None

    @classmethod
    def from_teams(
        cls,
        teams: Iterable[Team],
        default_team: str | None = None,
        prefix: str | None = None,
    ) -> "RoutingRegistry":
        return cls(
            teams=MappingProxyType({team.key: team for team in teams}),
            default_team=default_team,
            prefix=prefix,
        )

    def __bool__(self) -> bool:
        return bool(self.teams)

    def get(self, key: str | None) -> Team | None:
        if not key:
            return None
        return self.teams.get(key)

    def format_for_prompt(self) -> str:
        return "\n".join(f"- {team.key}: {team.name}" for team in self.teams.values())
