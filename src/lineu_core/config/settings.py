"""Pydantic-based settings for lineu."""

from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration settings, read once at startup."""

    model_config = SettingsConfigDict(
        env_prefix="LINEU_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Service settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Data directories
    data_dir: str = Field(default="~/.lineu", description="Base data directory")
    database_url: Optional[str] = Field(default=None, description="Database URL (defaults to <data_dir>/lineu.db)")
    log_dir: Optional[str] = Field(default=None, description="Agent transcript directory (defaults to <data_dir>/logs)")
    config_file: Optional[str] = Field(default=None, description="Routing file (defaults to <data_dir>/config.yml)")

    # Repository
    repo_path: Optional[str] = Field(default=None, description="Local checkout the agent inspects")
    repo_url: Optional[str] = Field(default=None, description="Git URL cloned into <data_dir>/repos")
    github_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GITHUB_TOKEN", "LINEU_GITHUB_TOKEN"),
    )

    # Analysis agent
    agent_command: str = Field(default="claude", description="Agent executable")
    agent_max_turns: int = Field(default=10, ge=1, description="Turn cap passed to the agent")
    agent_timeout: float = Field(default=120.0, gt=0, description="Wall-clock deadline per run in seconds")
    agent_max_actions: int = Field(default=6, ge=1, description="Investigation budget stated in the task")
    agent_allowed_tools: str = Field(default="Read,Glob,Grep,LS", description="Read-only tools the agent may use")
    agent_mirror_output: bool = Field(default=True, description="Echo agent output to the console")

    # Linear
    linear_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("LINEAR_API_KEY", "LINEU_LINEAR_API_KEY"),
    )
    linear_api_url: str = Field(default="https://api.linear.app/graphql", description="Linear GraphQL endpoint")

    # Worker
    dedup_window_days: int = Field(default=7, ge=0, description="Days a resolved fingerprint suppresses repeats")
    worker_poll_interval: float = Field(default=10.0, gt=0, description="Seconds between queue drains")
    git_pull_interval: float = Field(default=300.0, gt=0, description="Seconds between repository pulls")
    fail_orphaned_on_start: bool = Field(default=True, description="Fail jobs left processing by a previous run")
    dry_run: bool = Field(default=False, description="Analyze without creating Linear issues")

    # Derived properties
    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def database_path(self) -> str:
        """SQLAlchemy URL of the job database."""
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{self.data_path / 'lineu.db'}"

    @property
    def log_path(self) -> Path:
        return Path(self.log_dir).expanduser() if self.log_dir else self.data_path / "logs"

    @property
    def config_path(self) -> Path:
        return Path(self.config_file).expanduser() if self.config_file else self.data_path / "config.yml"

    @property
    def repos_path(self) -> Path:
        return self.data_path / "repos"

    @property
    def allowed_tools(self) -> list[str]:
        return [tool.strip() for tool in self.agent_allowed_tools.split(",") if tool.strip()]

    @property
    def log_format(self) -> str:
        """Log message format."""
        return "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
