"""Keeps the checkout the agent inspects up to date."""

import asyncio
import logging
from pathlib import Path

from lineu_core.config.settings import Settings

logger = logging.getLogger(__name__)

GITHUB_HTTPS = "https://github.com/"


class RepoSyncError(Exception):
    """git clone failed."""


def inject_github_token(url: str, token: str | None) -> str:
    if not token or not url.startswith(GITHUB_HTTPS):
        return url
    return url.replace(GITHUB_HTTPS, f"https://{token}@github.com/", 1)


def repo_name(url: str) -> str:
    name = url.rstrip("/").removesuffix(".git").rsplit("/", 1)[-1]
    return name.rsplit(":", 1)[-1] or "repo"


class RepoSync:
    def __init__(
        self,
        path: Path | str | None = None,
        repos_dir: Path | str = Path.home() / ".lineu" / "repos",
        github_token: str | None = None,
        git: str = "git",
    ) -> None:
        self.path = Path(path).expanduser() if path else None
        self.repos_dir = Path(repos_dir).expanduser()
        self.github_token = github_token
        self.git = git

    @classmethod
    def from_settings(cls, settings: Settings) -> "RepoSync":
        return cls(path=settings.repo_path, repos_dir=settings.repos_path, github_token=settings.github_token)

    async def _git(self, *args: str) -> tuple[int, str]:
        proc = await asyncio.create_subprocess_exec(
            self.git,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        stdout, _ = await proc.communicate()
        return proc.returncode or 0, stdout.decode("utf-8", errors="replace").strip()

    async def clone(self, url: str) -> Path:
        """Clone ``url`` under the repos directory, or pull it if it is already there."""
        target = self.repos_dir / repo_name(url)
        self.repos_dir.mkdir(parents=True, exist_ok=True)

        if (target / ".git").exists():
            logger.info(f"Repository already exists at {target}, pulling latest...")
            self.path = target
            await self.pull()
            return target

        logger.info(f"Cloning {url} to {target}...")
        try:
            code, output = await self._git("clone", inject_github_token(url, self.github_token), str(target))
        except OSError as e:
            raise RepoSyncError(f"Failed to clone: {e}") from e
        if code != 0:
            if self.github_token:
                output = output.replace(self.github_token, "***")
            raise RepoSyncError(f"git clone exited with code {code}: {output}")

        logger.info(f"Cloned successfully to {target}")
        self.path = target
        return target

    async def pull(self) -> bool:
        """Fast-forward the checkout. Failures are logged and the current state is kept."""
        if self.path is None:
            return False

        logger.info("Running git pull...")
        try:
            code, output = await self._git("-C", str(self.path), "pull", "--ff-only")
        except OSError as e:
            logger.warning(f"Git pull error, continuing with current state: {e}")
            return False
        if code != 0:
            logger.warning(f"Git pull failed, continuing with current state: {output}")
            return False

        logger.info("Git pull completed")
        return True
