"""Single-concurrency queue drain driven by APScheduler."""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lineu_core.config.settings import Settings
from lineu_server.database import get_session
from lineu_server.queues import store
from lineu_server.schemas.jobs import ClaimedJob, TicketRef
from lineu_worker.agent.schemas import Analysis
from lineu_worker.issues import RoutingError
from lineu_worker.repo import RepoSync
from lineu_worker.routing import RoutingRegistry, Team

logger = logging.getLogger(__name__)

ORPHANED_ERROR = "Interrupted: worker restarted while the job was processing"
# Longer than the agent terminate grace period
SHUTDOWN_TIMEOUT = 15.0


class Runner(Protocol):
    async def analyze(
        self,
        repo_path: Path | str,
        payload: Dict[str, Any],
        job_id: int | None = None,
        routing: RoutingRegistry | None = None,
    ) -> Dict[str, Any]: ...

    def cancel_active(self) -> bool: ...


class IssueService(Protocol):
    routing: RoutingRegistry

    def resolve_destination(self, key: str | None) -> Team | None: ...

    async def create_ticket(
        self, team: Team, payload: Dict[str, Any], analysis: Analysis, fingerprint: str
    ) -> TicketRef: ...


class Worker:
    """Claims jobs one at a time and carries each to a terminal state."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        runner: Runner,
        issues: IssueService | None,
        repo: RepoSync,
        window_days: int = store.DEFAULT_WINDOW_DAYS,
        poll_interval: float = 10.0,
        git_pull_interval: float = 300.0,
        dry_run: bool = False,
    ) -> None:
        if issues is None and not dry_run:
            raise ValueError("An issue service is required unless running in dry-run mode")
        self.session_maker = session_maker
        self.runner = runner
        self.issues = issues
        self.repo = repo
        self.window_days = window_days
        self.poll_interval = poll_interval
        self.git_pull_interval = git_pull_interval
        self.dry_run = dry_run
        self._stopping = False
        self._draining: asyncio.Task[Any] | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_maker: async_sessionmaker[AsyncSession],
        runner: Runner,
        issues: IssueService | None,
        repo: RepoSync,
    ) -> "Worker":
        return cls(
            session_maker,
            runner,
            issues,
            repo,
            window_days=settings.dedup_window_days,
            poll_interval=settings.worker_poll_interval,
            git_pull_interval=settings.git_pull_interval,
            dry_run=settings.dry_run,
        )

    @property
    def routing(self) -> RoutingRegistry | None:
        return self.issues.routing if self.issues is not None else None

    def start(self, scheduler: AsyncIOScheduler) -> None:
        """Register the drain and the repository pull on ``scheduler``."""
        scheduler.add_job(
            self.drain,
            "interval",
            seconds=self.poll_interval,
            id="drain",
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(),
        )
        if self.repo.path is not None:
            scheduler.add_job(
                self.repo.pull,
                "interval",
                seconds=self.git_pull_interval,
                id="git-pull",
                max_instances=1,
                coalesce=True,
                next_run_time=datetime.now(),
            )
        mode = " (dry-run)" if self.dry_run else ""
        logger.info(f"Worker ready{mode} - polling every {self.poll_interval:g}s")

    def stop(self) -> None:
        """Stop claiming jobs and cancel the running analysis."""
        self._stopping = True
        if self.runner.cancel_active():
            logger.info("Cancelled the running analysis")

    async def shutdown(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        """Stop, then wait for the in-flight job to reach a terminal state."""
        self.stop()
        task = self._draining
        if task is None or task.done():
            return
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            logger.warning(f"Drain still running after {timeout:g}s, its job is left for fail_orphaned")

    async def fail_orphaned(self) -> int:
        async with get_session(self.session_maker) as session:
            return await store.fail_orphaned(session, ORPHANED_ERROR)

    async def drain(self) -> int:
        """Process pending jobs until the queue is empty or the worker stops."""
        self._draining = asyncio.current_task()
        processed = 0
        try:
            while not self._stopping:
                async with get_session(self.session_maker) as session:
                    job = await store.claim_next(session)
                if job is None:
                    break
                await self.process(job)
                processed += 1
        finally:
            self._draining = None
        return processed

    async def process(self, job: ClaimedJob) -> None:
        try:
            await self._process(job)
            return
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"[Job {job.id}] Failed: {error}")

        # Outside the guard: a store failure here is fatal for this drain
        async with get_session(self.session_maker) as session:
            await store.mark_failed(session, job.id, error)

    async def _process(self, job: ClaimedJob) -> None:
        async with get_session(self.session_maker, read_only=True) as session:
            resolved = await store.find_resolved(session, job.fingerprint, self.window_days)

        if resolved is not None:
            logger.info(f"[Job {job.id}] Duplicate -> {resolved.ticket_identifier}")
            async with get_session(self.session_maker) as session:
                await store.mark_duplicate(
                    session, job.id, resolved.ticket_identifier, ticket_id=resolved.ticket_id
                )
            return

        if self.repo.path is None:
            raise RuntimeError("No repository checkout configured")

        logger.info(f"[Job {job.id}] Analyzing...")
        raw = await self.runner.analyze(self.repo.path, job.payload, job_id=job.id, routing=self.routing)
        analysis = Analysis.model_validate(raw)

        if self.dry_run or self.issues is None:
            async with get_session(self.session_maker) as session:
                await store.complete_dry_run(session, job.id, raw)
            logger.info(f"[Job {job.id}] Completed (dry-run): [{analysis.category}] {analysis.summary}")
            return

        team = self.issues.resolve_destination(analysis.suggested_team)
        if team is None:
            raise RoutingError(f"Invalid team suggestion: {analysis.suggested_team}")

        logger.info(f"[Job {job.id}] Creating Linear issue in team {team.key}...")
        ticket = await self.issues.create_ticket(team, job.payload, analysis, job.fingerprint)

        async with get_session(self.session_maker) as session:
            await store.complete_with_fingerprint(
                session, job.id, job.fingerprint, ticket, raw, window_days=self.window_days
            )
        logger.info(f"[Job {job.id}] Completed -> {ticket.identifier}")
