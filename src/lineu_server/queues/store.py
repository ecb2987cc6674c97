import logging
import time
from typing import Any, Dict

from sqlalchemy import case, func, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from lineu_server.entities.jobs import Job, ResolvedFingerprint
from lineu_server.schemas.jobs import (
    ACTIVE_STATUSES,
    ClaimedJob,
    EnqueueResult,
    JobStats,
    JobStatus,
    JobSummary,
    ResolvedTicket,
    TicketRef,
    TimelineEntry,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400
DEFAULT_WINDOW_DAYS = 7


class JobStateError(Exception):
    """Raised when a transition is requested for a job that is not in the expected state."""


def _now() -> int:
    return int(time.time())


def _cutoff(window_days: int, now: int) -> int:
    return now - window_days * SECONDS_PER_DAY


async def find_resolved(
    session: AsyncSession,
    fingerprint: str,
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> ResolvedTicket | None:
    stmt = (
        select(ResolvedFingerprint)
        .where(col(ResolvedFingerprint.hash) == fingerprint)
        .where(col(ResolvedFingerprint.created_at) > _cutoff(window_days, _now()))
        .limit(1)
    )
    result = await session.execute(stmt)
    entry = result.scalar_one_or_none()
    if entry is None:
        return None
    return ResolvedTicket(
        fingerprint=entry.hash,
        ticket_id=entry.ticket_id,
        ticket_identifier=entry.ticket_identifier,
        created_at=entry.created_at,
    )


async def enqueue_if_not_duplicate(
    session: AsyncSession,
    payload: Dict[str, Any],
    fingerprint: str,
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> EnqueueResult:
    """Insert a job for ``payload`` unless the fingerprint is already resolved or in flight.

    Must run inside a single write transaction so concurrent deliveries of the same
    payload collapse into one pending job.
    """
    now = _now()

    resolved = await find_resolved(session, fingerprint, window_days)
    if resolved is not None:
        job = Job(
            payload=payload,
            fingerprint=fingerprint,
            status=JobStatus.DUPLICATE.value,
            ticket_id=resolved.ticket_id,
            ticket_identifier=resolved.ticket_identifier,
            created_at=now,
            processed_at=now,
        )
        session.add(job)
        await session.flush()
        logger.info(f"[Job {job.id}] Duplicate of resolved ticket {resolved.ticket_identifier}")
        return EnqueueResult(
            job_id=job.id,
            status=JobStatus.DUPLICATE,
            fingerprint=fingerprint,
            existing_ticket=resolved.ticket_identifier,
        )

    in_flight_stmt = (
        select(col(Job.id))
        .where(col(Job.fingerprint) == fingerprint)
        .where(col(Job.status).in_(ACTIVE_STATUSES))
        .where(col(Job.created_at) > _cutoff(window_days, now))
        .order_by(col(Job.created_at), col(Job.id))
        .limit(1)
    )
    in_flight_id = (await session.execute(in_flight_stmt)).scalar_one_or_none()
    if in_flight_id is not None:
        job = Job(
            payload=payload,
            fingerprint=fingerprint,
            status=JobStatus.DUPLICATE.value,
            duplicate_of=in_flight_id,
            created_at=now,
            processed_at=now,
        )
        session.add(job)
        await session.flush()
        logger.info(f"[Job {job.id}] Duplicate of in-flight job {in_flight_id}")
        return EnqueueResult(
            job_id=job.id,
            status=JobStatus.DUPLICATE,
            fingerprint=fingerprint,
            existing_job_id=in_flight_id,
        )

    job = Job(payload=payload, fingerprint=fingerprint, status=JobStatus.PENDING.value, created_at=now)
    session.add(job)
    await session.flush()
    logger.info(f"[Job {job.id}] Queued with fingerprint {fingerprint}")
    return EnqueueResult(job_id=job.id, status=JobStatus.PENDING, fingerprint=fingerprint)


async def claim_next(session: AsyncSession) -> ClaimedJob | None:
    """Flip the oldest pending job to processing in one statement."""
    oldest = (
        select(col(Job.id))
        .where(col(Job.status) == JobStatus.PENDING.value)
        .order_by(col(Job.created_at), col(Job.id))
        .limit(1)
        .scalar_subquery()
    )
    stmt = (
        update(Job)
        .where(col(Job.id) == oldest)
        .where(col(Job.status) == JobStatus.PENDING.value)
        .values(status=JobStatus.PROCESSING.value, started_at=_now())
        .returning(col(Job.id), col(Job.payload), col(Job.fingerprint), col(Job.created_at), col(Job.started_at))
        .execution_options(synchronize_session=False)
    )
    row = (await session.execute(stmt)).one_or_none()
    if row is None:
        return None
    return ClaimedJob(
        id=row.id,
        payload=row.payload,
        fingerprint=row.fingerprint,
        created_at=row.created_at,
        started_at=row.started_at,
    )


async def _transition(session: AsyncSession, job_id: int, allowed: tuple[str, ...], **values: Any) -> bool:
    stmt = (
        update(Job)
        .where(col(Job.id) == job_id)
        .where(col(Job.status).in_(allowed))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def complete_with_fingerprint(
    session: AsyncSession,
    job_id: int,
    fingerprint: str,
    ticket: TicketRef,
    analysis: Dict[str, Any],
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> None:
    """Record the ledger entry and complete the job in the caller's transaction.

    A ledger row still inside the window is left untouched; an expired one is refreshed
    so the fingerprint is suppressed again for a full window.
    """
    now = _now()
    ledger_stmt = sqlite_insert(ResolvedFingerprint).values(
        hash=fingerprint,
        ticket_id=ticket.id,
        ticket_identifier=ticket.identifier,
        created_at=now,
    )
    ledger_stmt = ledger_stmt.on_conflict_do_update(
        index_elements=["hash"],
        set_={
            "ticket_id": ledger_stmt.excluded.ticket_id,
            "ticket_identifier": ledger_stmt.excluded.ticket_identifier,
            "created_at": ledger_stmt.excluded.created_at,
        },
        where=col(ResolvedFingerprint.created_at) <= _cutoff(window_days, now),
    )
    await session.execute(ledger_stmt)

    completed = await _transition(
        session,
        job_id,
        (JobStatus.PROCESSING.value,),
        status=JobStatus.COMPLETED.value,
        ticket_id=ticket.id,
        ticket_identifier=ticket.identifier,
        ticket_url=ticket.url,
        analysis=analysis,
        processed_at=now,
    )
    if not completed:
        raise JobStateError(f"Job {job_id} is not processing")


async def complete_dry_run(session: AsyncSession, job_id: int, analysis: Dict[str, Any]) -> None:
    completed = await _transition(
        session,
        job_id,
        (JobStatus.PROCESSING.value,),
        status=JobStatus.COMPLETED.value,
        analysis=analysis,
        processed_at=_now(),
    )
    if not completed:
        raise JobStateError(f"Job {job_id} is not processing")


async def mark_failed(session: AsyncSession, job_id: int, error: str) -> bool:
    """Mark job as failed. The ledger is never written."""
    return await _transition(
        session,
        job_id,
        ACTIVE_STATUSES,
        status=JobStatus.FAILED.value,
        error=error,
        processed_at=_now(),
    )


async def mark_duplicate(
    session: AsyncSession,
    job_id: int,
    ticket_identifier: str,
    ticket_id: str | None = None,
) -> bool:
    return await _transition(
        session,
        job_id,
        ACTIVE_STATUSES,
        status=JobStatus.DUPLICATE.value,
        ticket_id=ticket_id,
        ticket_identifier=ticket_identifier,
        processed_at=_now(),
    )


async def fail_orphaned(session: AsyncSession, error: str) -> int:
    """Fail every job left in processing by a previous run."""
    stmt = (
        update(Job)
        .where(col(Job.status) == JobStatus.PROCESSING.value)
        .values(status=JobStatus.FAILED.value, error=error, processed_at=_now())
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount:
        logger.warning(f"Marked {result.rowcount} orphaned processing job(s) as failed")
    return result.rowcount


async def get_job(session: AsyncSession, job_id: int) -> Job | None:
    return await session.get(Job, job_id)


async def get_stats(session: AsyncSession) -> JobStats:
    stmt = select(col(Job.status), func.count()).group_by(col(Job.status))
    counts = {status: count for status, count in (await session.execute(stmt)).all()}
    return JobStats(
        pending=counts.get(JobStatus.PENDING.value, 0),
        processing=counts.get(JobStatus.PROCESSING.value, 0),
        completed=counts.get(JobStatus.COMPLETED.value, 0),
        failed=counts.get(JobStatus.FAILED.value, 0),
        duplicate=counts.get(JobStatus.DUPLICATE.value, 0),
        total=sum(counts.values()),
    )


async def get_recent_jobs(session: AsyncSession, limit: int = 100) -> list[JobSummary]:
    stmt = select(Job).order_by(col(Job.created_at).desc(), col(Job.id).desc()).limit(limit)
    jobs = (await session.execute(stmt)).scalars().all()
    summaries = []
    for job in jobs:
        analysis = job.analysis or {}
        summaries.append(
            JobSummary(
                id=job.id,
                fingerprint=job.fingerprint,
                status=job.status,
                error=job.error,
                ticket_identifier=job.ticket_identifier,
                ticket_url=job.ticket_url,
                duplicate_of=job.duplicate_of,
                created_at=job.created_at,
                started_at=job.started_at,
                processed_at=job.processed_at,
                duration_seconds=job.processed_at - job.created_at if job.processed_at is not None else None,
                category=analysis.get("category"),
                priority=analysis.get("priority"),
                summary=analysis.get("summary"),
            )
        )
    return summaries


def _count_status(status: JobStatus) -> Any:
    return func.coalesce(func.sum(case((col(Job.status) == status.value, 1), else_=0)), 0)


async def get_timeline(session: AsyncSession, hours: int = 24) -> list[TimelineEntry]:
    """Hourly job counts (UTC) for the trailing ``hours``."""
    hour = func.strftime("%Y-%m-%d %H:00", col(Job.created_at), "unixepoch").label("hour")
    stmt = (
        select(
            hour,
            func.count().label("total"),
            _count_status(JobStatus.COMPLETED).label("completed"),
            _count_status(JobStatus.FAILED).label("failed"),
            _count_status(JobStatus.DUPLICATE).label("duplicate"),
        )
        .where(col(Job.created_at) > _now() - hours * 3600)
        .group_by(hour)
        .order_by(hour)
    )
    rows = (await session.execute(stmt)).all()
    return [
        TimelineEntry(hour=row.hour, total=row.total, completed=row.completed, failed=row.failed, duplicate=row.duplicate)
        for row in rows
    ]
