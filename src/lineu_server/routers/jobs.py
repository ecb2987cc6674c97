import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from lineu_core.config.settings import Settings
from lineu_server.dependencies import get_readonly_db_session, get_settings
from lineu_server.queues import store
from lineu_server.schemas.jobs import JobDetail, JobStats, TimelineEntry
from lineu_worker.agent.session import read_session_log

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1", tags=["jobs"])
stats_router = APIRouter(tags=["stats"])


@stats_router.get("/stats")
async def get_stats(session: AsyncSession = Depends(get_readonly_db_session)) -> JobStats:
    return await store.get_stats(session)


@router.get("/jobs")
async def list_jobs(
    limit: int = Query(100, ge=1, le=1000, description="Max number of jobs to return"),
    session: AsyncSession = Depends(get_readonly_db_session),
) -> Dict[str, Any]:
    """List the most recent jobs."""
    jobs = await store.get_recent_jobs(session, limit=limit)
    return {
        "object": "list",
        "data": [job.model_dump() for job in jobs],
        "has_more": len(jobs) == limit,
    }


@router.get("/jobs/timeline")
async def job_timeline(
    hours: int = Query(24, ge=1, le=24 * 30, description="Trailing window in hours"),
    session: AsyncSession = Depends(get_readonly_db_session),
) -> list[TimelineEntry]:
    return await store.get_timeline(session, hours=hours)


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: int,
    settings: Settings = Depends(get_settings),
    session: AsyncSession = Depends(get_readonly_db_session),
) -> JobDetail:
    """Get a job with its analysis and structured session log."""
    job = await store.get_job(session, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")

    return JobDetail(
        id=job.id,
        payload=job.payload,
        fingerprint=job.fingerprint,
        status=job.status,
        error=job.error,
        analysis=job.analysis,
        ticket_id=job.ticket_id,
        ticket_identifier=job.ticket_identifier,
        ticket_url=job.ticket_url,
        duplicate_of=job.duplicate_of,
        created_at=job.created_at,
        started_at=job.started_at,
        processed_at=job.processed_at,
        session_log=await read_session_log(settings.log_path, str(job.id)),
    )
