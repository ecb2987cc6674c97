import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from lineu_core.config.settings import Settings
from lineu_core.fingerprint import resolve_fingerprint
from lineu_server.dependencies import get_db_session, get_settings
from lineu_server.queues import store
from lineu_server.schemas.jobs import JobStatus

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhook"])


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    session: AsyncSession = Depends(get_db_session),
) -> JSONResponse:
    """Accept any JSON object and queue it for analysis unless it is a repeat."""
    try:
        payload: Any = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Empty or invalid JSON payload")

    if not isinstance(payload, dict) or not payload:
        raise HTTPException(status_code=400, detail="Empty or invalid JSON payload")

    fingerprint = resolve_fingerprint(payload)
    result = await store.enqueue_if_not_duplicate(session, payload, fingerprint, settings.dedup_window_days)
    # Acknowledge only once the job is durable
    await session.commit()

    if result.status == JobStatus.DUPLICATE:
        content: dict[str, Any] = {"status": "duplicate", "job_id": result.job_id, "fingerprint": fingerprint}
        if result.existing_ticket is not None:
            content["existing_issue"] = result.existing_ticket
        else:
            content["existing_job_id"] = result.existing_job_id
        return JSONResponse(status_code=200, content=content)

    return JSONResponse(
        status_code=202,
        content={"status": "queued", "job_id": result.job_id, "fingerprint": fingerprint},
    )
