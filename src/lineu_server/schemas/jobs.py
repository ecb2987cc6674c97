"""Job queue schemas."""

from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel


class JobStatus(str, Enum):
    """Job status states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DUPLICATE = "duplicate"


ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)


class TicketRef(BaseModel):
    id: str
    identifier: str
    url: str | None = None


class EnqueueResult(BaseModel):
    job_id: int
    status: JobStatus
    fingerprint: str
    existing_ticket: str | None = None
    existing_job_id: int | None = None


class ClaimedJob(BaseModel):
    id: int
    payload: Dict[str, Any]
    fingerprint: str
    created_at: int
    started_at: int


class ResolvedTicket(BaseModel):
    fingerprint: str
    ticket_id: str
    ticket_identifier: str
    created_at: int


class JobStats(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    duplicate: int = 0
    total: int = 0


class JobSummary(BaseModel):
    """Row of the recent jobs listing."""

    id: int
    fingerprint: str
    status: str
    error: str | None = None
    ticket_identifier: str | None = None
    ticket_url: str | None = None
    duplicate_of: int | None = None
    created_at: int
    started_at: int | None = None
    processed_at: int | None = None
    duration_seconds: int | None = None
    category: str | None = None
    priority: str | None = None
    summary: str | None = None


class TimelineEntry(BaseModel):
    hour: str
    total: int = 0
    completed: int = 0
    failed: int = 0
    duplicate: int = 0


class JobDetail(BaseModel):
    """Full job record with its structured session log."""

    id: int
    payload: Dict[str, Any]
    fingerprint: str
    status: str
    error: str | None = None
    analysis: Dict[str, Any] | None = None
    ticket_id: str | None = None
    ticket_identifier: str | None = None
    ticket_url: str | None = None
    duplicate_of: int | None = None
    created_at: int
    started_at: int | None = None
    processed_at: int | None = None
    session_log: list[Dict[str, Any]] = []
