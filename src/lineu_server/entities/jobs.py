"""Job queue entities."""

import time
from typing import Any, Dict

from sqlalchemy import JSON, Column, Index
from sqlmodel import Field, SQLModel


class Job(SQLModel, table=True):
    """One ingested incident payload."""

    __tablename__ = "jobs"
    __table_args__ = (
        Index("idx_jobs_status_created_at", "status", "created_at"),
        Index("idx_jobs_fingerprint_created_at", "fingerprint", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    payload: Dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    fingerprint: str
    status: str = Field(default="pending")
    error: str | None = Field(default=None)
    analysis: Dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    ticket_id: str | None = Field(default=None)
    ticket_identifier: str | None = Field(default=None)
    ticket_url: str | None = Field(default=None)
    duplicate_of: int | None = Field(default=None)
    created_at: int = Field(default_factory=lambda: int(time.time()))
    started_at: int | None = Field(default=None)
    processed_at: int | None = Field(default=None)


class ResolvedFingerprint(SQLModel, table=True):
    __tablename__ = "fingerprints"

    hash: str = Field(primary_key=True)
    ticket_id: str
    ticket_identifier: str
    created_at: int = Field(default_factory=lambda: int(time.time()), index=True)
