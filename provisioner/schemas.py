"""Pydantic models for request/response validation."""

from datetime import datetime
from typing import Any, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from provisioner.jobs.types import JobKind, JobStatus, LogLevel


# Credentials
class WhmCredentials(BaseModel):
    """WHM control-panel access."""

    host: str = Field(..., min_length=1, description="WHM hostname or IP")
    username: str = Field(default="root", description="WHM user")
    api_token: Optional[str] = Field(default=None, description="WHM API token")
    password: Optional[str] = Field(default=None, description="Basic-auth password")
    port: int = Field(default=2087, ge=1, le=65535)
    ssl: bool = Field(default=True, description="Use https")


class CloudflareCredentials(BaseModel):
    """Cloudflare API access and the record to point each domain at."""

    email: str = Field(..., min_length=1)
    api_key: str = Field(..., min_length=1)
    record_type: str = Field(default="A", description="DNS record type")
    record_value: str = Field(..., min_length=1, description="Record content, e.g. server IP")


class SshCredentials(BaseModel):
    """SSH access to the hosting server."""

    host: str = Field(..., min_length=1)
    username: str = Field(default="root")
    password: str = Field(..., min_length=1)
    port: int = Field(default=22, ge=1, le=65535)


class JobCredentials(BaseModel):
    """Collaborator credentials for one job. Which ones are needed depends on the kind."""

    whm: Optional[WhmCredentials] = None
    cloudflare: Optional[CloudflareCredentials] = None
    ssh: Optional[SshCredentials] = None


# Request Models
class JobSubmitRequest(BaseModel):
    """Request body for submitting a bulk job."""

    domains: list[str] = Field(
        ...,
        min_length=1,
        description="Target domains; a single newline/comma separated string is accepted",
    )
    credentials: JobCredentials = Field(default_factory=JobCredentials)
    options: dict[str, Any] = Field(
        default_factory=dict, description="Kind-specific options"
    )

    @field_validator("domains", mode="before")
    @classmethod
    def split_domain_text(cls, v: Union[str, list[str]]) -> list[str]:
        if isinstance(v, str):
            return [d for d in v.replace(",", "\n").splitlines() if d.strip()]
        return v


# Response Models
class ErrorDetail(BaseModel):
    """Failure reported on a job or item."""

    message: str
    code: str


class ProgressResponse(BaseModel):
    total: int
    processed: int
    successful: int
    failed: int
    skipped: int
    percentage: int = Field(..., ge=0, le=100)
    current_item: Optional[str] = None


class ItemOutcomeResponse(BaseModel):
    item_key: str
    success: bool
    skipped: bool = False
    error: Optional[ErrorDetail] = None
    stage_failed: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0


class JobStatusResponse(BaseModel):
    """Progress snapshot for a polling client."""

    job_id: UUID
    kind: JobKind
    status: JobStatus
    progress: ProgressResponse
    stop_requested: bool = False
    results: Optional[list[ItemOutcomeResponse]] = Field(
        default=None, description="Per-item outcomes, present once any item settled"
    )
    error: Optional[ErrorDetail] = None
    info: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime
    last_updated: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None


class JobListResponse(BaseModel):
    jobs: list[JobStatusResponse]
    total: int


class JobSubmitResponse(BaseModel):
    """Returned immediately after a job is accepted."""

    job_id: UUID
    kind: JobKind
    status: JobStatus
    total: int
    invalid_domains: list[str] = Field(default_factory=list)
    duplicate_domains: list[str] = Field(default_factory=list)


class LogEntryResponse(BaseModel):
    seq: int = Field(..., description="Absolute offset of the entry")
    timestamp: datetime
    level: LogLevel
    message: str
    data: dict[str, Any] = Field(default_factory=dict)


class LogPageResponse(BaseModel):
    """One page of a job's log feed. Pass `next_offset` back as `offset` to resume."""

    job_id: UUID
    logs: list[LogEntryResponse]
    total: int
    offset: int
    limit: int
    has_more: bool
    next_offset: int


class StopResponse(BaseModel):
    job_id: UUID
    stop_requested: bool
    status: JobStatus
