"""
Pydantic schemas for data validation and serialization.
Covers notification records and the scheduler health report.
"""
from datetime import datetime
from typing import Optional, Any

from pydantic import BaseModel, Field

from .enums import NotificationCategory


# ==========================================
# NOTIFICATION SCHEMAS
# ==========================================

class NotificationBase(BaseModel):
    """Base notification fields."""
    recipient_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=255)
    body: Optional[str] = None
    notification_type: NotificationCategory
    reference_table: Optional[str] = None
    reference_id: Optional[str] = None


class NotificationCreate(NotificationBase):
    """Schema for inserting a notification row."""
    created_at: datetime


# ==========================================
# PUSH PAYLOAD
# ==========================================

class SlaPushPayload(BaseModel):
    """Summary carried by role-targeted SLA broadcasts."""
    entity: str
    document_id: str
    title: str


# ==========================================
# SCHEDULER HEALTH
# ==========================================

class JobStatus(BaseModel):
    """Registered job as reported by the health endpoint."""
    name: str
    interval_seconds: float
    lock_ttl_seconds: int
    armed: bool
    runs: int = 0
    skipped: int = 0
    last_run_at: Optional[datetime] = None


class JobFailureStatus(BaseModel):
    """Failure bookkeeping for a single job."""
    failure_count: int
    last_failure: Optional[datetime] = None
    last_error: Optional[str] = None
    is_degraded: bool = False


class SchedulerHealth(BaseModel):
    """Scheduler health snapshot."""
    status: str
    is_running: bool
    jobs: list[JobStatus] = Field(default_factory=list)
    failures: dict[str, JobFailureStatus] = Field(default_factory=dict)
    degraded_jobs: list[str] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
