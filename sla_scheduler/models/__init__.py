# Data models - Enums and Pydantic Schemas
from .enums import (
    DocumentType,
    SlaMode,
    NotificationCategory,
    PushEvent,
    SystemRole,
)
from .schemas import (
    NotificationCreate,
    SlaPushPayload,
    JobStatus,
    JobFailureStatus,
    SchedulerHealth,
)

__all__ = [
    # Enums
    "DocumentType",
    "SlaMode",
    "NotificationCategory",
    "PushEvent",
    "SystemRole",
    # Notification Schemas
    "NotificationCreate",
    "SlaPushPayload",
    # Scheduler Schemas
    "JobStatus",
    "JobFailureStatus",
    "SchedulerHealth",
]
