# Services - Business Logic Layer
"""
SLA Scheduler Services Module.

This module provides:
- Distributed lock coordination and timer backends
- SLA policies, recipient resolution and evaluation
- Notification creation and real-time push
- Maintenance jobs
- Background Job Scheduling
"""

# Lock Coordination
from .locks import (
    LockStore,
    RedisLockStore,
    LockCoordinator,
    create_lock_coordinator,
)

# Timers
from .timers import (
    TimerBackend,
    APSchedulerTimers,
)

# Push Channel
from .push import (
    PushChannel,
    RoleConnectionManager,
    get_push_channel,
)

# Notification Services
from .notifications import (
    DispatchResult,
    NotificationService,
)

# Recipients
from .recipients import (
    RoleDirectory,
    ResolvedRecipients,
    RecipientPolicy,
    StaticRoleRecipients,
    PendingApproverRecipients,
)

# SLA Policies and Evaluation
from .sla_policies import (
    SLA_HOURS,
    SLA_RULES,
    BreachFlag,
    SlaPolicy,
    SlaRule,
)
from .sla_evaluator import SlaEvaluator

# Maintenance
from .maintenance import MaintenanceJobs

# Background Job Scheduler
from .scheduler import (
    JobDefinition,
    JobFailureMonitor,
    SlaScheduler,
    get_scheduler,
)


__all__ = [
    # Locks
    "LockStore",
    "RedisLockStore",
    "LockCoordinator",
    "create_lock_coordinator",

    # Timers
    "TimerBackend",
    "APSchedulerTimers",

    # Push
    "PushChannel",
    "RoleConnectionManager",
    "get_push_channel",

    # Notifications
    "DispatchResult",
    "NotificationService",

    # Recipients
    "RoleDirectory",
    "ResolvedRecipients",
    "RecipientPolicy",
    "StaticRoleRecipients",
    "PendingApproverRecipients",

    # SLA
    "SLA_HOURS",
    "SLA_RULES",
    "BreachFlag",
    "SlaPolicy",
    "SlaRule",
    "SlaEvaluator",

    # Maintenance
    "MaintenanceJobs",

    # Scheduler
    "JobDefinition",
    "JobFailureMonitor",
    "SlaScheduler",
    "get_scheduler",
]
