"""
SLA breach and warning evaluation.

For each policy the evaluator finds qualifying documents along two paths
and unions them:

1. Explicit deadline: deadline_field is set and has passed (breach) or
   falls inside the lookahead window (warning).
2. Computed deadline: deadline_field is absent, deadline is
   reference_field + duration. Expressed as a window on the reference
   field so the database does the filtering.

Window bounds (deadline D):
    breach:  D < now
    warning: now <= D <= now + lookahead

Each qualifying document is skipped if a matching notification went out
within the dedup window, otherwise recipients are resolved, the optional
breach flag is written, and the dispatcher notifies everyone.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sla_scheduler.core.config import settings
from sla_scheduler.core.database import DocumentFilter, DocumentStore, table_for
from sla_scheduler.models.enums import NotificationCategory, PushEvent, SlaMode
from sla_scheduler.services.notifications import NotificationService
from sla_scheduler.services.recipients import RoleDirectory
from sla_scheduler.services.sla_policies import SLA_RULES, SlaPolicy, SlaRule


logger = logging.getLogger(__name__)


MODE_CATEGORY = {
    SlaMode.BREACH: NotificationCategory.SLA_BREACH,
    SlaMode.WARNING: NotificationCategory.SLA_WARNING,
}

MODE_EVENT = {
    SlaMode.BREACH: PushEvent.SLA_BREACHED,
    SlaMode.WARNING: PushEvent.SLA_WARNING,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SlaEvaluator:
    """
    Runs the SLA rules against the document store.
    """

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        notifications: Optional[NotificationService] = None,
        directory: Optional[RoleDirectory] = None,
        rules: tuple[SlaRule, ...] = SLA_RULES,
        lookahead: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store or DocumentStore()
        self.notifications = notifications or NotificationService(clock=clock)
        self.directory = directory or RoleDirectory()
        self.rules = rules
        self.lookahead = lookahead or timedelta(minutes=settings.sla_warning_lookahead_minutes)
        self.clock = clock

    # ==========================================
    # DUAL-PATH DEADLINE RESOLUTION
    # ==========================================

    def _base_filter(self, policy: SlaPolicy, statuses: tuple[str, ...]) -> DocumentFilter:
        flt = DocumentFilter(statuses=statuses)
        if policy.breach_flag:
            flt.equals[policy.breach_flag.column] = policy.breach_flag.pending_value
        return flt

    def explicit_filter(self, policy: SlaPolicy, mode: SlaMode, now: datetime) -> DocumentFilter:
        flt = self._base_filter(policy, policy.statuses)
        if mode == SlaMode.BREACH:
            flt.lt[policy.deadline_field] = now
        else:
            flt.gte[policy.deadline_field] = now
            flt.lte[policy.deadline_field] = now + self.lookahead
        return flt

    def computed_filter(self, policy: SlaPolicy, mode: SlaMode, now: datetime) -> DocumentFilter:
        flt = self._base_filter(policy, policy.reference_statuses or policy.statuses)
        if policy.deadline_field:
            flt.is_null = (policy.deadline_field,)
        if mode == SlaMode.BREACH:
            flt.lt[policy.reference_field] = now - policy.duration
        else:
            flt.gte[policy.reference_field] = now - policy.duration
            flt.lte[policy.reference_field] = now + self.lookahead - policy.duration
        return flt

    async def find_qualifying(
        self,
        policy: SlaPolicy,
        mode: SlaMode,
        now: datetime
    ) -> list[dict]:
        """Union of the explicit and computed deadline paths."""
        documents: list[dict] = []
        if policy.has_explicit_deadline:
            documents.extend(await self.store.find_many(
                policy.document_type, self.explicit_filter(policy, mode, now)
            ))
        if policy.has_computed_deadline:
            documents.extend(await self.store.find_many(
                policy.document_type, self.computed_filter(policy, mode, now)
            ))

        seen = set()
        unique = []
        for document in documents:
            if document["id"] not in seen:
                seen.add(document["id"])
                unique.append(document)
        return unique

    # ==========================================
    # POLICY / RULE EVALUATION
    # ==========================================

    async def evaluate_policy(
        self,
        policy: SlaPolicy,
        mode: SlaMode,
        now: Optional[datetime] = None
    ) -> int:
        """
        Notify for every qualifying document of one policy.

        Returns the number of documents notified.
        """
        now = now or self.clock()
        table = table_for(policy.document_type)
        title = policy.title(mode)
        notified = 0

        for document in await self.find_qualifying(policy, mode, now):
            document_id = str(document["id"])

            if await self.notifications.has_recent_notification(table, document_id, title, now):
                continue

            recipients = await policy.recipients.resolve(
                self.directory, policy.document_type, document
            )
            if recipients is None:
                continue

            # Flagged before dispatch; a failed dispatch is not retried for this document
            if mode == SlaMode.BREACH and policy.breach_flag:
                await self.store.update(
                    policy.document_type,
                    document_id,
                    {policy.breach_flag.column: policy.breach_flag.breached_value}
                )

            await self.notifications.dispatch(
                recipients=recipients.employee_ids,
                title=title,
                body=policy.body(mode, document, recipients.responsible_role),
                category=MODE_CATEGORY[mode],
                reference_table=table,
                reference_id=document_id,
                push_event=MODE_EVENT[mode],
                push_roles=recipients.push_roles,
                now=now,
            )
            notified += 1

            number = policy.document_number(document)
            if mode == SlaMode.BREACH:
                logger.warning(f"SLA breach: {policy.label} {number} ({recipients.responsible_role})")
            else:
                logger.info(f"SLA warning: {policy.label} {number} ({recipients.responsible_role})")

        return notified

    async def check_rule(
        self,
        rule: SlaRule,
        mode: SlaMode,
        now: Optional[datetime] = None
    ) -> int:
        now = now or self.clock()
        notified = 0
        for policy in rule.policies:
            notified += await self.evaluate_policy(policy, mode, now)
        return notified

    async def run_checks(self, mode: SlaMode) -> dict:
        """
        Run every rule in order for one mode.

        A failing rule stops the remaining rules for this run only; the
        next run starts again from the first rule.
        """
        now = self.clock()
        summary = {"mode": mode.value, "rules_checked": 0, "notified": 0}

        try:
            for rule in self.rules:
                summary["notified"] += await self.check_rule(rule, mode, now)
                summary["rules_checked"] += 1
        except Exception as e:
            failed = self.rules[summary["rules_checked"]].name
            logger.error(f"SLA {mode.value} check failed at '{failed}': {e}", exc_info=True)
            summary["failed_rule"] = failed
            summary["error"] = str(e)

        return summary

    async def check_sla_breaches(self) -> dict:
        return await self.run_checks(SlaMode.BREACH)

    async def check_sla_warnings(self) -> dict:
        return await self.run_checks(SlaMode.WARNING)
