"""
SLA policies for every monitored document type.

A policy says which documents are still waiting on someone (qualifying
statuses), where their deadline comes from, and who is responsible:

- deadline_field: an explicit deadline stored on the document
- reference_field + duration: deadline = reference + duration, used when
  the explicit deadline is absent (or the type has none)

Policies are grouped into seven rules, checked in order on every tick.
"""
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from sla_scheduler.core.exceptions import ValidationError
from sla_scheduler.models.enums import DocumentType, SlaMode, SystemRole
from sla_scheduler.services.recipients import (
    RecipientPolicy,
    StaticRoleRecipients,
    PendingApproverRecipients,
)


# SLA budgets in hours
SLA_HOURS: dict[str, int] = {
    "stock_verification": 4,
    "jo_execution": 48,
    "gate_pass": 24,
    "scrap_buyer_pickup": 10 * 24,
    "surplus_timeout": 14 * 24,
    "qc_inspection": 14 * 24,
}


@dataclass(frozen=True)
class BreachFlag:
    """Persisted marker written when a breach is first reported."""
    column: str
    pending_value: Any
    breached_value: Any


@dataclass(frozen=True)
class SlaPolicy:
    key: str
    label: str
    document_type: DocumentType
    statuses: tuple[str, ...]
    recipients: RecipientPolicy
    breach_body: str
    warning_body: str
    deadline_field: Optional[str] = None
    reference_field: Optional[str] = None
    duration: Optional[timedelta] = None
    # Statuses for the computed path when they differ from `statuses`
    reference_statuses: Optional[tuple[str, ...]] = None
    breach_flag: Optional[BreachFlag] = None
    number_field: Optional[str] = None
    title_prefix: str = "SLA"
    body_defaults: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.statuses:
            raise ValidationError("SLA policy needs qualifying statuses", field="statuses")
        if self.reference_field and self.duration is None:
            raise ValidationError(
                "Reference-based SLA needs a duration", field="duration", value=self.key
            )
        if not self.deadline_field and not self.reference_field:
            raise ValidationError(
                "SLA policy needs a deadline or reference field", field="deadline_field", value=self.key
            )

    @property
    def has_explicit_deadline(self) -> bool:
        return bool(self.deadline_field)

    @property
    def has_computed_deadline(self) -> bool:
        return bool(self.reference_field and self.duration is not None)

    def title(self, mode: SlaMode) -> str:
        state = "Breached" if mode == SlaMode.BREACH else "Warning"
        return f"{self.title_prefix} {state}: {self.label}"

    def document_number(self, document: dict) -> str:
        if self.number_field and document.get(self.number_field):
            return str(document[self.number_field])
        return str(document["id"])

    def body(self, mode: SlaMode, document: dict, responsible_role: str) -> str:
        hours = int(self.duration.total_seconds() // 3600) if self.duration else None
        context = {
            **self.body_defaults,
            **{k: v for k, v in document.items() if v is not None},
            "label": self.label,
            "number": self.document_number(document),
            "role": responsible_role,
            "hours": hours,
            "days": hours // 24 if hours else None,
        }
        template = self.breach_body if mode == SlaMode.BREACH else self.warning_body
        return template.format(**context)


@dataclass(frozen=True)
class SlaRule:
    """One named check; most rules monitor a single document type."""
    name: str
    policies: tuple[SlaPolicy, ...]


def _hours(key: str) -> timedelta:
    return timedelta(hours=SLA_HOURS[key])


WITHIN_LOOKAHEAD = "deadline is within the next hour"


def _approval_policy(document_type: DocumentType, label: str, number_field: str) -> SlaPolicy:
    return SlaPolicy(
        key=f"{document_type.value}_approval",
        label=label,
        document_type=document_type,
        statuses=("pending_approval",),
        deadline_field="sla_due_date",
        recipients=PendingApproverRecipients(),
        number_field=number_field,
        breach_body="{label} {number} has exceeded its SLA deadline. Requires {role} approval.",
        warning_body="{label} {number} SLA " + WITHIN_LOOKAHEAD + ". Requires {role} approval.",
    )


APPROVAL_RULE = SlaRule(
    name="approval",
    policies=(
        _approval_policy(DocumentType.MIRV, "MIRV", "mirv_number"),
        _approval_policy(DocumentType.JOB_ORDER, "Job Order", "jo_number"),
    ),
)

MR_STOCK_VERIFICATION_RULE = SlaRule(
    name="mr_stock_verification",
    policies=(
        SlaPolicy(
            key="stock_verification",
            label="Material Requisition",
            document_type=DocumentType.MATERIAL_REQUISITION,
            statuses=("approved", "checking_stock"),
            deadline_field="stock_verification_sla",
            reference_field="approval_date",
            duration=_hours("stock_verification"),
            breach_flag=BreachFlag("sla_breached", pending_value=False, breached_value=True),
            recipients=StaticRoleRecipients(
                (SystemRole.WAREHOUSE_STAFF,),
                push_roles=(SystemRole.WAREHOUSE_STAFF, SystemRole.WAREHOUSE_SUPERVISOR),
            ),
            number_field="mrf_number",
            breach_body=(
                "MR {number} has exceeded its stock verification SLA ({hours}h). "
                "Warehouse must respond."
            ),
            warning_body="MR {number} stock verification SLA " + WITHIN_LOOKAHEAD + ".",
        ),
    ),
)

JO_EXECUTION_RULE = SlaRule(
    name="jo_execution",
    policies=(
        SlaPolicy(
            key="jo_execution",
            label="Job Order",
            document_type=DocumentType.JOB_ORDER,
            statuses=("quoted", "approved", "assigned", "in_progress"),
            reference_statuses=("quoted",),
            deadline_field="execution_sla_due_date",
            reference_field="updated_at",
            duration=_hours("jo_execution"),
            # Tri-state: NULL unresolved, FALSE missed, TRUE met
            breach_flag=BreachFlag("execution_sla_met", pending_value=None, breached_value=False),
            recipients=StaticRoleRecipients(
                (SystemRole.LOGISTICS_COORDINATOR,),
                push_roles=(SystemRole.LOGISTICS_COORDINATOR, SystemRole.MANAGER),
            ),
            number_field="jo_number",
            title_prefix="Execution SLA",
            breach_body="JO {number} has exceeded its execution SLA ({hours}h). Status: {status}.",
            warning_body="JO {number} execution SLA " + WITHIN_LOOKAHEAD + ".",
        ),
    ),
)

GATE_PASS_RULE = SlaRule(
    name="gate_pass",
    policies=(
        SlaPolicy(
            key="gate_pass",
            label="Gate Pass",
            document_type=DocumentType.GATE_PASS,
            statuses=("pending", "approved"),
            reference_field="created_at",
            duration=_hours("gate_pass"),
            recipients=StaticRoleRecipients(
                (SystemRole.WAREHOUSE_STAFF, SystemRole.WAREHOUSE_SUPERVISOR),
            ),
            number_field="gate_pass_number",
            breach_body=(
                "Gate Pass {number} has exceeded its SLA ({hours}h). "
                "Status: {status}. Must be released."
            ),
            warning_body="Gate Pass {number} SLA " + WITHIN_LOOKAHEAD + ".",
        ),
    ),
)

SCRAP_BUYER_PICKUP_RULE = SlaRule(
    name="scrap_buyer_pickup",
    policies=(
        SlaPolicy(
            key="scrap_buyer_pickup",
            label="Scrap Buyer Pickup",
            document_type=DocumentType.SCRAP_ITEM,
            statuses=("sold",),
            deadline_field="buyer_pickup_deadline",
            reference_field="updated_at",
            duration=_hours("scrap_buyer_pickup"),
            recipients=StaticRoleRecipients(
                (SystemRole.SCRAP_COMMITTEE_MEMBER,),
                push_roles=(SystemRole.SCRAP_COMMITTEE_MEMBER, SystemRole.MANAGER),
            ),
            number_field="scrap_number",
            body_defaults={"buyer_name": "Unknown buyer"},
            breach_body='Scrap {number}: buyer "{buyer_name}" has not picked up within {days} days.',
            warning_body="Scrap {number} buyer pickup SLA " + WITHIN_LOOKAHEAD + ".",
        ),
    ),
)

SURPLUS_TIMEOUT_RULE = SlaRule(
    name="surplus_timeout",
    policies=(
        SlaPolicy(
            key="surplus_timeout",
            label="Surplus Timeout",
            document_type=DocumentType.SURPLUS_ITEM,
            statuses=("identified", "evaluated"),
            reference_field="ou_head_approval_date",
            duration=_hours("surplus_timeout"),
            recipients=StaticRoleRecipients((SystemRole.MANAGER,)),
            number_field="surplus_number",
            breach_body=(
                "Surplus {number} has exceeded the {days}-day timeout since OU Head approval. "
                "SCM can now approve."
            ),
            warning_body=(
                "Surplus {number} timeout SLA " + WITHIN_LOOKAHEAD + ". "
                "SCM approval will be available."
            ),
        ),
    ),
)

QC_INSPECTION_RULE = SlaRule(
    name="qc_inspection",
    policies=(
        SlaPolicy(
            key="qc_inspection",
            label="QC Inspection",
            document_type=DocumentType.RFIM,
            statuses=("pending", "in_progress"),
            reference_field="created_at",
            duration=_hours("qc_inspection"),
            recipients=StaticRoleRecipients((SystemRole.QC_OFFICER,)),
            number_field="rfim_number",
            breach_body="QCI {number} has exceeded its inspection SLA ({days} days). Status: {status}.",
            warning_body="QCI {number} inspection SLA " + WITHIN_LOOKAHEAD + ".",
        ),
    ),
)


# Checked in this order on every breach / warning tick
SLA_RULES: tuple[SlaRule, ...] = (
    APPROVAL_RULE,
    MR_STOCK_VERIFICATION_RULE,
    JO_EXECUTION_RULE,
    GATE_PASS_RULE,
    SCRAP_BUYER_PICKUP_RULE,
    SURPLUS_TIMEOUT_RULE,
    QC_INSPECTION_RULE,
)
