"""
Enum types shared by the scheduler, evaluator and dispatcher.
String values match the column values stored in Supabase.
"""
from enum import Enum


class DocumentType(str, Enum):
    """
    Monitored document types.
    Each value is registered against a table in core.database.DOCUMENT_TABLES.
    """
    MIRV = "mirv"
    JOB_ORDER = "job_order"
    MATERIAL_REQUISITION = "material_requisition"
    GATE_PASS = "gate_pass"
    SCRAP_ITEM = "scrap_item"
    SURPLUS_ITEM = "surplus_item"
    RFIM = "rfim"  # QC inspection request
    INVENTORY_LOT = "inventory_lot"
    REFRESH_TOKEN = "refresh_token"
    INVENTORY_LEVEL = "inventory_level"


class SlaMode(str, Enum):
    """Evaluation mode for an SLA rule."""
    BREACH = "breach"
    WARNING = "warning"


class NotificationCategory(str, Enum):
    """Notification type column values."""
    SLA_BREACH = "sla_breach"
    SLA_WARNING = "sla_warning"
    ALERT = "alert"
    WARNING = "warning"


class PushEvent(str, Enum):
    """Events broadcast on the push channel."""
    SLA_BREACHED = "sla:breached"
    SLA_WARNING = "sla:warning"


class SystemRole(str, Enum):
    """
    Employee system roles referenced by SLA rules.
    Matches: employees.system_role
    """
    ADMIN = "admin"
    MANAGER = "manager"
    WAREHOUSE_STAFF = "warehouse_staff"
    WAREHOUSE_SUPERVISOR = "warehouse_supervisor"
    LOGISTICS_COORDINATOR = "logistics_coordinator"
    SCRAP_COMMITTEE_MEMBER = "scrap_committee_member"
    QC_OFFICER = "qc_officer"
