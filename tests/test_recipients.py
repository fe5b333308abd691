"""
Tests for recipient resolution.
"""
import asyncio
import pytest

from sla_scheduler.models.enums import DocumentType, SystemRole
from sla_scheduler.services.recipients import (
    PendingApproverRecipients,
    StaticRoleRecipients,
)


class TestStaticRoleRecipients:

    @pytest.mark.unit
    def test_admins_always_included(self, directory, add_employee):
        admin = add_employee("admin")
        qc = add_employee("qc_officer")
        add_employee("qc_officer", is_active=False)
        add_employee("manager")

        resolved = asyncio.run(StaticRoleRecipients((SystemRole.QC_OFFICER,)).resolve(
            directory, DocumentType.RFIM, {"id": "rfim-1"}
        ))

        assert resolved.employee_ids == [admin, qc]
        assert resolved.push_roles == ["admin", "qc_officer"]
        assert resolved.responsible_role == "qc_officer"

    @pytest.mark.unit
    def test_push_roles_can_differ(self, directory, add_employee):
        add_employee("warehouse_staff")

        resolved = asyncio.run(StaticRoleRecipients(
            (SystemRole.WAREHOUSE_STAFF,),
            push_roles=(SystemRole.WAREHOUSE_STAFF, SystemRole.WAREHOUSE_SUPERVISOR),
        ).resolve(directory, DocumentType.MATERIAL_REQUISITION, {"id": "mr-1"}))

        assert resolved.push_roles == ["admin", "warehouse_staff", "warehouse_supervisor"]

    @pytest.mark.unit
    def test_admin_role_not_duplicated(self, directory, add_employee):
        admin = add_employee("admin")

        resolved = asyncio.run(StaticRoleRecipients(("admin",)).resolve(
            directory, DocumentType.GATE_PASS, {"id": "gp-1"}
        ))

        assert resolved.employee_ids == [admin]
        assert resolved.push_roles == ["admin"]
        assert resolved.responsible_role == "admin"

    @pytest.mark.unit
    def test_employee_holding_two_roles_notified_once(self, directory, mock_data):
        mock_data["employees"].extend([
            {"id": "emp-1", "system_role": "manager", "is_active": True},
            {"id": "emp-1", "system_role": "admin", "is_active": True},
        ])

        resolved = asyncio.run(StaticRoleRecipients(("manager",)).resolve(
            directory, DocumentType.SURPLUS_ITEM, {"id": "s-1"}
        ))

        assert resolved.employee_ids == ["emp-1"]


class TestPendingApproverRecipients:

    @pytest.mark.unit
    def test_job_order_steps_use_jo_code(self, directory, mock_data, add_employee):
        manager = add_employee("manager")
        mock_data["approval_steps"].append({
            "document_type": "jo", "document_id": "jo-1", "level": 1,
            "approver_role": "manager", "status": "pending",
        })

        resolved = asyncio.run(PendingApproverRecipients().resolve(
            directory, DocumentType.JOB_ORDER, {"id": "jo-1"}
        ))

        assert resolved.employee_ids == [manager]
        assert resolved.responsible_role == "manager"

    @pytest.mark.unit
    def test_no_pending_step_skips(self, directory, mock_data):
        mock_data["approval_steps"].append({
            "document_type": "mirv", "document_id": "mirv-1", "level": 1,
            "approver_role": "manager", "status": "approved",
        })

        resolved = asyncio.run(PendingApproverRecipients().resolve(
            directory, DocumentType.MIRV, {"id": "mirv-1"}
        ))

        assert resolved is None
