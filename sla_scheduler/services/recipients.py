"""
Recipient resolution for SLA notifications.

Every SLA notification goes to administrators plus the role responsible
for the document. The responsible role is either fixed per rule
(StaticRoleRecipients) or read from the document's current pending
approval step (PendingApproverRecipients). Recipients are recomputed on
every evaluation; nothing is cached.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sla_scheduler.core.database import SupabaseClient, get_supabase_client
from sla_scheduler.core.exceptions import DatabaseError
from sla_scheduler.models.enums import DocumentType, SystemRole


logger = logging.getLogger(__name__)


# approval_steps.document_type codes
APPROVAL_DOCUMENT_CODES: dict[DocumentType, str] = {
    DocumentType.MIRV: "mirv",
    DocumentType.JOB_ORDER: "jo",
}


def _unique(values) -> list[str]:
    """De-duplicate while keeping first-seen order."""
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


class RoleDirectory:
    """
    Employee role membership and approval-step lookups.
    """

    def __init__(self, db: Optional[SupabaseClient] = None):
        self._db = db

    @property
    def db(self) -> SupabaseClient:
        if self._db is None:
            self._db = get_supabase_client()
        return self._db

    async def members_with_role(self, role: str) -> list[str]:
        """Ids of active employees holding a system role."""
        try:
            response = self.db.client.table("employees").select("id").eq(
                "system_role", role.value if isinstance(role, SystemRole) else role
            ).eq("is_active", True).execute()
        except Exception as e:
            raise DatabaseError(
                f"Failed to load employees with role {role}",
                table="employees",
                operation="select",
                original_error=str(e)
            ) from e
        return [row["id"] for row in (response.data or [])]

    async def pending_approver_role(
        self,
        document_type: DocumentType,
        document_id: str
    ) -> Optional[str]:
        """
        Role required by the lowest-level pending approval step.

        Returns None when the document has no pending step.
        """
        code = APPROVAL_DOCUMENT_CODES.get(document_type, DocumentType(document_type).value)
        try:
            response = self.db.client.table("approval_steps").select(
                "approver_role, level"
            ).eq("document_type", code).eq("document_id", document_id).eq(
                "status", "pending"
            ).order("level").limit(1).execute()
        except Exception as e:
            raise DatabaseError(
                f"Failed to load approval steps for {code} {document_id}",
                table="approval_steps",
                operation="select",
                original_error=str(e)
            ) from e

        if not response.data:
            return None
        return response.data[0].get("approver_role")


@dataclass
class ResolvedRecipients:
    """Who to notify for one document."""
    employee_ids: list[str]
    push_roles: list[str]
    responsible_role: str


class RecipientPolicy:
    """
    Base recipient policy: administrators are always included, both as
    notification recipients and as push-channel roles.
    """

    include_admins = True

    async def responsible_roles(
        self,
        directory: RoleDirectory,
        document_type: DocumentType,
        document: dict
    ) -> Optional[tuple[list[str], list[str]]]:
        """
        Return (recipient roles, push roles) for a document, or None to
        skip the document entirely.
        """
        raise NotImplementedError

    async def resolve(
        self,
        directory: RoleDirectory,
        document_type: DocumentType,
        document: dict
    ) -> Optional[ResolvedRecipients]:
        roles = await self.responsible_roles(directory, document_type, document)
        if roles is None:
            return None
        recipient_roles, push_roles = roles

        admin = SystemRole.ADMIN.value
        if self.include_admins:
            recipient_roles = [admin, *recipient_roles]
            push_roles = [admin, *push_roles]

        employee_ids = []
        for role in _unique(recipient_roles):
            employee_ids.extend(await directory.members_with_role(role))

        responsible = next((r for r in recipient_roles if r != admin), admin)
        return ResolvedRecipients(
            employee_ids=_unique(employee_ids),
            push_roles=_unique(push_roles),
            responsible_role=responsible,
        )


class StaticRoleRecipients(RecipientPolicy):
    """Fixed roles configured on the rule."""

    def __init__(self, roles: tuple[str, ...], push_roles: tuple[str, ...] = ()):
        self.roles = [str(r.value if isinstance(r, SystemRole) else r) for r in roles]
        push = push_roles or roles
        self.push_roles = [str(r.value if isinstance(r, SystemRole) else r) for r in push]

    async def responsible_roles(self, directory, document_type, document):
        return list(self.roles), list(self.push_roles)

    def __repr__(self) -> str:
        return f"StaticRoleRecipients(roles={self.roles}, push_roles={self.push_roles})"


class PendingApproverRecipients(RecipientPolicy):
    """Role taken from the document's current pending approval step."""

    async def responsible_roles(self, directory, document_type, document):
        role = await directory.pending_approver_role(document_type, document["id"])
        if not role:
            logger.debug(f"No pending approval step for {document_type.value} {document['id']}")
            return None
        return [role], [role]

    def __repr__(self) -> str:
        return "PendingApproverRecipients()"
