"""
Role lookup for impersonated contacts.
"""

from typing import Any, Dict, List, Optional, Set, Union

from shared.errors import ImpersonationLookupFailure, PortalGatewayError
from shared.logging import get_logger

from ..domain.query_dialect import QueryDescriptor, quote_literal
from .record_gateway import RecordGateway

ContactId = Union[int, str]

CONTACT_SUMMARY_COLUMNS = (
    "Contact_ID",
    "Display_Name",
    "Email_Address",
    "Nickname",
    "First_Name",
    "Last_Name",
    "dp_fileUniqueId AS Image_GUID",
)


class PlatformRoleLookup:
    """Resolves the role names an upstream contact's user account holds.

    Roles are the union of security roles (``dp_User_Roles``) and user group
    names (``dp_User_User_Groups``).
    """

    def __init__(self, records: RecordGateway):
        self.records = records
        self.logger = get_logger("gateway.role_lookup")

    async def roles_for_contact(self, contact_id: ContactId) -> List[str]:
        """Return the sorted role names of ``contact_id``.

        Raises ImpersonationLookupFailure when the contact has no user account
        or any upstream call fails.
        """
        try:
            user_id = await self._user_id_for_contact(contact_id)
            role_rows = await self.records.read(
                "dp_User_Roles",
                QueryDescriptor(
                    select="Role_ID_Table.Role_Name",
                    filter=f"User_ID={quote_literal(user_id)}",
                ),
            )
            group_rows = await self.records.read(
                "dp_User_User_Groups",
                QueryDescriptor(
                    select="User_Group_ID_Table.User_Group_Name",
                    filter=f"User_ID={quote_literal(user_id)}",
                ),
            )
        except ImpersonationLookupFailure:
            raise
        except PortalGatewayError as exc:
            raise ImpersonationLookupFailure(
                contact_id,
                message="Upstream role lookup failed",
                details={"error_code": exc.code},
            ) from exc

        roles: Set[str] = set()
        for row in role_rows:
            name = row.get("Role_Name")
            if name:
                roles.add(name)
        for row in group_rows:
            name = row.get("User_Group_Name")
            if name:
                roles.add(name)

        self.logger.info("Resolved impersonated roles", contact_id=contact_id, role_count=len(roles))
        return sorted(roles)

    async def contact_summary(self, contact_id: ContactId) -> Optional[Dict[str, Any]]:
        """Return display fields for a contact, or None when it does not exist."""
        rows = await self.records.read(
            "Contacts",
            QueryDescriptor(
                select=CONTACT_SUMMARY_COLUMNS,
                filter=f"Contact_ID={quote_literal(contact_id)}",
            ),
        )
        return rows[0] if rows else None

    async def search_contacts(self, text: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Find contacts with a user account whose name or email contains ``text``."""
        pattern = quote_literal(f"%{text}%")
        return await self.records.read(
            "Contacts",
            QueryDescriptor(
                select=("Contact_ID", "Display_Name", "Email_Address", "User_Account",
                        "dp_fileUniqueId AS Image_GUID"),
                filter=(
                    f"(Display_Name LIKE {pattern} OR Email_Address LIKE {pattern}) "
                    "AND User_Account IS NOT NULL"
                ),
                order_by="Display_Name",
                top=limit,
            ),
        )

    async def _user_id_for_contact(self, contact_id: ContactId) -> Any:
        rows = await self.records.read(
            "dp_Users",
            QueryDescriptor(
                select=("User_ID",),
                filter=f"Contact_ID={quote_literal(contact_id)}",
                top=1,
            ),
        )
        if not rows or rows[0].get("User_ID") is None:
            raise ImpersonationLookupFailure(contact_id, message="Contact has no user account")
        return rows[0]["User_ID"]
