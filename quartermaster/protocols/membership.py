"""
Membership Protocol — who belongs to which branch, and which role they hold.

The caller already checked coarse permissions (stock:read / stock:write);
Quartermaster re-checks branch membership and approval roles through this
protocol so direct service calls cannot bypass them.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class MembershipBackend(Protocol):
    """Protocol for membership lookups."""

    def is_branch_member(self, tenant_id: str, user: Any, branch_id: int) -> bool:
        """True if user belongs to branch within tenant."""
        ...

    def branch_ids_for(self, tenant_id: str, user: Any) -> list[int]:
        """Branches the user belongs to within tenant."""
        ...

    def role_id_for(self, tenant_id: str, user: Any) -> int | None:
        """Role the user holds within tenant, or None."""
        ...
