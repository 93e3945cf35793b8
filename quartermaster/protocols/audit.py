"""
Audit Protocol — where every mutation reports what it changed.

Quartermaster calls the writer inside the mutating transaction, so a failing
writer aborts the operation. The writer owns formatting, redaction and storage.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class AuditContext:
    """Who is acting, and under which request."""

    actor: Any = None  # user instance or None for system actions
    correlation_id: str | None = None

    @property
    def actor_id(self):
        return getattr(self.actor, 'pk', None)


@runtime_checkable
class AuditWriter(Protocol):
    """Protocol for audit collaborators."""

    def write_audit_event(
        self,
        *,
        tenant_id: str,
        actor_user_id: int | None,
        entity_type: str,
        entity_id: str,
        action: str,
        before: dict | None,
        after: dict | None,
        correlation_id: str | None = None,
    ) -> None:
        """
        Record one audit event.

        Args:
            tenant_id: Tenant key
            actor_user_id: Acting user pk (None for system)
            entity_type: "STOCK_TRANSFER", "PRODUCT_STOCK", ...
            entity_id: Primary key of the entity, as string
            action: "TRANSFER_SHIP", "STOCK_RECEIVE", ...
            before: Snapshot before the change (None on create)
            after: Snapshot after the change (None on delete)
            correlation_id: Request correlation id
        """
        ...
