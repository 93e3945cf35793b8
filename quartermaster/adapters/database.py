"""
Database adapters — default collaborators backed by Quartermaster's own tables.

DatabaseMembershipBackend reads BranchMembership / TenantMembership.
DatabaseAuditWriter stores AuditEvent rows with redacted snapshots and a
shallow diff.
"""

from __future__ import annotations

import logging
from typing import Any

from quartermaster.conf import quartermaster_settings
from quartermaster.models import AuditEvent, BranchMembership, TenantMembership

logger = logging.getLogger(__name__)

REDACTED = '[REDACTED]'


class DatabaseMembershipBackend:
    """Membership lookups against BranchMembership and TenantMembership."""

    def is_branch_member(self, tenant_id: str, user: Any, branch_id: int) -> bool:
        if user is None:
            return False
        return BranchMembership.objects.filter(
            tenant_id=tenant_id, user=user, branch_id=branch_id,
        ).exists()

    def branch_ids_for(self, tenant_id: str, user: Any) -> list[int]:
        if user is None:
            return []
        return list(
            BranchMembership.objects.filter(tenant_id=tenant_id, user=user)
            .values_list('branch_id', flat=True)
        )

    def role_id_for(self, tenant_id: str, user: Any) -> int | None:
        if user is None:
            return None
        return (
            TenantMembership.objects.filter(tenant_id=tenant_id, user=user)
            .values_list('role_id', flat=True)
            .first()
        )


def redact(value: Any, keys: tuple[str, ...]) -> Any:
    """Replace values of sensitive keys, recursively."""
    if isinstance(value, dict):
        return {
            k: REDACTED if any(s in str(k).lower() for s in keys) else redact(v, keys)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact(v, keys) for v in value]
    return value


def shallow_diff(before: dict | None, after: dict | None) -> dict:
    """Top-level keys whose value changed: {key: [old, new]}."""
    before = before or {}
    after = after or {}
    diff = {}
    for key in sorted(set(before) | set(after)):
        if before.get(key) != after.get(key):
            diff[key] = [before.get(key), after.get(key)]
    return diff


class DatabaseAuditWriter:
    """Stores audit events in the AuditEvent table."""

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
        keys = tuple(quartermaster_settings.AUDIT_REDACT_KEYS)
        before = redact(before, keys) if before is not None else None
        after = redact(after, keys) if after is not None else None
        AuditEvent.objects.create(
            tenant_id=tenant_id,
            actor_id=actor_user_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            before=before,
            after=after,
            diff=shallow_diff(before, after),
            correlation_id=correlation_id or '',
        )
        logger.debug("audit.write", extra={"action": action, "entity": f"{entity_type}:{entity_id}"})
