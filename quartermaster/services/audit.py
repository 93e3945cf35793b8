"""
Audit helpers — snapshots and the single call into the audit collaborator.
"""

from __future__ import annotations

from quartermaster.adapters import get_audit_writer
from quartermaster.protocols.audit import AuditContext

SYSTEM = AuditContext()


def record(context: AuditContext | None, *, tenant_id: str, entity_type: str, entity_id,
           action: str, before: dict | None = None, after: dict | None = None) -> None:
    """Write one audit event through the configured writer."""
    context = context or SYSTEM
    get_audit_writer().write_audit_event(
        tenant_id=tenant_id,
        actor_user_id=context.actor_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        before=before,
        after=after,
        correlation_id=context.correlation_id,
    )


def _iso(value):
    return value.isoformat() if value else None


def product_stock_snapshot(stock) -> dict | None:
    if stock is None:
        return None
    return {
        'id': stock.pk,
        'branch_id': stock.branch_id,
        'product_id': stock.product_id,
        'qty_on_hand': stock.qty_on_hand,
        'qty_allocated': stock.qty_allocated,
    }


def transfer_snapshot(transfer) -> dict:
    return {
        'id': transfer.pk,
        'transfer_number': transfer.transfer_number,
        'status': transfer.status,
        'initiation_type': transfer.initiation_type,
        'priority': transfer.priority,
        'source_branch_id': transfer.source_branch_id,
        'destination_branch_id': transfer.destination_branch_id,
        'requires_multi_level_approval': transfer.requires_multi_level_approval,
        'reversal_of_id': transfer.reversal_of_id,
        'reviewed_at': _iso(transfer.reviewed_at),
        'shipped_at': _iso(transfer.shipped_at),
        'completed_at': _iso(transfer.completed_at),
        'items': [
            {
                'id': item.pk,
                'product_id': item.product_id,
                'qty_requested': item.qty_requested,
                'qty_approved': item.qty_approved,
                'qty_shipped': item.qty_shipped,
                'qty_received': item.qty_received,
            }
            for item in transfer.items.all()
        ],
    }


def rule_snapshot(rule) -> dict:
    return {
        'id': rule.pk,
        'name': rule.name,
        'is_active': rule.is_active,
        'is_archived': rule.is_archived,
        'approval_mode': rule.approval_mode,
        'priority': rule.priority,
        'conditions': [
            {
                'condition_type': c.condition_type,
                'threshold': c.threshold,
                'branch_id': c.branch_id,
                'priority': c.priority,
            }
            for c in rule.conditions.all()
        ],
        'levels': [
            {
                'level': lvl.level,
                'name': lvl.name,
                'required_role_id': lvl.required_role_id,
                'required_user_id': lvl.required_user_id,
                'is_gated': lvl.is_gated,
            }
            for lvl in rule.levels.all()
        ],
    }


def template_snapshot(template) -> dict:
    return {
        'id': template.pk,
        'name': template.name,
        'description': template.description,
        'source_branch_id': template.source_branch_id,
        'destination_branch_id': template.destination_branch_id,
        'is_archived': template.is_archived,
        'items': [
            {'product_id': item.product_id, 'default_qty': item.default_qty}
            for item in template.items.all()
        ],
    }
