"""
Approval evaluation — which rule a transfer falls under, and level sign-off.

Rules are read fresh on every evaluation (active, not archived, highest
priority first). The first rule whose conditions all hold wins; its levels
become TransferApprovalRecord rows on the transfer. No match means the plain
single-step review by the other branch.

Level gating is one function per ApprovalMode:

    SEQUENTIAL  every lower level approved
    PARALLEL    never blocked
    HYBRID      gated levels behave like SEQUENTIAL, free levels like PARALLEL
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from django.utils import timezone

from quartermaster.adapters import get_membership_backend
from quartermaster.db import serializable
from quartermaster.exceptions import Conflict, Forbidden, InvalidRequest, NotFound
from quartermaster.models import (
    ApprovalMode,
    ApprovalRule,
    ApprovalStatus,
    ConditionType,
    StockTransfer,
    TransferApprovalRecord,
    TransferPriority,
    TransferStatus,
)
from quartermaster.protocols.audit import AuditContext
from quartermaster.services.audit import record, transfer_snapshot

logger = logging.getLogger('quartermaster')


# ══════════════════════════════════════════════════════════════
# CONDITIONS
# ══════════════════════════════════════════════════════════════


def total_qty(transfer) -> int:
    return sum(item.qty_requested for item in transfer.items.all())


def total_value_pence(transfer) -> int:
    return sum(item.qty_requested * item.product.unit_price_pence for item in transfer.items.all())


def _total_qty_at_least(transfer, condition) -> bool:
    return total_qty(transfer) >= (condition.threshold or 0)


def _total_value_at_least(transfer, condition) -> bool:
    # threshold is in pounds
    return total_value_pence(transfer) >= (condition.threshold or 0) * 100


def _source_branch_is(transfer, condition) -> bool:
    return transfer.source_branch_id == condition.branch_id


def _destination_branch_is(transfer, condition) -> bool:
    return transfer.destination_branch_id == condition.branch_id


def _priority_at_least(transfer, condition) -> bool:
    if not condition.priority:
        return False
    return TransferPriority.rank(transfer.priority) >= TransferPriority.rank(condition.priority)


CONDITION_CHECKS: dict[str, Callable] = {
    ConditionType.TOTAL_QTY_THRESHOLD: _total_qty_at_least,
    ConditionType.TOTAL_VALUE_THRESHOLD: _total_value_at_least,
    ConditionType.SOURCE_BRANCH: _source_branch_is,
    ConditionType.DESTINATION_BRANCH: _destination_branch_is,
    ConditionType.PRIORITY_AT_LEAST: _priority_at_least,
}


def rule_matches(rule, transfer) -> bool:
    """All conditions of rule hold for transfer."""
    for condition in rule.conditions.all():
        check = CONDITION_CHECKS.get(condition.condition_type)
        if check is None or not check(transfer, condition):
            return False
    return True


# ══════════════════════════════════════════════════════════════
# LEVEL GATES
# ══════════════════════════════════════════════════════════════


def _lower_levels_approved(record, records) -> bool:
    return all(r.status == ApprovalStatus.APPROVED for r in records if r.level < record.level)


def _sequential_gate(record, records) -> bool:
    return _lower_levels_approved(record, records)


def _parallel_gate(record, records) -> bool:
    return True


def _hybrid_gate(record, records) -> bool:
    if not record.is_gated:
        return True
    return _lower_levels_approved(record, records)


LEVEL_GATES: dict[str, Callable] = {
    ApprovalMode.SEQUENTIAL: _sequential_gate,
    ApprovalMode.PARALLEL: _parallel_gate,
    ApprovalMode.HYBRID: _hybrid_gate,
}


def level_open(mode: str, record, records) -> bool:
    """May this level be signed off now, given the others?"""
    return LEVEL_GATES[mode or ApprovalMode.SEQUENTIAL](record, records)


def can_sign_off(tenant_id: str, user, record) -> bool:
    """User is the level's named user, or holds its role."""
    if user is None:
        return False
    if record.required_user_id is not None:
        return user.pk == record.required_user_id
    if record.required_role_id is not None:
        return get_membership_backend().role_id_for(tenant_id, user) == record.required_role_id
    return False


# ══════════════════════════════════════════════════════════════
# RESULTS
# ══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Evaluation:
    """Outcome of evaluate()."""

    matched: bool
    rule: ApprovalRule | None = None
    records: tuple[TransferApprovalRecord, ...] = ()


@dataclass(frozen=True)
class LevelProgress:
    level: int
    name: str
    status: str
    is_open: bool
    required_role_id: int | None
    required_user_id: int | None
    decided_by_id: int | None


@dataclass(frozen=True)
class ApprovalProgress:
    requires_approval: bool
    mode: str = ''
    levels: tuple[LevelProgress, ...] = ()

    @property
    def next_levels(self) -> list[int]:
        """Pending levels that can be signed off now."""
        return [lvl.level for lvl in self.levels if lvl.status == ApprovalStatus.PENDING and lvl.is_open]

    @property
    def is_complete(self) -> bool:
        return bool(self.levels) and all(lvl.status == ApprovalStatus.APPROVED for lvl in self.levels)


class ApprovalEvaluation:
    """Rule matching and multi-level sign-off."""

    @classmethod
    def active_rules(cls, tenant_id: str) -> list[ApprovalRule]:
        """Evaluable rules, highest priority first. Never cached."""
        return list(
            ApprovalRule.objects.evaluable(tenant_id).prefetch_related('conditions', 'levels')
        )

    @classmethod
    def match(cls, transfer) -> ApprovalRule | None:
        """First rule (by priority) whose conditions all hold, or None."""
        for rule in cls.active_rules(transfer.tenant_id):
            if rule_matches(rule, transfer):
                return rule
        return None

    @classmethod
    def evaluate(cls, transfer) -> Evaluation:
        """
        Decide between single-step review and multi-level approval.

        On a match, creates one PENDING TransferApprovalRecord per level and
        records the rule and its mode on the transfer. Caller owns the
        transaction.
        """
        rule = cls.match(transfer)
        if rule is None:
            logger.debug("approval.no_match", extra={"transfer": transfer.pk})
            return Evaluation(matched=False)

        records = TransferApprovalRecord.objects.bulk_create([
            TransferApprovalRecord(
                transfer=transfer,
                level=level.level,
                level_name=level.name,
                status=ApprovalStatus.PENDING,
                is_gated=level.is_gated,
                required_role_id=level.required_role_id,
                required_user_id=level.required_user_id,
            )
            for level in sorted(rule.levels.all(), key=lambda lvl: lvl.level)
        ])

        transfer.requires_multi_level_approval = True
        transfer.approval_rule = rule
        transfer.approval_mode = rule.approval_mode
        transfer.save(update_fields=[
            'requires_multi_level_approval', 'approval_rule', 'approval_mode', 'updated_at',
        ])
        logger.info(
            "approval.matched",
            extra={"transfer": transfer.pk, "rule": rule.pk, "mode": rule.approval_mode, "levels": len(records)},
        )
        return Evaluation(matched=True, rule=rule, records=tuple(records))

    @classmethod
    def submit(cls, tenant_id: str, transfer_id: int, level: int, user,
               action: str = 'approve', notes: str = '',
               correlation_id: str | None = None) -> StockTransfer:
        """
        Sign off (or reject) one approval level.

        Approving the last pending level approves the transfer with
        qty_approved = qty_requested on every item. Rejecting any level
        rejects the transfer; remaining pending levels become SKIPPED.

        Raises:
            NotFound('TRANSFER_NOT_FOUND' | 'LEVEL_NOT_FOUND')
            InvalidRequest('INVALID_ACTION')
            Conflict('NOT_MULTI_LEVEL' | 'LEVEL_DECIDED' | 'INVALID_STATUS' | 'LEVEL_BLOCKED')
            Forbidden('NOT_LEVEL_APPROVER')
        """
        if action not in ('approve', 'reject'):
            raise InvalidRequest('INVALID_ACTION', action=action)
        context = AuditContext(actor=user, correlation_id=correlation_id)

        with serializable():
            transfer = (
                StockTransfer.objects.select_for_update()
                .filter(pk=transfer_id, tenant_id=tenant_id)
                .first()
            )
            if transfer is None:
                raise NotFound('TRANSFER_NOT_FOUND', transfer_id=transfer_id)
            if not transfer.requires_multi_level_approval:
                raise Conflict('NOT_MULTI_LEVEL', transfer_id=transfer_id)

            records = list(transfer.approval_records.order_by('level'))
            current = next((r for r in records if r.level == level), None)
            if current is None:
                raise NotFound('LEVEL_NOT_FOUND', transfer_id=transfer_id, level=level)

            outcome = ApprovalStatus.APPROVED if action == 'approve' else ApprovalStatus.REJECTED
            if current.status == outcome and current.decided_by_id == getattr(user, 'pk', None):
                # Same decision replayed
                return transfer
            if current.status != ApprovalStatus.PENDING:
                raise Conflict('LEVEL_DECIDED', level=level, status=current.status)
            if transfer.status != TransferStatus.REQUESTED:
                raise Conflict('INVALID_STATUS', status=transfer.status, expected=[TransferStatus.REQUESTED])
            if not can_sign_off(tenant_id, user, current):
                raise Forbidden('NOT_LEVEL_APPROVER', level=level)
            if not level_open(transfer.approval_mode, current, records):
                raise Conflict('LEVEL_BLOCKED', level=level, mode=transfer.approval_mode)

            before = transfer_snapshot(transfer)
            now = timezone.now()
            current.status = outcome
            current.decided_by = user
            current.decided_at = now
            current.notes = notes or ''
            current.save(update_fields=['status', 'decided_by', 'decided_at', 'notes'])

            if outcome == ApprovalStatus.REJECTED:
                transfer.approval_records.filter(status=ApprovalStatus.PENDING).update(
                    status=ApprovalStatus.SKIPPED,
                )
                cls._finish(transfer, TransferStatus.REJECTED, user, now, notes)
                action_name = 'TRANSFER_REJECT'
            elif all(r.status == ApprovalStatus.APPROVED for r in records):
                for item in transfer.items.all():
                    item.qty_approved = item.qty_requested
                    item.save(update_fields=['qty_approved'])
                cls._finish(transfer, TransferStatus.APPROVED, user, now, notes)
                action_name = 'TRANSFER_APPROVE'
            else:
                action_name = 'TRANSFER_APPROVE_LEVEL'

            after = transfer_snapshot(transfer)
            after['approval_level'] = {'level': level, 'status': outcome, 'decided_by_id': user.pk}
            record(
                context, tenant_id=tenant_id, entity_type='STOCK_TRANSFER', entity_id=transfer.pk,
                action=action_name, before=before, after=after,
            )
            logger.info(
                "transfer.approval_level",
                extra={
                    "transfer": transfer.transfer_number,
                    "level": level,
                    "outcome": outcome,
                    "status": transfer.status,
                },
            )
            return transfer

    @classmethod
    def _finish(cls, transfer, status, user, now, notes):
        transfer.status = status
        transfer.reviewed_by = user
        transfer.reviewed_at = now
        if notes:
            transfer.review_notes = notes
        transfer.save(update_fields=['status', 'reviewed_by', 'reviewed_at', 'review_notes', 'updated_at'])

    @classmethod
    def progress(cls, transfer) -> ApprovalProgress:
        """Per-level status of a transfer's multi-level approval."""
        if not transfer.requires_multi_level_approval:
            return ApprovalProgress(requires_approval=False)
        records = list(transfer.approval_records.order_by('level'))
        return ApprovalProgress(
            requires_approval=True,
            mode=transfer.approval_mode,
            levels=tuple(
                LevelProgress(
                    level=r.level,
                    name=r.level_name,
                    status=r.status,
                    is_open=level_open(transfer.approval_mode, r, records),
                    required_role_id=r.required_role_id,
                    required_user_id=r.required_user_id,
                    decided_by_id=r.decided_by_id,
                )
                for r in records
            ),
        )
