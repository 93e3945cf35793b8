"""
Stock transfers — request, review, ship, receive, cancel and reverse.

Lifecycle:

    REQUESTED ──approve──> APPROVED ──ship (all)──> IN_TRANSIT ──receive (all)──> COMPLETED
        │                     │                                                   │
        ├──reject──> REJECTED └──cancel (nothing shipped)──> CANCELLED           reverse
        └──cancel──> CANCELLED                                                    │
                                                             new COMPLETED transfer, reversal_of set

Every mutation runs in one serializable() block: stock movements, item and
transfer updates and the audit event commit together or not at all.
Stock movements nest inside it as savepoints.

Who may act (re-checked here, whatever the caller already verified):
    create        member of the initiating branch (source for PUSH, destination for PULL)
    review        member of the other branch
    ship          member of the source branch
    receive       member of the destination branch
    cancel        member of the initiating branch
    reverse, read member of either branch
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from quartermaster.adapters import get_membership_backend
from quartermaster.conf import quartermaster_settings
from quartermaster.db import serializable
from quartermaster.exceptions import Conflict, Forbidden, InvalidRequest, NotFound
from quartermaster.models import (
    InitiationType,
    StockTransfer,
    StockTransferItem,
    TransferPriority,
    TransferStatus,
)
from quartermaster.protocols.audit import AuditContext
from quartermaster.services.access import get_branch, get_product, is_branch_member, require_branch_member
from quartermaster.services.approvals import ApprovalEvaluation
from quartermaster.services.audit import record, transfer_snapshot
from quartermaster.services.movements import StockMovements, validate_quantity
from quartermaster.services.paging import after_keyset, decode_keyset, encode_keyset
from quartermaster.services.reversal import reverse_lots_at_branch
from quartermaster.shipments import (
    LotConsumption,
    ShipmentBatch,
    allocate_receipt,
    weighted_average_cost,
)

logger = logging.getLogger('quartermaster')

ENTITY = 'STOCK_TRANSFER'

TRANSFER_SORT_FIELDS = ('requested_at', 'updated_at', 'transfer_number', 'status')
DATETIME_SORT_FIELDS = ('requested_at', 'updated_at')


@dataclass(frozen=True)
class TransferPage:
    items: list[StockTransfer]
    has_next: bool
    next_cursor: str | None


# ══════════════════════════════════════════════════════════════
# HELPERS
# ══════════════════════════════════════════════════════════════


def next_transfer_number(tenant_id: str, prefix: str, year: int) -> str:
    """Highest number issued this year for the tenant, plus one."""
    stem = f"{prefix}-{year}-"
    numbers = StockTransfer.objects.filter(
        tenant_id=tenant_id, transfer_number__startswith=stem,
    ).values_list('transfer_number', flat=True)
    highest = 0
    for number in numbers:
        match = re.search(r'(\d+)$', number)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{stem}{highest + 1:04d}"


def _create_numbered(tenant_id: str, **fields) -> StockTransfer:
    """
    Insert a transfer under a fresh number, retrying on number collision.

    Other integrity errors are not retried: a second reversal of the same
    transfer is Conflict('ALREADY_REVERSED'), anything else propagates.
    """
    prefix = quartermaster_settings.TRANSFER_NUMBER_PREFIX
    attempts = max(1, quartermaster_settings.TRANSFER_NUMBER_ATTEMPTS)
    year = timezone.now().year
    for attempt in range(1, attempts + 1):
        number = next_transfer_number(tenant_id, prefix, year)
        try:
            with transaction.atomic():
                return StockTransfer.objects.create(tenant_id=tenant_id, transfer_number=number, **fields)
        except IntegrityError:
            if not StockTransfer.objects.filter(tenant_id=tenant_id, transfer_number=number).exists():
                original = fields.get('reversal_of')
                if original is not None and StockTransfer.objects.filter(reversal_of=original).exists():
                    raise Conflict('ALREADY_REVERSED', transfer_id=original.pk) from None
                raise
            logger.warning(
                "transfer.number_collision",
                extra={"tenant": tenant_id, "number": number, "attempt": attempt},
            )
    raise Conflict('TRANSFER_NUMBER_TAKEN', attempts=attempts)


def _load(tenant_id: str, transfer_id: int, lock: bool = True) -> StockTransfer:
    qs = StockTransfer.objects.select_related('source_branch', 'destination_branch')
    if lock:
        qs = qs.select_for_update(of=('self',))
    transfer = qs.filter(pk=transfer_id, tenant_id=tenant_id).first()
    if transfer is None:
        raise NotFound('TRANSFER_NOT_FOUND', transfer_id=transfer_id)
    return transfer


def _require_status(transfer, *allowed):
    if transfer.status not in allowed:
        raise Conflict(
            'INVALID_STATUS',
            transfer_id=transfer.pk,
            status=transfer.status,
            expected=list(allowed),
        )


def _require_either_member(tenant_id, user, transfer):
    if not (is_branch_member(tenant_id, user, transfer.source_branch)
            or is_branch_member(tenant_id, user, transfer.destination_branch)):
        raise Forbidden('NOT_BRANCH_MEMBER', transfer_id=transfer.pk)


def _locked_items(transfer):
    """Items of transfer, row-locked; their products stay unlocked."""
    return transfer.items.select_related('product').select_for_update(of=('self',))


def _item_map(transfer) -> dict[int, StockTransferItem]:
    return {item.pk: item for item in _locked_items(transfer)}


def _targeted(items_by_id, requested, key):
    """Resolve [{'item_id', key}] against the transfer's items."""
    resolved = []
    seen = set()
    for entry in requested:
        item_id = entry.get('item_id')
        item = items_by_id.get(item_id)
        if item is None:
            raise NotFound('ITEM_NOT_FOUND', item_id=item_id)
        if item_id in seen:
            raise InvalidRequest('DUPLICATE_ITEM', item_id=item_id)
        seen.add(item_id)
        qty = entry.get(key)
        validate_quantity(qty)
        resolved.append((item, qty))
    return resolved


def _audit(context, transfer, action, before, **extra):
    after = transfer_snapshot(transfer)
    after.update(extra)
    record(
        context, tenant_id=transfer.tenant_id, entity_type=ENTITY, entity_id=transfer.pk,
        action=action, before=before, after=after,
    )


class StockTransfers:
    """Transfer lifecycle between two branches of a tenant."""

    # ══════════════════════════════════════════════════════════════
    # CREATE
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def create(cls, tenant_id: str, user, source_branch_id: int, destination_branch_id: int,
               items: list[dict[str, Any]], initiation_type: str = InitiationType.PUSH,
               priority: str = TransferPriority.NORMAL, request_notes: str = '',
               order_notes: str = '', correlation_id: str | None = None) -> StockTransfer:
        """
        Request stock to move between two branches.

        Args:
            items: [{'product_id': 1, 'qty_requested': 10}, ...]
            initiation_type: PUSH (source asks) or PULL (destination asks)

        Returns:
            REQUESTED transfer; requires_multi_level_approval is set when an
            approval rule matched

        Raises:
            NotFound('BRANCH_NOT_FOUND' | 'PRODUCT_NOT_FOUND')
            InvalidRequest('SAME_BRANCH' | 'EMPTY_ITEMS' | 'INVALID_QUANTITY' | 'DUPLICATE_ITEM')
            Forbidden('NOT_BRANCH_MEMBER'): Not a member of the initiating branch
        """
        if initiation_type not in InitiationType.values:
            raise InvalidRequest('INVALID_INITIATION', initiation_type=initiation_type)
        if priority not in TransferPriority.values:
            raise InvalidRequest('INVALID_PRIORITY', priority=priority)
        if source_branch_id == destination_branch_id:
            raise InvalidRequest('SAME_BRANCH', branch_id=source_branch_id)
        if not items:
            raise InvalidRequest('EMPTY_ITEMS')

        source = get_branch(tenant_id, source_branch_id)
        destination = get_branch(tenant_id, destination_branch_id)
        initiating = destination if initiation_type == InitiationType.PULL else source
        require_branch_member(tenant_id, user, initiating, initiation_type=initiation_type)

        lines = []
        seen = set()
        for entry in items:
            product = get_product(tenant_id, entry.get('product_id'))
            if product.pk in seen:
                raise InvalidRequest('DUPLICATE_ITEM', product_id=product.pk)
            seen.add(product.pk)
            validate_quantity(entry.get('qty_requested'))
            lines.append((product, entry['qty_requested']))

        context = AuditContext(actor=user, correlation_id=correlation_id)
        with serializable():
            transfer = _create_numbered(
                tenant_id,
                source_branch=source,
                destination_branch=destination,
                initiation_type=initiation_type,
                status=TransferStatus.REQUESTED,
                priority=priority,
                requested_by=user,
                request_notes=request_notes,
                order_notes=order_notes,
            )
            StockTransferItem.objects.bulk_create([
                StockTransferItem(transfer=transfer, product=product, qty_requested=qty, shipment_batches=[])
                for product, qty in lines
            ])
            evaluation = ApprovalEvaluation.evaluate(transfer)
            _audit(
                context, transfer, 'TRANSFER_REQUEST', None,
                approval_rule_id=evaluation.rule.pk if evaluation.rule else None,
                approval_levels=len(evaluation.records),
            )
            logger.info(
                "transfer.create",
                extra={
                    "tenant": tenant_id,
                    "transfer": transfer.transfer_number,
                    "initiation": initiation_type,
                    "items": len(lines),
                    "multi_level": evaluation.matched,
                },
            )
            return transfer

    # ══════════════════════════════════════════════════════════════
    # REVIEW
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def review(cls, tenant_id: str, transfer_id: int, user, action: str,
               items: list[dict[str, Any]] | None = None, review_notes: str = '',
               correlation_id: str | None = None) -> StockTransfer:
        """
        Approve or reject a REQUESTED transfer (single-step flow).

        Args:
            action: 'approve' or 'reject'
            items: Optional [{'item_id', 'qty_approved'}]; unlisted items are
                approved at qty_requested

        Approving an APPROVED transfer or rejecting a REJECTED one returns it
        unchanged.

        Raises:
            Forbidden('NOT_BRANCH_MEMBER'): Not a member of the reviewing branch
            Conflict('MULTI_LEVEL_APPROVAL_REQUIRED'): Transfer matched a rule
            Conflict('INVALID_STATUS')
            InvalidRequest('INVALID_QUANTITY'): qty_approved outside 0..qty_requested
        """
        if action not in ('approve', 'reject'):
            raise InvalidRequest('INVALID_ACTION', action=action)
        context = AuditContext(actor=user, correlation_id=correlation_id)

        with serializable():
            transfer = _load(tenant_id, transfer_id)
            require_branch_member(tenant_id, user, transfer.reviewing_branch, transfer_id=transfer.pk)

            if action == 'approve' and transfer.status == TransferStatus.APPROVED:
                return transfer
            if action == 'reject' and transfer.status == TransferStatus.REJECTED:
                return transfer
            if transfer.requires_multi_level_approval:
                raise Conflict('MULTI_LEVEL_APPROVAL_REQUIRED', transfer_id=transfer.pk)
            _require_status(transfer, TransferStatus.REQUESTED)

            before = transfer_snapshot(transfer)
            if action == 'approve':
                items_by_id = _item_map(transfer)
                approved = {item_id: item.qty_requested for item_id, item in items_by_id.items()}
                for entry in items or []:
                    item_id = entry.get('item_id')
                    if item_id not in items_by_id:
                        raise NotFound('ITEM_NOT_FOUND', item_id=item_id)
                    qty = entry.get('qty_approved')
                    limit = items_by_id[item_id].qty_requested
                    if isinstance(qty, bool) or not isinstance(qty, int) or not 0 <= qty <= limit:
                        raise InvalidRequest('INVALID_QUANTITY', item_id=item_id, requested=qty, maximum=limit)
                    approved[item_id] = qty
                if not any(approved.values()):
                    raise InvalidRequest('INVALID_QUANTITY', reason='nothing approved')
                for item_id, item in items_by_id.items():
                    item.qty_approved = approved[item_id]
                    item.save(update_fields=['qty_approved'])
                transfer.status = TransferStatus.APPROVED
                audit_action = 'TRANSFER_APPROVE'
            else:
                transfer.status = TransferStatus.REJECTED
                audit_action = 'TRANSFER_REJECT'

            transfer.reviewed_by = user
            transfer.reviewed_at = timezone.now()
            transfer.review_notes = review_notes or ''
            transfer.save(update_fields=['status', 'reviewed_by', 'reviewed_at', 'review_notes', 'updated_at'])
            _audit(context, transfer, audit_action, before)
            logger.info(
                "transfer.review",
                extra={"transfer": transfer.transfer_number, "action": action, "status": transfer.status},
            )
            return transfer

    @classmethod
    def submit_approval(cls, tenant_id: str, transfer_id: int, level: int, user,
                        action: str = 'approve', notes: str = '',
                        correlation_id: str | None = None) -> StockTransfer:
        """Sign off one level of a multi-level approval. See ApprovalEvaluation.submit."""
        return ApprovalEvaluation.submit(
            tenant_id, transfer_id, level, user, action=action, notes=notes, correlation_id=correlation_id,
        )

    @classmethod
    def approval_progress(cls, tenant_id: str, transfer_id: int, user):
        transfer = cls.get(tenant_id, transfer_id, user)
        return ApprovalEvaluation.progress(transfer)

    # ══════════════════════════════════════════════════════════════
    # SHIP / RECEIVE
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def ship(cls, tenant_id: str, transfer_id: int, user, items: list[dict[str, Any]] | None = None,
             correlation_id: str | None = None) -> StockTransfer:
        """
        Consume approved stock at the source branch, oldest lots first.

        Args:
            items: Optional [{'item_id', 'qty_to_ship'}]; None ships everything
                still approved. Quantities above what remains are capped.

        Each shipped item gets a shipment batch recording the lots consumed.
        The transfer moves to IN_TRANSIT once every item is fully shipped and
        otherwise stays APPROVED for further partial shipments.

        Raises:
            Forbidden('NOT_BRANCH_MEMBER'): Not a member of the source branch
            Conflict('INVALID_STATUS'): Not APPROVED
            InvalidRequest('NOTHING_TO_SHIP' | 'INVALID_QUANTITY')
            InsufficientStock: Source lots cannot cover a line; nothing is shipped
        """
        context = AuditContext(actor=user, correlation_id=correlation_id)

        with serializable():
            transfer = _load(tenant_id, transfer_id)
            require_branch_member(tenant_id, user, transfer.source_branch, transfer_id=transfer.pk)
            _require_status(transfer, TransferStatus.APPROVED)

            items_by_id = _item_map(transfer)
            if items is None:
                targets = [(item, item.qty_remaining_to_ship) for item in items_by_id.values()]
            else:
                targets = _targeted(items_by_id, items, 'qty_to_ship')
            targets = [(item, min(qty, item.qty_remaining_to_ship)) for item, qty in targets]
            targets = [(item, qty) for item, qty in targets if qty > 0]
            if not targets:
                raise InvalidRequest('NOTHING_TO_SHIP', transfer_id=transfer.pk)

            before = transfer_snapshot(transfer)
            now = timezone.now()
            shipped = []
            for item, qty in targets:
                consumption = StockMovements.consume(
                    qty, item.product, transfer.source_branch,
                    reason=f"Transfer {transfer.transfer_number}",
                    context=context,
                )
                batches = item.batches
                batch = ShipmentBatch(
                    batch_number=len(batches) + 1,
                    qty=qty,
                    shipped_at=now.isoformat(),
                    shipped_by_id=getattr(user, 'pk', None),
                    lots_consumed=tuple(
                        LotConsumption(take.lot_id, take.take, take.unit_cost_pence)
                        for take in consumption.affected
                    ),
                )
                batches.append(batch)
                item.shipment_batches = [b.to_dict() for b in batches]
                item.qty_shipped += qty
                item.avg_unit_cost_pence = weighted_average_cost(
                    lot for b in batches for lot in b.lots_consumed
                )
                item.save(update_fields=['shipment_batches', 'qty_shipped', 'avg_unit_cost_pence'])
                shipped.append({'item_id': item.pk, 'qty': qty, 'batch_number': batch.batch_number})

            complete = all(item.qty_remaining_to_ship == 0 for item in items_by_id.values())
            if complete:
                transfer.status = TransferStatus.IN_TRANSIT
            transfer.shipped_by = user
            transfer.shipped_at = now
            transfer.save(update_fields=['status', 'shipped_by', 'shipped_at', 'updated_at'])
            _audit(
                context, transfer, 'TRANSFER_SHIP' if complete else 'TRANSFER_SHIP_PARTIAL', before,
                shipped=shipped,
            )
            logger.info(
                "transfer.ship",
                extra={
                    "transfer": transfer.transfer_number,
                    "lines": len(shipped),
                    "qty": sum(s['qty'] for s in shipped),
                    "status": transfer.status,
                },
            )
            return transfer

    @classmethod
    def receive(cls, tenant_id: str, transfer_id: int, user, items: list[dict[str, Any]],
                correlation_id: str | None = None) -> StockTransfer:
        """
        Book shipped stock into the destination branch.

        Args:
            items: [{'item_id', 'qty_received'}]

        Each received line becomes a new destination lot whose unit cost is
        the weighted average of the source lots in the received portion
        (shipment batches are drawn oldest first). The transfer completes
        once every item is fully received.

        Raises:
            Forbidden('NOT_BRANCH_MEMBER'): Not a member of the destination branch
            Conflict('INVALID_STATUS'): Not IN_TRANSIT
            InvalidRequest('EMPTY_ITEMS' | 'INVALID_QUANTITY')
        """
        if not items:
            raise InvalidRequest('EMPTY_ITEMS')
        context = AuditContext(actor=user, correlation_id=correlation_id)

        with serializable():
            transfer = _load(tenant_id, transfer_id)
            require_branch_member(tenant_id, user, transfer.destination_branch, transfer_id=transfer.pk)
            _require_status(transfer, TransferStatus.IN_TRANSIT)

            items_by_id = _item_map(transfer)
            targets = _targeted(items_by_id, items, 'qty_received')
            for item, qty in targets:
                if qty > item.qty_in_transit:
                    raise InvalidRequest(
                        'INVALID_QUANTITY', item_id=item.pk, requested=qty, available=item.qty_in_transit,
                    )

            before = transfer_snapshot(transfer)
            received = []
            for item, qty in targets:
                portion = allocate_receipt(item.batches, item.qty_received, qty)
                unit_cost = weighted_average_cost(portion)
                if unit_cost is None:
                    unit_cost = item.avg_unit_cost_pence
                lot = StockMovements.receive(
                    qty, item.product, transfer.destination_branch,
                    unit_cost_pence=unit_cost,
                    reason=f"Transfer {transfer.transfer_number}",
                    source_ref=transfer.transfer_number,
                    context=context,
                )
                item.qty_received += qty
                item.save(update_fields=['qty_received'])
                received.append({'item_id': item.pk, 'qty': qty, 'lot_id': lot.pk, 'unit_cost_pence': unit_cost})

            complete = all(item.qty_received == item.qty_shipped for item in items_by_id.values())
            transfer.received_by = user
            update_fields = ['received_by', 'updated_at']
            if complete:
                transfer.status = TransferStatus.COMPLETED
                transfer.completed_at = timezone.now()
                update_fields += ['status', 'completed_at']
            transfer.save(update_fields=update_fields)
            _audit(context, transfer, 'TRANSFER_RECEIVE', before, received=received)
            logger.info(
                "transfer.receive",
                extra={
                    "transfer": transfer.transfer_number,
                    "lines": len(received),
                    "qty": sum(r['qty'] for r in received),
                    "status": transfer.status,
                },
            )
            return transfer

    # ══════════════════════════════════════════════════════════════
    # CANCEL / PRIORITY
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def cancel(cls, tenant_id: str, transfer_id: int, user, correlation_id: str | None = None) -> StockTransfer:
        """
        Cancel a transfer before anything has shipped.

        Cancelling a CANCELLED transfer returns it unchanged.

        Raises:
            Forbidden('NOT_BRANCH_MEMBER'): Not a member of the initiating branch
            Conflict('INVALID_STATUS'): Not REQUESTED/APPROVED, or partly shipped
        """
        context = AuditContext(actor=user, correlation_id=correlation_id)

        with serializable():
            transfer = _load(tenant_id, transfer_id)
            require_branch_member(tenant_id, user, transfer.initiating_branch, transfer_id=transfer.pk)
            if transfer.status == TransferStatus.CANCELLED:
                return transfer
            _require_status(transfer, TransferStatus.REQUESTED, TransferStatus.APPROVED)
            shipped = sum(item.qty_shipped for item in transfer.items.all())
            if shipped:
                raise Conflict('INVALID_STATUS', transfer_id=transfer.pk, status=transfer.status, shipped=shipped)

            before = transfer_snapshot(transfer)
            transfer.status = TransferStatus.CANCELLED
            transfer.save(update_fields=['status', 'updated_at'])
            _audit(context, transfer, 'TRANSFER_CANCEL', before)
            logger.info("transfer.cancel", extra={"transfer": transfer.transfer_number})
            return transfer

    @classmethod
    def update_priority(cls, tenant_id: str, transfer_id: int, user, priority: str,
                        correlation_id: str | None = None) -> StockTransfer:
        """
        Change urgency while the transfer has not left.

        Raises:
            InvalidRequest('INVALID_PRIORITY')
            Forbidden('NOT_BRANCH_MEMBER'): Not a member of either branch
            Conflict('INVALID_STATUS'): Not REQUESTED/APPROVED
        """
        if priority not in TransferPriority.values:
            raise InvalidRequest('INVALID_PRIORITY', priority=priority)
        context = AuditContext(actor=user, correlation_id=correlation_id)

        with serializable():
            transfer = _load(tenant_id, transfer_id)
            _require_either_member(tenant_id, user, transfer)
            _require_status(transfer, TransferStatus.REQUESTED, TransferStatus.APPROVED)
            if transfer.priority == priority:
                return transfer
            before = transfer_snapshot(transfer)
            transfer.priority = priority
            transfer.save(update_fields=['priority', 'updated_at'])
            _audit(context, transfer, 'TRANSFER_PRIORITY_CHANGE', before)
            logger.info("transfer.priority", extra={"transfer": transfer.transfer_number, "priority": priority})
            return transfer

    # ══════════════════════════════════════════════════════════════
    # REVERSE
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def reverse(cls, tenant_id: str, transfer_id: int, user, reason: str = '',
                correlation_id: str | None = None) -> StockTransfer:
        """
        Undo a COMPLETED transfer.

        Restores the exact source lots the shipments consumed (same lot ids,
        same cost and FIFO age), consumes the received quantity at the
        destination, and records a new COMPLETED transfer going the other
        way with reversal_of pointing at the original. The destination lots
        consumed are kept as the new transfer's shipment batches, so a
        reversal can itself be reversed.

        Returns:
            The reversal transfer

        Raises:
            Forbidden('NOT_BRANCH_MEMBER'): Not a member of either branch
            Conflict('INVALID_STATUS'): Not COMPLETED
            Conflict('ALREADY_REVERSED')
            NotFound('LOT_NOT_FOUND'): A recorded source lot is gone
            InsufficientStock: Destination no longer holds the received stock
        """
        context = AuditContext(actor=user, correlation_id=correlation_id)

        with serializable():
            transfer = _load(tenant_id, transfer_id)
            _require_either_member(tenant_id, user, transfer)
            _require_status(transfer, TransferStatus.COMPLETED)
            if StockTransfer.objects.filter(reversal_of=transfer).exists():
                raise Conflict('ALREADY_REVERSED', transfer_id=transfer.pk)

            before = transfer_snapshot(transfer)
            items = list(_locked_items(transfer))
            restoration = reverse_lots_at_branch(
                transfer.source_branch, items, transfer.transfer_number, context=context,
            )

            now = timezone.now()
            reversal = _create_numbered(
                tenant_id,
                source_branch=transfer.destination_branch,
                destination_branch=transfer.source_branch,
                initiation_type=transfer.initiation_type,
                status=TransferStatus.COMPLETED,
                priority=transfer.priority,
                requested_by=user,
                reviewed_by=user,
                shipped_by=user,
                received_by=user,
                reviewed_at=now,
                shipped_at=now,
                completed_at=now,
                is_reversal=True,
                reversal_of=transfer,
                reversal_reason=reason or '',
                request_notes=f"Reversal of {transfer.transfer_number}",
            )

            for item in items:
                if item.qty_received <= 0:
                    continue
                consumption = StockMovements.consume(
                    item.qty_received, item.product, transfer.destination_branch,
                    reason=f"Reversal of {transfer.transfer_number}",
                    context=context,
                )
                lots = tuple(
                    LotConsumption(take.lot_id, take.take, take.unit_cost_pence)
                    for take in consumption.affected
                )
                batch = ShipmentBatch(
                    batch_number=1,
                    qty=item.qty_received,
                    shipped_at=now.isoformat(),
                    shipped_by_id=getattr(user, 'pk', None),
                    lots_consumed=lots,
                )
                StockTransferItem.objects.create(
                    transfer=reversal,
                    product=item.product,
                    qty_requested=item.qty_received,
                    qty_approved=item.qty_received,
                    qty_shipped=item.qty_received,
                    qty_received=item.qty_received,
                    avg_unit_cost_pence=weighted_average_cost(lots),
                    shipment_batches=[batch.to_dict()],
                )

            restored = [[r.lot_id, r.qty] for r in restoration.restored] if restoration else []
            _audit(
                context, reversal, 'TRANSFER_REVERSE', None,
                reversal_of_number=transfer.transfer_number,
                restored_lots=restored,
                reason=reason or '',
            )
            _audit(
                context, transfer, 'TRANSFER_REVERSE', before,
                reversed_by_id=reversal.pk,
                reversed_by_number=reversal.transfer_number,
            )
            logger.info(
                "transfer.reverse",
                extra={
                    "transfer": transfer.transfer_number,
                    "reversal": reversal.transfer_number,
                    "lots": len(restored),
                },
            )
            return reversal

    # ══════════════════════════════════════════════════════════════
    # READS
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def get(cls, tenant_id: str, transfer_id: int, user) -> StockTransfer:
        """
        Transfer visible to a member of either branch.

        Raises:
            NotFound('TRANSFER_NOT_FOUND')
            Forbidden('NOT_BRANCH_MEMBER')
        """
        transfer = _load(tenant_id, transfer_id, lock=False)
        _require_either_member(tenant_id, user, transfer)
        return transfer

    @classmethod
    def list(cls, tenant_id: str, user, branch_id: int | None = None, direction: str | None = None,
             statuses: list[str] | None = None, initiation_type: str | None = None,
             q: str | None = None,
             requested_from: datetime | None = None, requested_to: datetime | None = None,
             shipped_from: datetime | None = None, shipped_to: datetime | None = None,
             sort_by: str = 'requested_at', sort_dir: str = 'desc',
             limit: int = 20, cursor: str | None = None) -> TransferPage:
        """
        Transfers touching the user's branches, newest first by default.

        Args:
            branch_id: Restrict to one of the user's branches
            direction: 'inbound' (destination) or 'outbound' (source),
                relative to branch_id or to all of the user's branches
            statuses: TransferStatus values
            q: Case-insensitive search within the transfer number
            requested_from / requested_to: Inclusive window on requested_at
            shipped_from / shipped_to: Inclusive window on shipped_at
            sort_by: requested_at, updated_at, transfer_number or status
            sort_dir: 'asc' or 'desc'; ties are broken by id in the same direction
            cursor: next_cursor of the previous page (same sort)
        """
        if direction not in (None, 'inbound', 'outbound'):
            raise InvalidRequest('INVALID_FIELD', direction=direction)
        if sort_by not in TRANSFER_SORT_FIELDS:
            raise InvalidRequest('INVALID_FIELD', sort_by=sort_by)
        if sort_dir not in ('asc', 'desc'):
            raise InvalidRequest('INVALID_FIELD', sort_dir=sort_dir)
        branch_ids = get_membership_backend().branch_ids_for(tenant_id, user)
        if branch_id is not None:
            if branch_id not in branch_ids:
                raise Forbidden('NOT_BRANCH_MEMBER', branch_id=branch_id)
            branch_ids = [branch_id]

        qs = StockTransfer.objects.filter(tenant_id=tenant_id)
        if direction == 'inbound':
            qs = qs.filter(destination_branch_id__in=branch_ids)
        elif direction == 'outbound':
            qs = qs.filter(source_branch_id__in=branch_ids)
        else:
            qs = qs.filter(Q(source_branch_id__in=branch_ids) | Q(destination_branch_id__in=branch_ids))
        if statuses:
            qs = qs.filter(status__in=statuses)
        if initiation_type:
            qs = qs.filter(initiation_type=initiation_type)
        if q:
            qs = qs.filter(transfer_number__icontains=q.strip())
        if requested_from is not None:
            qs = qs.filter(requested_at__gte=requested_from)
        if requested_to is not None:
            qs = qs.filter(requested_at__lte=requested_to)
        if shipped_from is not None:
            qs = qs.filter(shipped_at__gte=shipped_from)
        if shipped_to is not None:
            qs = qs.filter(shipped_at__lte=shipped_to)

        descending = sort_dir == 'desc'
        if cursor:
            value, pk = decode_keyset(cursor, is_datetime=sort_by in DATETIME_SORT_FIELDS)
            qs = qs.filter(after_keyset(sort_by, value, pk, descending))
        sign = '-' if descending else ''
        qs = qs.order_by(f'{sign}{sort_by}', f'{sign}id')

        size = max(1, min(int(limit), quartermaster_settings.LEDGER_MAX_PAGE_SIZE))
        rows = list(qs.select_related('source_branch', 'destination_branch')[:size + 1])
        has_next = len(rows) > size
        page = rows[:size]
        return TransferPage(
            items=page,
            has_next=has_next,
            next_cursor=encode_keyset(getattr(page[-1], sort_by), page[-1].pk) if has_next else None,
        )
