"""
Stock movements — state-changing operations (receive, consume, adjust, restore).

Every method runs inside serializable() and locks the lots it reads with
select_for_update(). Lot mutation, ledger insertion and the aggregate update
(done by StockLedger.save) commit together or not at all.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from django.db.models import F
from django.utils import timezone

from quartermaster.db import serializable
from quartermaster.exceptions import InsufficientStock, InvalidRequest, NotFound
from quartermaster.models import LedgerKind, ProductStock, StockLedger, StockLot
from quartermaster.protocols.audit import AuditContext
from quartermaster.services.access import check_same_tenant
from quartermaster.services.audit import product_stock_snapshot, record

logger = logging.getLogger('quartermaster')


@dataclass(frozen=True)
class LotTake:
    """Quantity taken from one lot by a consumption."""

    lot_id: int
    take: int
    unit_cost_pence: int | None
    ledger_id: int


@dataclass(frozen=True)
class LotRestore:
    """Quantity to put back into an existing lot."""

    lot_id: int
    qty: int


@dataclass(frozen=True)
class Consumption:
    """Result of a FIFO consumption."""

    affected: tuple[LotTake, ...]
    stock: ProductStock

    @property
    def quantity(self) -> int:
        return sum(t.take for t in self.affected)


@dataclass(frozen=True)
class Adjustment:
    """Result of adjust(): a new lot for positive deltas, FIFO takes otherwise."""

    delta: int
    stock: ProductStock
    lot: StockLot | None = None
    affected: tuple[LotTake, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Restoration:
    """Result of restore()."""

    restored: tuple[LotRestore, ...]
    stocks: tuple[ProductStock, ...]


def validate_quantity(quantity) -> None:
    """Quantities are positive integers."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidRequest('INVALID_QUANTITY', requested=quantity)


def _locked_stock(tenant_id, branch_id, product_id) -> ProductStock | None:
    return ProductStock.objects.select_for_update().filter(
        tenant_id=tenant_id, branch_id=branch_id, product_id=product_id,
    ).first()


def _current_stock(tenant_id, branch_id, product_id) -> ProductStock:
    return ProductStock.objects.get(tenant_id=tenant_id, branch_id=branch_id, product_id=product_id)


def _actor(context):
    return context.actor if context else None


def create_lot(tenant_id, branch, product, quantity, *, unit_cost_pence, kind, reason,
               occurred_at=None, source_ref='', actor=None, metadata=None) -> StockLot:
    """New lot plus its positive ledger entry. Caller owns the transaction."""
    occurred_at = occurred_at or timezone.now()
    lot = StockLot.objects.create(
        tenant_id=tenant_id,
        branch=branch,
        product=product,
        qty_received=quantity,
        qty_remaining=quantity,
        unit_cost_pence=unit_cost_pence,
        source_ref=source_ref,
        received_at=occurred_at,
    )
    StockLedger.objects.create(
        tenant_id=tenant_id,
        branch=branch,
        product=product,
        lot=lot,
        kind=kind,
        qty_delta=quantity,
        reason=reason,
        occurred_at=occurred_at,
        actor=actor,
        metadata=metadata or {},
    )
    return lot


def consume_fifo(tenant_id, branch, product, quantity, *, kind, reason,
                 occurred_at=None, actor=None, metadata=None) -> tuple[LotTake, ...]:
    """
    Take quantity from the oldest lots first. Caller owns the transaction.

    Raises:
        InsufficientStock: If the lots hold less than quantity (nothing written)
    """
    lots = list(
        StockLot.objects.select_for_update()
        .for_key(tenant_id, branch, product)
        .on_hand()
        .fifo()
    )
    available = sum(lot.qty_remaining for lot in lots)
    if available < quantity:
        raise InsufficientStock(
            available=available,
            requested=quantity,
            branch_id=branch.pk,
            product_id=product.pk,
        )

    occurred_at = occurred_at or timezone.now()
    needed = quantity
    affected = []
    for lot in lots:
        if needed == 0:
            break
        take = min(needed, lot.qty_remaining)
        StockLot.objects.filter(pk=lot.pk).update(qty_remaining=F('qty_remaining') - take)
        entry = StockLedger.objects.create(
            tenant_id=tenant_id,
            branch=branch,
            product=product,
            lot=lot,
            kind=kind,
            qty_delta=-take,
            reason=reason,
            occurred_at=occurred_at,
            actor=actor,
            metadata=metadata or {},
        )
        affected.append(LotTake(lot.pk, take, lot.unit_cost_pence, entry.pk))
        needed -= take
    return tuple(affected)


class StockMovements:
    """State-changing stock movement methods."""

    @classmethod
    def receive(cls, quantity: int, product, branch, unit_cost_pence: int | None = None,
                occurred_at: datetime | None = None, reason: str = 'receipt',
                source_ref: str = '', context: AuditContext | None = None) -> StockLot:
        """
        Stock entry: a new lot holding the whole quantity.

        Creates StockLot with qty_remaining = quantity and a RECEIPT ledger
        entry; the entry increments ProductStock.qty_on_hand.

        Raises:
            InvalidRequest('INVALID_QUANTITY'): If quantity is not a positive int
            NotFound('BRANCH_NOT_FOUND'): If branch and product tenants differ
        """
        validate_quantity(quantity)
        tenant_id = check_same_tenant(product, branch)

        with serializable():
            before = _locked_stock(tenant_id, branch.pk, product.pk)
            before = product_stock_snapshot(before)
            lot = create_lot(
                tenant_id, branch, product, quantity,
                unit_cost_pence=unit_cost_pence,
                kind=LedgerKind.RECEIPT,
                reason=reason,
                occurred_at=occurred_at,
                source_ref=source_ref,
                actor=_actor(context),
            )
            stock = _current_stock(tenant_id, branch.pk, product.pk)
            record(
                context, tenant_id=tenant_id, entity_type='PRODUCT_STOCK', entity_id=stock.pk,
                action='STOCK_RECEIVE', before=before,
                after={**product_stock_snapshot(stock), 'lot_id': lot.pk, 'qty': quantity},
            )
            logger.info(
                "stock.receive",
                extra={
                    "tenant": tenant_id,
                    "product": product.pk,
                    "branch": branch.pk,
                    "qty": quantity,
                    "lot_id": lot.pk,
                },
            )
            return lot

    @classmethod
    def consume(cls, quantity: int, product, branch, reason: str = 'consumption',
                occurred_at: datetime | None = None,
                context: AuditContext | None = None) -> Consumption:
        """
        Stock exit, oldest lots first.

        Writes one CONSUMPTION ledger entry per lot touched.

        Returns:
            Consumption with affected = [LotTake(lot_id, take, unit_cost_pence, ledger_id)]

        Raises:
            InvalidRequest('INVALID_QUANTITY'): If quantity is not a positive int
            InsufficientStock: If total remaining < quantity; nothing is written

        Concurrency:
            - Runs under serializable()
            - Locks the key's lots with select_for_update() before reading them
        """
        validate_quantity(quantity)
        tenant_id = check_same_tenant(product, branch)

        with serializable():
            before = product_stock_snapshot(_locked_stock(tenant_id, branch.pk, product.pk))
            affected = consume_fifo(
                tenant_id, branch, product, quantity,
                kind=LedgerKind.CONSUMPTION,
                reason=reason,
                occurred_at=occurred_at,
                actor=_actor(context),
            )
            stock = _current_stock(tenant_id, branch.pk, product.pk)
            record(
                context, tenant_id=tenant_id, entity_type='PRODUCT_STOCK', entity_id=stock.pk,
                action='STOCK_CONSUME', before=before,
                after={**product_stock_snapshot(stock), 'lots': [[t.lot_id, t.take] for t in affected]},
            )
            logger.info(
                "stock.consume",
                extra={
                    "tenant": tenant_id,
                    "product": product.pk,
                    "branch": branch.pk,
                    "qty": quantity,
                    "lots": len(affected),
                    "reason": reason,
                },
            )
            return Consumption(affected=affected, stock=stock)

    @classmethod
    def adjust(cls, delta: int, product, branch, reason: str | None = None,
               unit_cost_pence: int | None = None, occurred_at: datetime | None = None,
               context: AuditContext | None = None) -> Adjustment:
        """
        Inventory adjustment by a signed delta.

        Positive delta behaves like a receipt (new lot), negative like a FIFO
        consumption. Both write ADJUSTMENT ledger entries.

        Raises:
            InvalidRequest('INVALID_QUANTITY'): If delta is zero or not an int
            InsufficientStock: If a negative delta exceeds what is on hand
        """
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise InvalidRequest('INVALID_QUANTITY', requested=delta)
        tenant_id = check_same_tenant(product, branch)

        with serializable():
            before = product_stock_snapshot(_locked_stock(tenant_id, branch.pk, product.pk))
            lot = None
            affected = ()
            if delta > 0:
                lot = create_lot(
                    tenant_id, branch, product, delta,
                    unit_cost_pence=unit_cost_pence,
                    kind=LedgerKind.ADJUSTMENT,
                    reason=reason or 'adjust-up',
                    occurred_at=occurred_at,
                    actor=_actor(context),
                )
            else:
                affected = consume_fifo(
                    tenant_id, branch, product, -delta,
                    kind=LedgerKind.ADJUSTMENT,
                    reason=reason or 'adjust-down',
                    occurred_at=occurred_at,
                    actor=_actor(context),
                )
            stock = _current_stock(tenant_id, branch.pk, product.pk)
            record(
                context, tenant_id=tenant_id, entity_type='PRODUCT_STOCK', entity_id=stock.pk,
                action='STOCK_ADJUST', before=before,
                after={**product_stock_snapshot(stock), 'delta': delta},
            )
            logger.info(
                "stock.adjust",
                extra={
                    "tenant": tenant_id,
                    "product": product.pk,
                    "branch": branch.pk,
                    "delta": delta,
                    "reason": reason,
                },
            )
            return Adjustment(delta=delta, stock=stock, lot=lot, affected=affected)

    @classmethod
    def restore(cls, lots: Iterable[LotRestore], branch, reason: str,
                context: AuditContext | None = None) -> Restoration:
        """
        Put consumed quantity back into the lots it came from.

        The only path by which consumed stock becomes available again. Targets
        existing lots (never creates one) so FIFO age and cost basis survive.
        Writes one REVERSAL ledger entry per lot.

        Args:
            lots: [LotRestore(lot_id, qty)]; repeated lot ids are summed
            branch: Branch every lot must belong to
            reason: Ledger reason, e.g. "Reversal of TRF-2026-0001"

        Raises:
            InvalidRequest('EMPTY_LOTS'): If lots is empty
            InvalidRequest('INVALID_QUANTITY'): If any qty is not a positive int
            InvalidRequest('RESTORE_EXCEEDS_RECEIVED'): If a lot would end above
                the quantity it was received with
            NotFound('LOT_NOT_FOUND'): If a lot is missing or belongs to another
                tenant or branch
        """
        lots = list(lots)
        if not lots:
            raise InvalidRequest('EMPTY_LOTS')
        wanted: OrderedDict[int, int] = OrderedDict()
        for entry in lots:
            validate_quantity(entry.qty)
            wanted[entry.lot_id] = wanted.get(entry.lot_id, 0) + entry.qty
        tenant_id = branch.tenant_id

        with serializable():
            found = {
                lot.pk: lot
                for lot in StockLot.objects.select_for_update()
                .filter(pk__in=list(wanted), tenant_id=tenant_id, branch=branch)
                .select_related('product')
            }
            missing = [lot_id for lot_id in wanted if lot_id not in found]
            if missing:
                raise NotFound('LOT_NOT_FOUND', lot_ids=missing, branch_id=branch.pk)

            for lot_id, qty in wanted.items():
                lot = found[lot_id]
                if lot.qty_remaining + qty > lot.qty_received:
                    raise InvalidRequest(
                        'RESTORE_EXCEEDS_RECEIVED',
                        lot_id=lot_id, qty=qty,
                        remaining=lot.qty_remaining, received=lot.qty_received,
                    )

            product_ids = list(OrderedDict.fromkeys(found[lot_id].product_id for lot_id in wanted))
            before = {
                pid: product_stock_snapshot(_locked_stock(tenant_id, branch.pk, pid))
                for pid in product_ids
            }

            now = timezone.now()
            for lot_id, qty in wanted.items():
                lot = found[lot_id]
                StockLot.objects.filter(pk=lot_id).update(qty_remaining=F('qty_remaining') + qty)
                StockLedger.objects.create(
                    tenant_id=tenant_id,
                    branch=branch,
                    product=lot.product,
                    lot=lot,
                    kind=LedgerKind.REVERSAL,
                    qty_delta=qty,
                    reason=reason,
                    occurred_at=now,
                    actor=_actor(context),
                )

            stocks = []
            for pid in product_ids:
                stock = _current_stock(tenant_id, branch.pk, pid)
                stocks.append(stock)
                record(
                    context, tenant_id=tenant_id, entity_type='PRODUCT_STOCK', entity_id=stock.pk,
                    action='STOCK_REVERSE', before=before[pid],
                    after={
                        **product_stock_snapshot(stock),
                        'lots': [[lid, q] for lid, q in wanted.items() if found[lid].product_id == pid],
                    },
                )
            logger.info(
                "stock.restore",
                extra={
                    "tenant": tenant_id,
                    "branch": branch.pk,
                    "lots": len(wanted),
                    "qty": sum(wanted.values()),
                    "reason": reason,
                },
            )
            return Restoration(
                restored=tuple(LotRestore(lot_id, qty) for lot_id, qty in wanted.items()),
                stocks=tuple(stocks),
            )
