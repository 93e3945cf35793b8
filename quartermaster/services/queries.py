"""
Stock queries — read-only operations.

No locking, default isolation. Results may trail an in-flight write by one
commit but never show a half-applied movement.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from django.db.models import F, Q, Sum
from django.utils.dateparse import parse_datetime

from quartermaster.conf import quartermaster_settings
from quartermaster.exceptions import InvalidRequest
from quartermaster.models import LedgerKind, ProductStock, StockLedger, StockLot
from quartermaster.services.access import check_same_tenant


@dataclass(frozen=True)
class StockLevel:
    """Aggregate plus the lots behind it, oldest first."""

    product_stock: ProductStock | None
    lots: list[StockLot]

    @property
    def qty_on_hand(self) -> int:
        return self.product_stock.qty_on_hand if self.product_stock else 0

    @property
    def qty_allocated(self) -> int:
        return self.product_stock.qty_allocated if self.product_stock else 0


@dataclass(frozen=True)
class LedgerPage:
    items: list[StockLedger]
    has_next: bool
    next_cursor: str | None


def encode_cursor(entry: StockLedger) -> str:
    raw = f"{entry.occurred_at.isoformat()}|{entry.pk}"
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_cursor(cursor: str) -> tuple[datetime, int]:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode()).decode()
        stamp, pk = raw.rsplit('|', 1)
        occurred_at = parse_datetime(stamp)
        if occurred_at is None:
            raise ValueError(stamp)
        return occurred_at, int(pk)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise InvalidRequest('INVALID_CURSOR', cursor=cursor) from None


class StockQueries:
    """Read-only stock query methods."""

    @classmethod
    def levels(cls, product, branch, include_empty: bool = False) -> StockLevel:
        """
        Quantity on hand of product at branch, with its FIFO lots.

        Args:
            include_empty: Also list lots that are fully consumed
        """
        tenant_id = check_same_tenant(product, branch)
        stock = ProductStock.objects.filter(
            tenant_id=tenant_id, branch=branch, product=product,
        ).first()
        lots = StockLot.objects.for_key(tenant_id, branch, product).fifo()
        if not include_empty:
            lots = lots.on_hand()
        return StockLevel(product_stock=stock, lots=list(lots))

    @classmethod
    def levels_bulk(cls, products, branch, include_empty: bool = False) -> dict[int, StockLevel]:
        """
        levels() for many products at one branch, in two queries.

        Returns:
            {product_id: StockLevel}; products never stocked at branch get an
            empty StockLevel

        Raises:
            NotFound('BRANCH_NOT_FOUND'): A product belongs to another tenant
        """
        products = list(products)
        for product in products:
            check_same_tenant(product, branch)
        ids = [product.pk for product in products]

        stocks = {
            s.product_id: s
            for s in ProductStock.objects.filter(tenant_id=branch.tenant_id, branch=branch, product_id__in=ids)
        }
        lots = StockLot.objects.filter(tenant_id=branch.tenant_id, branch=branch, product_id__in=ids).fifo()
        if not include_empty:
            lots = lots.on_hand()
        lots_by_product: dict[int, list[StockLot]] = {pk: [] for pk in ids}
        for lot in lots:
            lots_by_product[lot.product_id].append(lot)

        return {
            pk: StockLevel(product_stock=stocks.get(pk), lots=lots_by_product[pk])
            for pk in ids
        }

    @classmethod
    def levels_by_branch(cls, product) -> list[ProductStock]:
        """Aggregates of product at every branch that ever held it."""
        return list(
            ProductStock.objects.filter(tenant_id=product.tenant_id, product=product)
            .select_related('branch')
            .order_by('branch__name', 'branch_id')
        )

    @classmethod
    def ledger(cls, product, branch=None, kinds: list[str] | None = None,
               occurred_from: datetime | None = None, occurred_to: datetime | None = None,
               min_qty: int | None = None, max_qty: int | None = None,
               limit: int | None = None, cursor: str | None = None,
               ascending: bool = False) -> LedgerPage:
        """
        Ledger entries of a product, cursor-paginated.

        Args:
            branch: Restrict to one branch (None = every branch)
            kinds: LedgerKind values to include
            occurred_from / occurred_to: Inclusive time window
            min_qty / max_qty: Bounds on qty_delta
            limit: Page size, clamped to 1..LEDGER_MAX_PAGE_SIZE
            cursor: next_cursor of the previous page
            ascending: Oldest first instead of newest first
        """
        qs = StockLedger.objects.filter(tenant_id=product.tenant_id, product=product)
        if branch is not None:
            check_same_tenant(product, branch)
            qs = qs.filter(branch=branch)
        if kinds:
            unknown = [k for k in kinds if k not in LedgerKind.values]
            if unknown:
                raise InvalidRequest('INVALID_FIELD', kinds=unknown)
            qs = qs.filter(kind__in=kinds)
        if occurred_from is not None:
            qs = qs.filter(occurred_at__gte=occurred_from)
        if occurred_to is not None:
            qs = qs.filter(occurred_at__lte=occurred_to)
        if min_qty is not None:
            qs = qs.filter(qty_delta__gte=min_qty)
        if max_qty is not None:
            qs = qs.filter(qty_delta__lte=max_qty)

        if cursor:
            occurred_at, pk = decode_cursor(cursor)
            if ascending:
                qs = qs.filter(Q(occurred_at__gt=occurred_at) | Q(occurred_at=occurred_at, pk__gt=pk))
            else:
                qs = qs.filter(Q(occurred_at__lt=occurred_at) | Q(occurred_at=occurred_at, pk__lt=pk))

        qs = qs.order_by('occurred_at', 'id') if ascending else qs.order_by('-occurred_at', '-id')

        size = limit if limit is not None else quartermaster_settings.LEDGER_PAGE_SIZE
        size = max(1, min(int(size), quartermaster_settings.LEDGER_MAX_PAGE_SIZE))
        rows = list(qs[:size + 1])
        has_next = len(rows) > size
        items = rows[:size]
        return LedgerPage(
            items=items,
            has_next=has_next,
            next_cursor=encode_cursor(items[-1]) if has_next else None,
        )

    @classmethod
    def weighted_average_cost(cls, product, branch) -> int | None:
        """
        Weighted unit cost in pence of what is on hand.

        Lots without a cost are ignored; None when nothing on hand has one.
        """
        tenant_id = check_same_tenant(product, branch)
        totals = (
            StockLot.objects.for_key(tenant_id, branch, product)
            .on_hand()
            .filter(unit_cost_pence__isnull=False)
            .aggregate(qty=Sum('qty_remaining'), value=Sum(F('qty_remaining') * F('unit_cost_pence')))
        )
        if not totals['qty']:
            return None
        average = Decimal(totals['value']) / Decimal(totals['qty'])
        return int(average.quantize(Decimal('1'), rounding=ROUND_HALF_UP))
