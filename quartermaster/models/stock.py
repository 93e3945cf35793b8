"""
ProductStock model — cached quantity per (tenant, branch, product).
"""

import logging

from django.db import models
from django.db.models import Sum
from django.db.models.functions import Coalesce
from django.utils.translation import gettext_lazy as _

logger = logging.getLogger('quartermaster')


class ProductStock(models.Model):
    """
    Quantity on hand of a product at a branch.

    Invariant:
        qty_on_hand == Σ lot.qty_remaining == Σ ledger.qty_delta

    Performance:
    - qty_on_hand is a cache updated atomically by StockLedger.save()
    - Read is O(1), not O(N)
    - Use recalculate() for audit/correction
    """

    tenant_id = models.CharField(max_length=64, db_index=True, verbose_name=_('Tenant'))
    branch = models.ForeignKey(
        'quartermaster.Branch',
        on_delete=models.PROTECT,
        related_name='stock',
        verbose_name=_('Branch'),
    )
    product = models.ForeignKey(
        'quartermaster.Product',
        on_delete=models.PROTECT,
        related_name='stock',
        verbose_name=_('Product'),
    )
    qty_on_hand = models.IntegerField(default=0, verbose_name=_('On hand'))
    qty_allocated = models.IntegerField(default=0, verbose_name=_('Allocated'))
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _('Product stock')
        verbose_name_plural = _('Product stock')
        constraints = [
            models.UniqueConstraint(
                fields=['tenant_id', 'branch', 'product'],
                name='qm_product_stock_unique_key',
            ),
        ]

    @property
    def qty_available(self) -> int:
        return self.qty_on_hand - self.qty_allocated

    def ledger_total(self) -> int:
        from quartermaster.models.ledger import StockLedger

        return StockLedger.objects.filter(
            tenant_id=self.tenant_id, branch_id=self.branch_id, product_id=self.product_id,
        ).aggregate(t=Coalesce(Sum('qty_delta'), 0))['t']

    def lot_total(self) -> int:
        from quartermaster.models.lot import StockLot

        return StockLot.objects.filter(
            tenant_id=self.tenant_id, branch_id=self.branch_id, product_id=self.product_id,
        ).aggregate(t=Coalesce(Sum('qty_remaining'), 0))['t']

    def recalculate(self) -> int:
        """
        Recalculate qty_on_hand from the ledger.

        Use for:
        - Integrity audit
        - Correction after detected inconsistency

        Returns:
            New calculated quantity
        """
        total = self.ledger_total()

        if total != self.qty_on_hand:
            old = self.qty_on_hand
            self.qty_on_hand = total
            self.save(update_fields=['qty_on_hand', 'updated_at'])
            logger.warning(
                "ProductStock %s recalculated: %s -> %s (diff: %s)",
                self.pk, old, total, total - old,
            )

        return total

    def __str__(self) -> str:
        return f"{self.product_id}@{self.branch_id}: {self.qty_on_hand}"
