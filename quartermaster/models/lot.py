"""
StockLot model — one FIFO batch of a product at a branch.
"""

from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

# Oldest first; created_at and id break ties between same-instant receipts
FIFO_ORDER = ('received_at', 'created_at', 'id')


class StockLotQuerySet(models.QuerySet):
    """QuerySet with FIFO helpers."""

    def for_key(self, tenant_id, branch, product):
        return self.filter(tenant_id=tenant_id, branch=branch, product=product)

    def on_hand(self):
        """Lots that still hold stock."""
        return self.filter(qty_remaining__gt=0)

    def fifo(self):
        return self.order_by(*FIFO_ORDER)


class StockLot(models.Model):
    """
    A receipt of stock that is consumed oldest-first.

    Rules:
    - Created by a receipt (or a positive adjustment)
    - qty_remaining only decreases through consumption and only increases
      through restoration of the same lot
    - Never deleted while ledger rows reference it (PROTECT)
    """

    tenant_id = models.CharField(max_length=64, db_index=True, verbose_name=_('Tenant'))
    branch = models.ForeignKey(
        'quartermaster.Branch',
        on_delete=models.PROTECT,
        related_name='lots',
        verbose_name=_('Branch'),
    )
    product = models.ForeignKey(
        'quartermaster.Product',
        on_delete=models.PROTECT,
        related_name='lots',
        verbose_name=_('Product'),
    )
    qty_received = models.PositiveIntegerField(verbose_name=_('Received'))
    qty_remaining = models.PositiveIntegerField(verbose_name=_('Remaining'))
    unit_cost_pence = models.PositiveIntegerField(
        null=True,
        blank=True,
        verbose_name=_('Unit cost (pence)'),
    )
    source_ref = models.CharField(
        max_length=100,
        blank=True,
        default='',
        verbose_name=_('Source reference'),
        help_text=_('Ex: "PO-1234", "TRF-2026-0007"'),
    )
    received_at = models.DateTimeField(default=timezone.now, verbose_name=_('Received at'))
    created_at = models.DateTimeField(auto_now_add=True)

    objects = StockLotQuerySet.as_manager()

    class Meta:
        verbose_name = _('Stock lot')
        verbose_name_plural = _('Stock lots')
        ordering = list(FIFO_ORDER)
        constraints = [
            models.CheckConstraint(
                condition=Q(qty_remaining__gte=0) & Q(qty_remaining__lte=models.F('qty_received')),
                name='qm_lot_remaining_within_received',
            ),
        ]
        indexes = [
            models.Index(
                fields=['tenant_id', 'branch', 'product', 'received_at'],
                name='qm_lot_fifo_idx',
            ),
        ]

    def __str__(self) -> str:
        return f"Lot {self.pk} {self.product_id}@{self.branch_id}: {self.qty_remaining}/{self.qty_received}"
