"""
StockLedger model — immutable ledger of quantity changes.
"""

from django.conf import settings
from django.db import models, transaction
from django.db.models import F
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from quartermaster.models.enums import LedgerKind


class StockLedger(models.Model):
    """
    Immutable record of a quantity change on one lot.

    Rules:
    - NEVER update() or delete()
    - Corrections are new rows (ADJUSTMENT or REVERSAL)
    - Updates ProductStock.qty_on_hand atomically on save()

    This is the ONLY model that changes the cached aggregate.
    """

    tenant_id = models.CharField(max_length=64, db_index=True, verbose_name=_('Tenant'))
    branch = models.ForeignKey(
        'quartermaster.Branch',
        on_delete=models.PROTECT,
        related_name='ledger',
        verbose_name=_('Branch'),
    )
    product = models.ForeignKey(
        'quartermaster.Product',
        on_delete=models.PROTECT,
        related_name='ledger',
        verbose_name=_('Product'),
    )
    lot = models.ForeignKey(
        'quartermaster.StockLot',
        on_delete=models.PROTECT,
        related_name='ledger',
        verbose_name=_('Lot'),
    )
    kind = models.CharField(max_length=20, choices=LedgerKind.choices, verbose_name=_('Kind'))
    qty_delta = models.IntegerField(
        verbose_name=_('Change'),
        help_text=_('Positive = in, negative = out'),
    )
    reason = models.CharField(max_length=255, verbose_name=_('Reason'))
    occurred_at = models.DateTimeField(default=timezone.now, db_index=True, verbose_name=_('Occurred at'))
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
        verbose_name=_('Actor'),
    )
    metadata = models.JSONField(default=dict, blank=True, verbose_name=_('Metadata'))
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _('Ledger entry')
        verbose_name_plural = _('Ledger entries')
        ordering = ['occurred_at', 'id']
        indexes = [
            models.Index(fields=['tenant_id', 'branch', 'product', 'occurred_at'], name='qm_ledger_key_idx'),
            models.Index(fields=['lot'], name='qm_ledger_lot_idx'),
        ]

    def save(self, *args, **kwargs):
        """Save entry and update the aggregate atomically."""
        if self.pk:
            raise ValueError(
                "Ledger entries are immutable. "
                "Write a new ADJUSTMENT or REVERSAL entry instead."
            )

        if not self.reason:
            raise ValueError("Reason is required")

        if self.qty_delta == 0:
            raise ValueError("Ledger entries must change quantity")

        with transaction.atomic():
            super().save(*args, **kwargs)

            from quartermaster.models.stock import ProductStock

            stock, _created = ProductStock.objects.get_or_create(
                tenant_id=self.tenant_id,
                branch_id=self.branch_id,
                product_id=self.product_id,
            )
            ProductStock.objects.filter(pk=stock.pk).update(
                qty_on_hand=F('qty_on_hand') + self.qty_delta,
                updated_at=timezone.now(),
            )

    def delete(self, *args, **kwargs):
        """Prevent deletion — ledger entries are immutable."""
        raise ValueError(
            "Ledger entries are immutable. "
            "To undo, write a compensating entry."
        )

    def __str__(self) -> str:
        sign = '+' if self.qty_delta > 0 else ''
        return f"{self.kind} {sign}{self.qty_delta} | {self.reason}"
