"""
Product model — the catalog entry stock is kept for.
"""

from django.db import models
from django.db.models import Q
from django.utils.translation import gettext_lazy as _


class Product(models.Model):
    """
    Tenant-scoped product.

    entity_version is bumped on every catalog update; writers compare-and-swap
    on it (see services.catalog).
    """

    tenant_id = models.CharField(max_length=64, db_index=True, verbose_name=_('Tenant'))
    sku = models.CharField(max_length=64, verbose_name=_('SKU'))
    barcode = models.CharField(max_length=64, null=True, blank=True, verbose_name=_('Barcode'))
    name = models.CharField(max_length=200, verbose_name=_('Name'))
    unit_price_pence = models.PositiveIntegerField(default=0, verbose_name=_('Unit price (pence)'))
    entity_version = models.PositiveIntegerField(default=1, verbose_name=_('Version'))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _('Product')
        verbose_name_plural = _('Products')
        ordering = ['tenant_id', 'sku']
        constraints = [
            models.UniqueConstraint(fields=['tenant_id', 'sku'], name='qm_product_unique_sku'),
            models.UniqueConstraint(
                fields=['tenant_id', 'barcode'],
                condition=Q(barcode__isnull=False),
                name='qm_product_unique_barcode',
            ),
        ]

    def __str__(self) -> str:
        return f"{self.sku} {self.name}"
