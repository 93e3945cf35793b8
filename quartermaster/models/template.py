"""
Transfer templates — saved source/destination routes with default lines.
"""

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils.translation import gettext_lazy as _


class TransferTemplate(models.Model):
    """
    Reusable starting point for a transfer between two branches.

    Archival hides a template from the default listing and blocks creating
    transfers from it; restore brings it back unchanged.
    """

    tenant_id = models.CharField(max_length=64, db_index=True, verbose_name=_('Tenant'))
    name = models.CharField(max_length=200, verbose_name=_('Name'))
    description = models.TextField(blank=True, default='')
    source_branch = models.ForeignKey(
        'quartermaster.Branch',
        on_delete=models.PROTECT,
        related_name='+',
        verbose_name=_('Source branch'),
    )
    destination_branch = models.ForeignKey(
        'quartermaster.Branch',
        on_delete=models.PROTECT,
        related_name='+',
        verbose_name=_('Destination branch'),
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='+', verbose_name=_('Created by'),
    )
    is_archived = models.BooleanField(default=False, verbose_name=_('Archived'))
    archived_at = models.DateTimeField(null=True, blank=True)
    archived_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='+', verbose_name=_('Archived by'),
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _('Transfer template')
        verbose_name_plural = _('Transfer templates')
        ordering = ['name', '-created_at']
        constraints = [
            models.CheckConstraint(
                condition=~Q(source_branch=models.F('destination_branch')),
                name='qm_template_distinct_branches',
            ),
        ]
        indexes = [
            models.Index(fields=['tenant_id', 'is_archived', 'name'], name='qm_template_list_idx'),
        ]

    def __str__(self) -> str:
        return self.name


class TransferTemplateItem(models.Model):
    """Default line of a template."""

    template = models.ForeignKey(
        TransferTemplate,
        on_delete=models.CASCADE,
        related_name='items',
        verbose_name=_('Template'),
    )
    product = models.ForeignKey(
        'quartermaster.Product',
        on_delete=models.CASCADE,
        related_name='+',
        verbose_name=_('Product'),
    )
    default_qty = models.PositiveIntegerField(verbose_name=_('Default quantity'))

    class Meta:
        verbose_name = _('Template item')
        verbose_name_plural = _('Template items')
        ordering = ['id']
        constraints = [
            models.UniqueConstraint(fields=['template', 'product'], name='qm_template_item_unique_product'),
        ]

    def __str__(self) -> str:
        return f"{self.product_id} x{self.default_qty}"
