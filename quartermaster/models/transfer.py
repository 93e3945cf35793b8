"""
StockTransfer models — movement requests between two branches.
"""

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils.translation import gettext_lazy as _

from quartermaster.models.enums import (
    ApprovalMode,
    ApprovalStatus,
    InitiationType,
    TransferPriority,
    TransferStatus,
)


class StockTransfer(models.Model):
    """
    Request to move stock from source_branch to destination_branch.

    Lifecycle:
        REQUESTED -> APPROVED | REJECTED | CANCELLED
        APPROVED  -> IN_TRANSIT (fully shipped) | CANCELLED (nothing shipped)
        IN_TRANSIT -> COMPLETED (fully received)
        COMPLETED -> reversed by a new linked COMPLETED transfer

    Transfers are never deleted.
    """

    tenant_id = models.CharField(max_length=64, db_index=True, verbose_name=_('Tenant'))
    transfer_number = models.CharField(max_length=32, verbose_name=_('Number'))
    source_branch = models.ForeignKey(
        'quartermaster.Branch',
        on_delete=models.PROTECT,
        related_name='outbound_transfers',
        verbose_name=_('Source branch'),
    )
    destination_branch = models.ForeignKey(
        'quartermaster.Branch',
        on_delete=models.PROTECT,
        related_name='inbound_transfers',
        verbose_name=_('Destination branch'),
    )
    initiation_type = models.CharField(
        max_length=10,
        choices=InitiationType.choices,
        default=InitiationType.PUSH,
        verbose_name=_('Initiation'),
    )
    status = models.CharField(
        max_length=20,
        choices=TransferStatus.choices,
        default=TransferStatus.REQUESTED,
        db_index=True,
        verbose_name=_('Status'),
    )
    priority = models.CharField(
        max_length=10,
        choices=TransferPriority.choices,
        default=TransferPriority.NORMAL,
        verbose_name=_('Priority'),
    )

    # People and moments
    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='+', verbose_name=_('Requested by'),
    )
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='+', verbose_name=_('Reviewed by'),
    )
    shipped_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='+', verbose_name=_('Shipped by'),
    )
    received_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='+', verbose_name=_('Received by'),
    )
    requested_at = models.DateTimeField(auto_now_add=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)
    shipped_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    request_notes = models.TextField(blank=True, default='')
    review_notes = models.TextField(blank=True, default='')
    order_notes = models.TextField(blank=True, default='')

    # Multi-level approval (set when a rule matched at creation)
    requires_multi_level_approval = models.BooleanField(default=False)
    approval_rule = models.ForeignKey(
        'quartermaster.ApprovalRule',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='transfers',
        verbose_name=_('Approval rule'),
    )
    approval_mode = models.CharField(
        max_length=12,
        choices=ApprovalMode.choices,
        blank=True,
        default='',
        verbose_name=_('Approval mode'),
    )

    # Reversal links
    is_reversal = models.BooleanField(default=False)
    reversal_of = models.OneToOneField(
        'self',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='reversed_by',
        verbose_name=_('Reversal of'),
    )
    reversal_reason = models.TextField(blank=True, default='')

    class Meta:
        verbose_name = _('Stock transfer')
        verbose_name_plural = _('Stock transfers')
        ordering = ['-requested_at', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['tenant_id', 'transfer_number'],
                name='qm_transfer_unique_number',
            ),
            models.CheckConstraint(
                condition=~Q(source_branch=models.F('destination_branch')),
                name='qm_transfer_distinct_branches',
            ),
        ]
        indexes = [
            models.Index(fields=['tenant_id', 'status'], name='qm_transfer_status_idx'),
        ]

    @property
    def initiating_branch(self):
        """Branch whose member created the transfer."""
        if self.initiation_type == InitiationType.PULL:
            return self.destination_branch
        return self.source_branch

    @property
    def reviewing_branch(self):
        """Branch whose member must approve or reject."""
        if self.initiation_type == InitiationType.PULL:
            return self.source_branch
        return self.destination_branch

    @property
    def is_reversed(self) -> bool:
        return StockTransfer.objects.filter(reversal_of=self).exists()

    def __str__(self) -> str:
        return f"{self.transfer_number} [{self.status}]"


class StockTransferItem(models.Model):
    """
    Per-product line of a transfer.

    Invariant: qty_received <= qty_shipped <= qty_approved <= qty_requested

    shipment_batches holds one entry per ship() call, see
    quartermaster.shipments for the validated structure.
    """

    transfer = models.ForeignKey(
        StockTransfer,
        on_delete=models.CASCADE,
        related_name='items',
        verbose_name=_('Transfer'),
    )
    product = models.ForeignKey(
        'quartermaster.Product',
        on_delete=models.PROTECT,
        related_name='+',
        verbose_name=_('Product'),
    )
    qty_requested = models.PositiveIntegerField(verbose_name=_('Requested'))
    qty_approved = models.PositiveIntegerField(null=True, blank=True, verbose_name=_('Approved'))
    qty_shipped = models.PositiveIntegerField(default=0, verbose_name=_('Shipped'))
    qty_received = models.PositiveIntegerField(default=0, verbose_name=_('Received'))
    avg_unit_cost_pence = models.PositiveIntegerField(null=True, blank=True)
    shipment_batches = models.JSONField(null=True, blank=True, default=list)

    class Meta:
        verbose_name = _('Transfer item')
        verbose_name_plural = _('Transfer items')
        ordering = ['id']
        constraints = [
            models.UniqueConstraint(fields=['transfer', 'product'], name='qm_transfer_item_unique_product'),
            models.CheckConstraint(condition=Q(qty_received__lte=models.F('qty_shipped')),
                                   name='qm_item_received_within_shipped'),
        ]

    @property
    def batches(self):
        """Shipment batches, validated."""
        from quartermaster.shipments import parse_batches

        return parse_batches(self.shipment_batches)

    @property
    def qty_remaining_to_ship(self) -> int:
        return (self.qty_approved or 0) - self.qty_shipped

    @property
    def qty_in_transit(self) -> int:
        return self.qty_shipped - self.qty_received

    def __str__(self) -> str:
        return f"{self.product_id} x{self.qty_requested}"


class TransferApprovalRecord(models.Model):
    """One required sign-off step of a multi-level approval."""

    transfer = models.ForeignKey(
        StockTransfer,
        on_delete=models.CASCADE,
        related_name='approval_records',
        verbose_name=_('Transfer'),
    )
    level = models.PositiveSmallIntegerField(verbose_name=_('Level'))
    level_name = models.CharField(max_length=100, verbose_name=_('Level name'))
    status = models.CharField(
        max_length=10,
        choices=ApprovalStatus.choices,
        default=ApprovalStatus.PENDING,
        verbose_name=_('Status'),
    )
    is_gated = models.BooleanField(default=True, verbose_name=_('Waits for lower levels'))
    required_role = models.ForeignKey(
        'quartermaster.Role', on_delete=models.SET_NULL, null=True, blank=True,
        related_name='+', verbose_name=_('Required role'),
    )
    required_user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='+', verbose_name=_('Required user'),
    )
    decided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='+', verbose_name=_('Decided by'),
    )
    decided_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default='')

    class Meta:
        verbose_name = _('Transfer approval')
        verbose_name_plural = _('Transfer approvals')
        ordering = ['transfer', 'level']
        constraints = [
            models.UniqueConstraint(fields=['transfer', 'level'], name='qm_approval_record_unique_level'),
        ]

    def __str__(self) -> str:
        return f"L{self.level} {self.level_name}: {self.status}"
