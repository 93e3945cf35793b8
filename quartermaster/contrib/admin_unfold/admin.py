"""
Quartermaster Admin with Unfold theme.

To use, add 'quartermaster.contrib.admin_unfold' to INSTALLED_APPS after
'quartermaster'. The basic admin then steps aside and these register instead.
"""

import logging

from django.contrib import admin
from django.utils.translation import gettext_lazy as _
from unfold.decorators import display

from quartermaster.admin import (
    ReadOnlyAdminMixin,
    archive_rules,
    archive_templates,
    restore_rules,
    restore_templates,
)
from quartermaster.contrib.admin_unfold.base import BaseModelAdmin, BaseTabularInline, format_pence
from quartermaster.models import (
    ApprovalLevel,
    ApprovalRule,
    ApprovalRuleCondition,
    ApprovalStatus,
    Branch,
    LedgerKind,
    Product,
    ProductStock,
    Role,
    StockLedger,
    StockLot,
    StockTransfer,
    StockTransferItem,
    TransferApprovalRecord,
    TransferStatus,
    TransferTemplate,
    TransferTemplateItem,
)

logger = logging.getLogger(__name__)

STATUS_COLORS = {
    TransferStatus.REQUESTED: "info",
    TransferStatus.APPROVED: "info",
    TransferStatus.IN_TRANSIT: "warning",
    TransferStatus.COMPLETED: "success",
    TransferStatus.REJECTED: "danger",
    TransferStatus.CANCELLED: "danger",
}

LEDGER_COLORS = {
    LedgerKind.RECEIPT: "success",
    LedgerKind.REVERSAL: "info",
    LedgerKind.CONSUMPTION: "danger",
    LedgerKind.ADJUSTMENT: "warning",
}


def _format_datetime(dt):
    """Format datetime as DD/MM/YY · HH:MM."""
    if dt:
        return dt.strftime('%d/%m/%y · %H:%M')
    return '-'


# =============================================================================
# TENANCY / CATALOG
# =============================================================================


@admin.register(Branch)
class BranchAdmin(BaseModelAdmin):
    list_display = ['name', 'slug', 'tenant_id', 'is_active']
    list_filter = ['tenant_id', 'is_active']
    search_fields = ['name', 'slug']
    compressed_fields = True


@admin.register(Role)
class RoleAdmin(BaseModelAdmin):
    list_display = ['name', 'tenant_id']
    list_filter = ['tenant_id']


@admin.register(Product)
class ProductAdmin(BaseModelAdmin):
    list_display = ['sku', 'name', 'barcode', 'price_display', 'entity_version']
    list_filter = ['tenant_id']
    search_fields = ['sku', 'name', 'barcode']
    readonly_fields = ['entity_version', 'created_at', 'updated_at']
    compressed_fields = True
    warn_unsaved_form = True

    @display(description=_('Price'))
    def price_display(self, obj):
        return format_pence(obj.unit_price_pence)


# =============================================================================
# STOCK (read-only)
# =============================================================================


@admin.register(ProductStock)
class ProductStockAdmin(ReadOnlyAdminMixin, BaseModelAdmin):
    """Cached aggregate. Only the ledger moves it."""

    list_display = ['product', 'branch', 'on_hand_display', 'qty_allocated', 'updated_at']
    list_filter = ['tenant_id', 'branch']
    search_fields = ['product__sku', 'product__name']

    @display(description=_('On hand'), label=True)
    def on_hand_display(self, obj):
        return obj.qty_on_hand


@admin.register(StockLot)
class StockLotAdmin(ReadOnlyAdminMixin, BaseModelAdmin):
    list_display = ['id', 'product', 'branch', 'received_display', 'qty_remaining',
                    'qty_received', 'cost_display', 'source_ref']
    list_filter = ['tenant_id', 'branch']
    search_fields = ['product__sku', 'source_ref']
    date_hierarchy = 'received_at'

    @display(description=_('Received at'))
    def received_display(self, obj):
        return _format_datetime(obj.received_at)

    @display(description=_('Unit cost'))
    def cost_display(self, obj):
        return format_pence(obj.unit_cost_pence)


@admin.register(StockLedger)
class StockLedgerAdmin(ReadOnlyAdminMixin, BaseModelAdmin):
    """Immutable ledger."""

    list_display = ['occurred_display', 'kind_display', 'product', 'branch', 'lot', 'delta_display', 'reason']
    list_filter = ['kind', 'tenant_id', 'branch']
    search_fields = ['reason', 'product__sku']
    date_hierarchy = 'occurred_at'

    @display(description=_('Occurred at'))
    def occurred_display(self, obj):
        return _format_datetime(obj.occurred_at)

    @display(description=_('Kind'), label=LEDGER_COLORS)
    def kind_display(self, obj):
        return obj.kind

    @display(description=_('Change'))
    def delta_display(self, obj):
        return f"+{obj.qty_delta}" if obj.qty_delta > 0 else str(obj.qty_delta)


# =============================================================================
# TRANSFERS (read-only)
# =============================================================================


class StockTransferItemInline(ReadOnlyAdminMixin, BaseTabularInline):
    model = StockTransferItem
    extra = 0
    fields = ['product', 'qty_requested', 'qty_approved', 'qty_shipped', 'qty_received', 'avg_unit_cost_pence']


class TransferApprovalRecordInline(ReadOnlyAdminMixin, BaseTabularInline):
    model = TransferApprovalRecord
    extra = 0
    fields = ['level', 'level_name', 'status', 'is_gated', 'required_role', 'required_user',
              'decided_by', 'decided_at']


@admin.register(StockTransfer)
class StockTransferAdmin(ReadOnlyAdminMixin, BaseModelAdmin):
    list_display = ['transfer_number', 'source_branch', 'destination_branch', 'initiation_type',
                    'status_display', 'priority', 'approval_display', 'requested_display']
    list_filter = ['status', 'initiation_type', 'priority', 'is_reversal', 'tenant_id']
    search_fields = ['transfer_number']
    inlines = [StockTransferItemInline, TransferApprovalRecordInline]

    @display(description=_('Status'), label=STATUS_COLORS)
    def status_display(self, obj):
        return obj.status

    @display(description=_('Approvals'))
    def approval_display(self, obj):
        if not obj.requires_multi_level_approval:
            return '-'
        records = list(obj.approval_records.all())
        approved = sum(1 for r in records if r.status == ApprovalStatus.APPROVED)
        return f"{approved}/{len(records)}"

    @display(description=_('Requested at'))
    def requested_display(self, obj):
        return _format_datetime(obj.requested_at)


# =============================================================================
# APPROVAL RULES
# =============================================================================


class ApprovalRuleConditionInline(BaseTabularInline):
    model = ApprovalRuleCondition
    extra = 0


class ApprovalLevelInline(BaseTabularInline):
    model = ApprovalLevel
    extra = 0


@admin.register(ApprovalRule)
class ApprovalRuleAdmin(BaseModelAdmin):
    list_display = ['name', 'priority', 'approval_mode', 'is_active', 'archived_display']
    list_filter = ['is_active', 'is_archived', 'approval_mode', 'tenant_id']
    search_fields = ['name']
    readonly_fields = ['is_archived', 'archived_at', 'archived_by', 'created_at', 'updated_at']
    inlines = [ApprovalRuleConditionInline, ApprovalLevelInline]
    actions = [archive_rules, restore_rules]
    compressed_fields = True

    def has_delete_permission(self, request, obj=None):
        return False

    @display(description=_('Archived'), label={"archived": "warning", "live": "success"})
    def archived_display(self, obj):
        return "archived" if obj.is_archived else "live"


# =============================================================================
# TRANSFER TEMPLATES
# =============================================================================


class TransferTemplateItemInline(ReadOnlyAdminMixin, BaseTabularInline):
    model = TransferTemplateItem
    extra = 0
    fields = ['product', 'default_qty']


@admin.register(TransferTemplate)
class TransferTemplateAdmin(ReadOnlyAdminMixin, BaseModelAdmin):
    list_display = ['name', 'source_branch', 'destination_branch', 'archived_display']
    list_filter = ['is_archived', 'tenant_id']
    search_fields = ['name', 'description']
    inlines = [TransferTemplateItemInline]
    actions = [archive_templates, restore_templates]

    @display(description=_('Archived'), label={"archived": "warning", "live": "success"})
    def archived_display(self, obj):
        return "archived" if obj.is_archived else "live"
