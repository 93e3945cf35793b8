"""
Quartermaster Admin — basic fallback (works without Unfold).

For the Unfold-styled version, add 'quartermaster.contrib.admin_unfold' to INSTALLED_APPS.
When the Unfold contrib is loaded, this module does nothing (avoids double registration).

Provides:
- Branch, Product, Role: list + edit
- StockLot, StockLedger, ProductStock: read-only (stock only changes via services)
- StockTransfer: read-only with items and approval levels inline
- ApprovalRule: editable with conditions and levels inline, archive/restore actions
- TransferTemplate: read-only with items inline, archive/restore actions
"""

import logging

from django.apps import apps
from django.contrib import admin
from django.utils.translation import gettext_lazy as _

logger = logging.getLogger(__name__)


class ReadOnlyAdminMixin:
    """No add, change or delete from the admin."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.action(description=_('Archive selected rules'))
def archive_rules(modeladmin, request, queryset):
    from quartermaster import approval_rules
    from quartermaster.exceptions import StockError
    from quartermaster.protocols.audit import AuditContext

    count = 0
    for rule in queryset.filter(is_archived=False):
        try:
            approval_rules.archive(rule.tenant_id, rule.pk, context=AuditContext(actor=request.user))
            count += 1
        except StockError as exc:
            logger.warning("archive_rules: failed to archive %s: %s", rule.pk, exc)
    modeladmin.message_user(request, _('{count} rule(s) archived.').format(count=count))


@admin.action(description=_('Restore selected rules'))
def restore_rules(modeladmin, request, queryset):
    from quartermaster import approval_rules
    from quartermaster.exceptions import StockError
    from quartermaster.protocols.audit import AuditContext

    count = 0
    for rule in queryset.filter(is_archived=True):
        try:
            approval_rules.restore(rule.tenant_id, rule.pk, context=AuditContext(actor=request.user))
            count += 1
        except StockError as exc:
            logger.warning("restore_rules: failed to restore %s: %s", rule.pk, exc)
    modeladmin.message_user(request, _('{count} rule(s) restored.').format(count=count))


@admin.action(description=_('Archive selected templates'))
def archive_templates(modeladmin, request, queryset):
    from quartermaster import templates
    from quartermaster.exceptions import StockError

    count = 0
    for template in queryset.filter(is_archived=False):
        try:
            templates.archive(template.tenant_id, template.pk, request.user)
            count += 1
        except StockError as exc:
            logger.warning("archive_templates: failed to archive %s: %s", template.pk, exc)
    modeladmin.message_user(request, _('{count} template(s) archived.').format(count=count))


@admin.action(description=_('Restore selected templates'))
def restore_templates(modeladmin, request, queryset):
    from quartermaster import templates
    from quartermaster.exceptions import StockError

    count = 0
    for template in queryset.filter(is_archived=True):
        try:
            templates.restore(template.tenant_id, template.pk, request.user)
            count += 1
        except StockError as exc:
            logger.warning("restore_templates: failed to restore %s: %s", template.pk, exc)
    modeladmin.message_user(request, _('{count} template(s) restored.').format(count=count))


# Skip registration if the Unfold contrib is installed (it will register its own admins)
if not apps.is_installed('quartermaster.contrib.admin_unfold'):
    from quartermaster.models import (
        ApprovalLevel,
        ApprovalRule,
        ApprovalRuleCondition,
        Branch,
        Product,
        ProductStock,
        Role,
        StockLedger,
        StockLot,
        StockTransfer,
        StockTransferItem,
        TransferApprovalRecord,
        TransferTemplate,
        TransferTemplateItem,
    )

    # =========================================================================
    # TENANCY / CATALOG
    # =========================================================================

    @admin.register(Branch)
    class BranchAdmin(admin.ModelAdmin):
        list_display = ['name', 'slug', 'tenant_id', 'is_active']
        list_filter = ['tenant_id', 'is_active']
        search_fields = ['name', 'slug']

    @admin.register(Role)
    class RoleAdmin(admin.ModelAdmin):
        list_display = ['name', 'tenant_id']
        list_filter = ['tenant_id']

    @admin.register(Product)
    class ProductAdmin(admin.ModelAdmin):
        """Product admin — entity_version is managed by the catalog service."""

        list_display = ['sku', 'name', 'barcode', 'unit_price_pence', 'tenant_id']
        list_filter = ['tenant_id']
        search_fields = ['sku', 'name', 'barcode']
        readonly_fields = ['entity_version', 'created_at', 'updated_at']

    # =========================================================================
    # STOCK (read-only)
    # =========================================================================

    @admin.register(ProductStock)
    class ProductStockAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
        """Cached aggregate — read-only."""

        list_display = ['product', 'branch', 'qty_on_hand', 'qty_allocated', 'updated_at']
        list_filter = ['tenant_id', 'branch']
        search_fields = ['product__sku', 'product__name']

    @admin.register(StockLot)
    class StockLotAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
        """Lot admin — read-only, FIFO order."""

        list_display = ['id', 'product', 'branch', 'received_at', 'qty_received',
                        'qty_remaining', 'unit_cost_pence', 'source_ref']
        list_filter = ['tenant_id', 'branch']
        search_fields = ['product__sku', 'source_ref']
        date_hierarchy = 'received_at'

    @admin.register(StockLedger)
    class StockLedgerAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
        """Ledger admin — read-only. Immutable audit trail."""

        list_display = ['occurred_at', 'kind', 'product', 'branch', 'lot', 'qty_delta', 'reason', 'actor']
        list_filter = ['kind', 'tenant_id', 'branch']
        search_fields = ['reason', 'product__sku']
        date_hierarchy = 'occurred_at'

    # =========================================================================
    # TRANSFERS (read-only)
    # =========================================================================

    class StockTransferItemInline(ReadOnlyAdminMixin, admin.TabularInline):
        model = StockTransferItem
        extra = 0
        fields = ['product', 'qty_requested', 'qty_approved', 'qty_shipped',
                  'qty_received', 'avg_unit_cost_pence']

    class TransferApprovalRecordInline(ReadOnlyAdminMixin, admin.TabularInline):
        model = TransferApprovalRecord
        extra = 0
        fields = ['level', 'level_name', 'status', 'is_gated', 'required_role',
                  'required_user', 'decided_by', 'decided_at']

    @admin.register(StockTransfer)
    class StockTransferAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
        """Transfer admin — read-only. Lifecycle only moves through the service."""

        list_display = ['transfer_number', 'source_branch', 'destination_branch',
                        'initiation_type', 'status', 'priority', 'is_reversal_display', 'requested_at']
        list_filter = ['status', 'initiation_type', 'priority', 'tenant_id']
        search_fields = ['transfer_number']
        inlines = [StockTransferItemInline, TransferApprovalRecordInline]

        @admin.display(description=_('Reversal?'), boolean=True)
        def is_reversal_display(self, obj):
            return obj.is_reversal

    # =========================================================================
    # APPROVAL RULES
    # =========================================================================

    class ApprovalRuleConditionInline(admin.TabularInline):
        model = ApprovalRuleCondition
        extra = 0

    class ApprovalLevelInline(admin.TabularInline):
        model = ApprovalLevel
        extra = 0

    @admin.register(ApprovalRule)
    class ApprovalRuleAdmin(admin.ModelAdmin):
        """Approval rule admin — archive instead of delete."""

        list_display = ['name', 'priority', 'approval_mode', 'is_active', 'is_archived', 'tenant_id']
        list_filter = ['is_active', 'is_archived', 'approval_mode', 'tenant_id']
        search_fields = ['name']
        readonly_fields = ['is_archived', 'archived_at', 'archived_by', 'created_at', 'updated_at']
        inlines = [ApprovalRuleConditionInline, ApprovalLevelInline]
        actions = [archive_rules, restore_rules]

        def has_delete_permission(self, request, obj=None):
            return False

    # =========================================================================
    # TRANSFER TEMPLATES (read-only, archive/restore through the service)
    # =========================================================================

    class TransferTemplateItemInline(ReadOnlyAdminMixin, admin.TabularInline):
        model = TransferTemplateItem
        extra = 0
        fields = ['product', 'default_qty']

    @admin.register(TransferTemplate)
    class TransferTemplateAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
        list_display = ['name', 'source_branch', 'destination_branch', 'is_archived', 'tenant_id']
        list_filter = ['is_archived', 'tenant_id']
        search_fields = ['name', 'description']
        inlines = [TransferTemplateItemInline]
        actions = [archive_templates, restore_templates]
