"""
Initial migration for Quartermaster models.
"""

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

PRIORITY_CHOICES = [('LOW', 'Low'), ('NORMAL', 'Normal'), ('HIGH', 'High'), ('URGENT', 'Urgent')]
MODE_CHOICES = [('SEQUENTIAL', 'Sequential'), ('PARALLEL', 'Parallel'), ('HYBRID', 'Hybrid')]


def _user_fk(name, verbose_name, on_delete=django.db.models.deletion.SET_NULL):
    return (name, models.ForeignKey(
        blank=True, null=True, on_delete=on_delete, related_name='+',
        to=settings.AUTH_USER_MODEL, verbose_name=verbose_name,
    ))


class Migration(migrations.Migration):
    """Create branches, catalog, lots, ledger, aggregates, transfers, approval rules and audit."""

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Branch',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64, verbose_name='Tenant')),
                ('slug', models.SlugField(max_length=64, verbose_name='Slug')),
                ('name', models.CharField(max_length=200, verbose_name='Name')),
                ('is_active', models.BooleanField(default=True, verbose_name='Active')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'verbose_name': 'Branch',
                'verbose_name_plural': 'Branches',
                'ordering': ['tenant_id', 'name'],
                'constraints': [
                    models.UniqueConstraint(fields=('tenant_id', 'slug'), name='qm_branch_unique_slug'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Role',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64, verbose_name='Tenant')),
                ('name', models.CharField(max_length=100, verbose_name='Name')),
            ],
            options={
                'verbose_name': 'Role',
                'verbose_name_plural': 'Roles',
                'constraints': [
                    models.UniqueConstraint(fields=('tenant_id', 'name'), name='qm_role_unique_name'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Product',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64, verbose_name='Tenant')),
                ('sku', models.CharField(max_length=64, verbose_name='SKU')),
                ('barcode', models.CharField(blank=True, max_length=64, null=True, verbose_name='Barcode')),
                ('name', models.CharField(max_length=200, verbose_name='Name')),
                ('unit_price_pence', models.PositiveIntegerField(default=0, verbose_name='Unit price (pence)')),
                ('entity_version', models.PositiveIntegerField(default=1, verbose_name='Version')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Product',
                'verbose_name_plural': 'Products',
                'ordering': ['tenant_id', 'sku'],
                'constraints': [
                    models.UniqueConstraint(fields=('tenant_id', 'sku'), name='qm_product_unique_sku'),
                    models.UniqueConstraint(
                        condition=models.Q(('barcode__isnull', False)),
                        fields=('tenant_id', 'barcode'),
                        name='qm_product_unique_barcode',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='BranchMembership',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64, verbose_name='Tenant')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('branch', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name='memberships',
                    to='quartermaster.branch', verbose_name='Branch',
                )),
                ('user', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name='branch_memberships',
                    to=settings.AUTH_USER_MODEL, verbose_name='User',
                )),
            ],
            options={
                'verbose_name': 'Branch membership',
                'verbose_name_plural': 'Branch memberships',
                'constraints': [
                    models.UniqueConstraint(fields=('branch', 'user'), name='qm_branch_membership_unique'),
                ],
            },
        ),
        migrations.CreateModel(
            name='TenantMembership',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64, verbose_name='Tenant')),
                ('role', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name='memberships',
                    to='quartermaster.role', verbose_name='Role',
                )),
                ('user', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name='tenant_memberships',
                    to=settings.AUTH_USER_MODEL, verbose_name='User',
                )),
            ],
            options={
                'verbose_name': 'Tenant membership',
                'verbose_name_plural': 'Tenant memberships',
                'constraints': [
                    models.UniqueConstraint(fields=('tenant_id', 'user'), name='qm_tenant_membership_unique'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ApprovalRule',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64, verbose_name='Tenant')),
                ('name', models.CharField(max_length=200, verbose_name='Name')),
                ('description', models.TextField(blank=True, default='')),
                ('is_active', models.BooleanField(default=True, verbose_name='Active')),
                ('is_archived', models.BooleanField(default=False, verbose_name='Archived')),
                ('archived_at', models.DateTimeField(blank=True, null=True)),
                _user_fk('archived_by', 'Archived by'),
                ('approval_mode', models.CharField(
                    choices=MODE_CHOICES, default='SEQUENTIAL', max_length=12, verbose_name='Approval mode',
                )),
                ('priority', models.IntegerField(default=0, verbose_name='Priority')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Approval rule',
                'verbose_name_plural': 'Approval rules',
                'ordering': ['-priority', 'id'],
                'indexes': [
                    models.Index(
                        fields=['tenant_id', 'is_active', 'is_archived', 'priority'], name='qm_rule_eval_idx',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='ApprovalRuleCondition',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('condition_type', models.CharField(
                    choices=[
                        ('TOTAL_QTY_THRESHOLD', 'Total quantity at least'),
                        ('TOTAL_VALUE_THRESHOLD', 'Total value at least'),
                        ('SOURCE_BRANCH', 'Source branch is'),
                        ('DESTINATION_BRANCH', 'Destination branch is'),
                        ('PRIORITY_AT_LEAST', 'Priority at least'),
                    ],
                    max_length=30, verbose_name='Type',
                )),
                ('threshold', models.PositiveIntegerField(
                    blank=True, help_text='Units for quantity, pounds for value', null=True, verbose_name='Threshold',
                )),
                ('priority', models.CharField(
                    blank=True, choices=PRIORITY_CHOICES, default='', max_length=10, verbose_name='Priority',
                )),
                ('branch', models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='+',
                    to='quartermaster.branch', verbose_name='Branch',
                )),
                ('rule', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name='conditions',
                    to='quartermaster.approvalrule', verbose_name='Rule',
                )),
            ],
            options={
                'verbose_name': 'Rule condition',
                'verbose_name_plural': 'Rule conditions',
                'ordering': ['id'],
            },
        ),
        migrations.CreateModel(
            name='ApprovalLevel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('level', models.PositiveSmallIntegerField(verbose_name='Level')),
                ('name', models.CharField(max_length=100, verbose_name='Name')),
                ('is_gated', models.BooleanField(
                    default=True, help_text='Only consulted by HYBRID rules', verbose_name='Waits for lower levels',
                )),
                ('required_role', models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='+',
                    to='quartermaster.role', verbose_name='Required role',
                )),
                _user_fk('required_user', 'Required user', on_delete=django.db.models.deletion.PROTECT),
                ('rule', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name='levels',
                    to='quartermaster.approvalrule', verbose_name='Rule',
                )),
            ],
            options={
                'verbose_name': 'Approval level',
                'verbose_name_plural': 'Approval levels',
                'ordering': ['rule', 'level'],
                'constraints': [
                    models.UniqueConstraint(fields=('rule', 'level'), name='qm_approval_level_unique'),
                ],
            },
        ),
        migrations.CreateModel(
            name='StockLot',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64, verbose_name='Tenant')),
                ('qty_received', models.PositiveIntegerField(verbose_name='Received')),
                ('qty_remaining', models.PositiveIntegerField(verbose_name='Remaining')),
                ('unit_cost_pence', models.PositiveIntegerField(blank=True, null=True, verbose_name='Unit cost (pence)')),
                ('source_ref', models.CharField(
                    blank=True, default='', help_text='Ex: "PO-1234", "TRF-2026-0007"', max_length=100,
                    verbose_name='Source reference',
                )),
                ('received_at', models.DateTimeField(default=django.utils.timezone.now, verbose_name='Received at')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('branch', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name='lots',
                    to='quartermaster.branch', verbose_name='Branch',
                )),
                ('product', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name='lots',
                    to='quartermaster.product', verbose_name='Product',
                )),
            ],
            options={
                'verbose_name': 'Stock lot',
                'verbose_name_plural': 'Stock lots',
                'ordering': ['received_at', 'created_at', 'id'],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(
                            ('qty_remaining__gte', 0),
                            ('qty_remaining__lte', models.F('qty_received')),
                        ),
                        name='qm_lot_remaining_within_received',
                    ),
                ],
                'indexes': [
                    models.Index(fields=['tenant_id', 'branch', 'product', 'received_at'], name='qm_lot_fifo_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='StockLedger',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64, verbose_name='Tenant')),
                ('kind', models.CharField(
                    choices=[
                        ('RECEIPT', 'Receipt'),
                        ('CONSUMPTION', 'Consumption'),
                        ('ADJUSTMENT', 'Adjustment'),
                        ('REVERSAL', 'Reversal'),
                    ],
                    max_length=20, verbose_name='Kind',
                )),
                ('qty_delta', models.IntegerField(help_text='Positive = in, negative = out', verbose_name='Change')),
                ('reason', models.CharField(max_length=255, verbose_name='Reason')),
                ('occurred_at', models.DateTimeField(
                    db_index=True, default=django.utils.timezone.now, verbose_name='Occurred at',
                )),
                ('metadata', models.JSONField(blank=True, default=dict, verbose_name='Metadata')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                _user_fk('actor', 'Actor'),
                ('branch', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name='ledger',
                    to='quartermaster.branch', verbose_name='Branch',
                )),
                ('lot', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name='ledger',
                    to='quartermaster.stocklot', verbose_name='Lot',
                )),
                ('product', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name='ledger',
                    to='quartermaster.product', verbose_name='Product',
                )),
            ],
            options={
                'verbose_name': 'Ledger entry',
                'verbose_name_plural': 'Ledger entries',
                'ordering': ['occurred_at', 'id'],
                'indexes': [
                    models.Index(fields=['tenant_id', 'branch', 'product', 'occurred_at'], name='qm_ledger_key_idx'),
                    models.Index(fields=['lot'], name='qm_ledger_lot_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ProductStock',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64, verbose_name='Tenant')),
                ('qty_on_hand', models.IntegerField(default=0, verbose_name='On hand')),
                ('qty_allocated', models.IntegerField(default=0, verbose_name='Allocated')),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('branch', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name='stock',
                    to='quartermaster.branch', verbose_name='Branch',
                )),
                ('product', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name='stock',
                    to='quartermaster.product', verbose_name='Product',
                )),
            ],
            options={
                'verbose_name': 'Product stock',
                'verbose_name_plural': 'Product stock',
                'constraints': [
                    models.UniqueConstraint(
                        fields=('tenant_id', 'branch', 'product'), name='qm_product_stock_unique_key',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='StockTransfer',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64, verbose_name='Tenant')),
                ('transfer_number', models.CharField(max_length=32, verbose_name='Number')),
                ('initiation_type', models.CharField(
                    choices=[('PUSH', 'Push'), ('PULL', 'Pull')], default='PUSH', max_length=10,
                    verbose_name='Initiation',
                )),
                ('status', models.CharField(
                    choices=[
                        ('REQUESTED', 'Requested'),
                        ('APPROVED', 'Approved'),
                        ('REJECTED', 'Rejected'),
                        ('IN_TRANSIT', 'In transit'),
                        ('COMPLETED', 'Completed'),
                        ('CANCELLED', 'Cancelled'),
                    ],
                    db_index=True, default='REQUESTED', max_length=20, verbose_name='Status',
                )),
                ('priority', models.CharField(
                    choices=PRIORITY_CHOICES, default='NORMAL', max_length=10, verbose_name='Priority',
                )),
                _user_fk('requested_by', 'Requested by'),
                _user_fk('reviewed_by', 'Reviewed by'),
                _user_fk('shipped_by', 'Shipped by'),
                _user_fk('received_by', 'Received by'),
                ('requested_at', models.DateTimeField(auto_now_add=True)),
                ('reviewed_at', models.DateTimeField(blank=True, null=True)),
                ('shipped_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('request_notes', models.TextField(blank=True, default='')),
                ('review_notes', models.TextField(blank=True, default='')),
                ('order_notes', models.TextField(blank=True, default='')),
                ('requires_multi_level_approval', models.BooleanField(default=False)),
                ('approval_mode', models.CharField(
                    blank=True, choices=MODE_CHOICES, default='', max_length=12, verbose_name='Approval mode',
                )),
                ('is_reversal', models.BooleanField(default=False)),
                ('reversal_reason', models.TextField(blank=True, default='')),
                ('approval_rule', models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='transfers',
                    to='quartermaster.approvalrule', verbose_name='Approval rule',
                )),
                ('destination_branch', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name='inbound_transfers',
                    to='quartermaster.branch', verbose_name='Destination branch',
                )),
                ('reversal_of', models.OneToOneField(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='reversed_by',
                    to='quartermaster.stocktransfer', verbose_name='Reversal of',
                )),
                ('source_branch', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name='outbound_transfers',
                    to='quartermaster.branch', verbose_name='Source branch',
                )),
            ],
            options={
                'verbose_name': 'Stock transfer',
                'verbose_name_plural': 'Stock transfers',
                'ordering': ['-requested_at', '-id'],
                'constraints': [
                    models.UniqueConstraint(fields=('tenant_id', 'transfer_number'), name='qm_transfer_unique_number'),
                    models.CheckConstraint(
                        condition=models.Q(('source_branch', models.F('destination_branch')), _negated=True),
                        name='qm_transfer_distinct_branches',
                    ),
                ],
                'indexes': [
                    models.Index(fields=['tenant_id', 'status'], name='qm_transfer_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='StockTransferItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('qty_requested', models.PositiveIntegerField(verbose_name='Requested')),
                ('qty_approved', models.PositiveIntegerField(blank=True, null=True, verbose_name='Approved')),
                ('qty_shipped', models.PositiveIntegerField(default=0, verbose_name='Shipped')),
                ('qty_received', models.PositiveIntegerField(default=0, verbose_name='Received')),
                ('avg_unit_cost_pence', models.PositiveIntegerField(blank=True, null=True)),
                ('shipment_batches', models.JSONField(blank=True, default=list, null=True)),
                ('product', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name='+',
                    to='quartermaster.product', verbose_name='Product',
                )),
                ('transfer', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name='items',
                    to='quartermaster.stocktransfer', verbose_name='Transfer',
                )),
            ],
            options={
                'verbose_name': 'Transfer item',
                'verbose_name_plural': 'Transfer items',
                'ordering': ['id'],
                'constraints': [
                    models.UniqueConstraint(fields=('transfer', 'product'), name='qm_transfer_item_unique_product'),
                    models.CheckConstraint(
                        condition=models.Q(('qty_received__lte', models.F('qty_shipped'))),
                        name='qm_item_received_within_shipped',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='TransferApprovalRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('level', models.PositiveSmallIntegerField(verbose_name='Level')),
                ('level_name', models.CharField(max_length=100, verbose_name='Level name')),
                ('status', models.CharField(
                    choices=[
                        ('PENDING', 'Pending'),
                        ('APPROVED', 'Approved'),
                        ('REJECTED', 'Rejected'),
                        ('SKIPPED', 'Skipped'),
                    ],
                    default='PENDING', max_length=10, verbose_name='Status',
                )),
                ('is_gated', models.BooleanField(default=True, verbose_name='Waits for lower levels')),
                ('decided_at', models.DateTimeField(blank=True, null=True)),
                ('notes', models.TextField(blank=True, default='')),
                _user_fk('decided_by', 'Decided by'),
                ('required_role', models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+',
                    to='quartermaster.role', verbose_name='Required role',
                )),
                _user_fk('required_user', 'Required user'),
                ('transfer', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name='approval_records',
                    to='quartermaster.stocktransfer', verbose_name='Transfer',
                )),
            ],
            options={
                'verbose_name': 'Transfer approval',
                'verbose_name_plural': 'Transfer approvals',
                'ordering': ['transfer', 'level'],
                'constraints': [
                    models.UniqueConstraint(fields=('transfer', 'level'), name='qm_approval_record_unique_level'),
                ],
            },
        ),
        migrations.CreateModel(
            name='AuditEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64, verbose_name='Tenant')),
                ('entity_type', models.CharField(max_length=40, verbose_name='Entity type')),
                ('entity_id', models.CharField(max_length=64, verbose_name='Entity id')),
                ('action', models.CharField(db_index=True, max_length=40, verbose_name='Action')),
                ('before', models.JSONField(blank=True, null=True)),
                ('after', models.JSONField(blank=True, null=True)),
                ('diff', models.JSONField(blank=True, default=dict)),
                ('correlation_id', models.CharField(blank=True, default='', max_length=64)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                _user_fk('actor', 'Actor'),
            ],
            options={
                'verbose_name': 'Audit event',
                'verbose_name_plural': 'Audit events',
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['tenant_id', 'entity_type', 'entity_id'], name='qm_audit_entity_idx'),
                ],
            },
        ),
    ]
