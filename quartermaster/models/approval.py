"""
Approval rules — tenant-defined triggers for multi-level sign-off.
"""

from django.conf import settings
from django.db import models
from django.utils.translation import gettext_lazy as _

from quartermaster.models.enums import ApprovalMode, ConditionType, TransferPriority


class ApprovalRuleQuerySet(models.QuerySet):

    def evaluable(self, tenant_id):
        """Active, non-archived rules, highest priority first."""
        return self.filter(
            tenant_id=tenant_id, is_active=True, is_archived=False,
        ).order_by('-priority', 'id')


class ApprovalRule(models.Model):
    """
    Rule that routes matching transfers into multi-level approval.

    Archival is reversible and independent of is_active: an archived rule is
    never evaluated, whatever its priority.
    """

    tenant_id = models.CharField(max_length=64, db_index=True, verbose_name=_('Tenant'))
    name = models.CharField(max_length=200, verbose_name=_('Name'))
    description = models.TextField(blank=True, default='')
    is_active = models.BooleanField(default=True, verbose_name=_('Active'))
    is_archived = models.BooleanField(default=False, verbose_name=_('Archived'))
    archived_at = models.DateTimeField(null=True, blank=True)
    archived_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='+', verbose_name=_('Archived by'),
    )
    approval_mode = models.CharField(
        max_length=12,
        choices=ApprovalMode.choices,
        default=ApprovalMode.SEQUENTIAL,
        verbose_name=_('Approval mode'),
    )
    priority = models.IntegerField(default=0, verbose_name=_('Priority'))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ApprovalRuleQuerySet.as_manager()

    class Meta:
        verbose_name = _('Approval rule')
        verbose_name_plural = _('Approval rules')
        ordering = ['-priority', 'id']
        indexes = [
            models.Index(fields=['tenant_id', 'is_active', 'is_archived', 'priority'], name='qm_rule_eval_idx'),
        ]

    def __str__(self) -> str:
        return self.name


class ApprovalRuleCondition(models.Model):
    """One condition of a rule; a rule matches when all of them hold."""

    rule = models.ForeignKey(
        ApprovalRule,
        on_delete=models.CASCADE,
        related_name='conditions',
        verbose_name=_('Rule'),
    )
    condition_type = models.CharField(max_length=30, choices=ConditionType.choices, verbose_name=_('Type'))
    threshold = models.PositiveIntegerField(
        null=True,
        blank=True,
        verbose_name=_('Threshold'),
        help_text=_('Units for quantity, pounds for value'),
    )
    branch = models.ForeignKey(
        'quartermaster.Branch', on_delete=models.CASCADE, null=True, blank=True,
        related_name='+', verbose_name=_('Branch'),
    )
    priority = models.CharField(
        max_length=10,
        choices=TransferPriority.choices,
        blank=True,
        default='',
        verbose_name=_('Priority'),
    )

    class Meta:
        verbose_name = _('Rule condition')
        verbose_name_plural = _('Rule conditions')
        ordering = ['id']

    def __str__(self) -> str:
        return f"{self.condition_type} {self.threshold or self.branch_id or self.priority}"


class ApprovalLevel(models.Model):
    """One sign-off step; satisfied by a role holder or a named user."""

    rule = models.ForeignKey(
        ApprovalRule,
        on_delete=models.CASCADE,
        related_name='levels',
        verbose_name=_('Rule'),
    )
    level = models.PositiveSmallIntegerField(verbose_name=_('Level'))
    name = models.CharField(max_length=100, verbose_name=_('Name'))
    required_role = models.ForeignKey(
        'quartermaster.Role', on_delete=models.PROTECT, null=True, blank=True,
        related_name='+', verbose_name=_('Required role'),
    )
    required_user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, null=True, blank=True,
        related_name='+', verbose_name=_('Required user'),
    )
    is_gated = models.BooleanField(
        default=True,
        verbose_name=_('Waits for lower levels'),
        help_text=_('Only consulted by HYBRID rules'),
    )

    class Meta:
        verbose_name = _('Approval level')
        verbose_name_plural = _('Approval levels')
        ordering = ['rule', 'level']
        constraints = [
            models.UniqueConstraint(fields=['rule', 'level'], name='qm_approval_level_unique'),
        ]

    def __str__(self) -> str:
        return f"L{self.level} {self.name}"
