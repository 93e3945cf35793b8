"""
Tenancy records — branches, memberships and roles.

These are the minimum the inventory core needs to re-validate who may act on
which branch. Creating and editing them belongs to the host project.
"""

from django.conf import settings
from django.db import models
from django.utils.translation import gettext_lazy as _


class Branch(models.Model):
    """A location holding stock for one tenant."""

    tenant_id = models.CharField(max_length=64, db_index=True, verbose_name=_('Tenant'))
    slug = models.SlugField(max_length=64, verbose_name=_('Slug'))
    name = models.CharField(max_length=200, verbose_name=_('Name'))
    is_active = models.BooleanField(default=True, verbose_name=_('Active'))
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _('Branch')
        verbose_name_plural = _('Branches')
        ordering = ['tenant_id', 'name']
        constraints = [
            models.UniqueConstraint(fields=['tenant_id', 'slug'], name='qm_branch_unique_slug'),
        ]

    def __str__(self) -> str:
        return self.name


class BranchMembership(models.Model):
    """User belongs to a branch."""

    tenant_id = models.CharField(max_length=64, db_index=True, verbose_name=_('Tenant'))
    branch = models.ForeignKey(
        Branch,
        on_delete=models.CASCADE,
        related_name='memberships',
        verbose_name=_('Branch'),
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='branch_memberships',
        verbose_name=_('User'),
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _('Branch membership')
        verbose_name_plural = _('Branch memberships')
        constraints = [
            models.UniqueConstraint(fields=['branch', 'user'], name='qm_branch_membership_unique'),
        ]

    def __str__(self) -> str:
        return f"{self.user} @ {self.branch}"


class Role(models.Model):
    """Tenant-defined role, referenced by approval levels."""

    tenant_id = models.CharField(max_length=64, db_index=True, verbose_name=_('Tenant'))
    name = models.CharField(max_length=100, verbose_name=_('Name'))

    class Meta:
        verbose_name = _('Role')
        verbose_name_plural = _('Roles')
        constraints = [
            models.UniqueConstraint(fields=['tenant_id', 'name'], name='qm_role_unique_name'),
        ]

    def __str__(self) -> str:
        return self.name


class TenantMembership(models.Model):
    """User's role within a tenant."""

    tenant_id = models.CharField(max_length=64, db_index=True, verbose_name=_('Tenant'))
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='tenant_memberships',
        verbose_name=_('User'),
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.PROTECT,
        related_name='memberships',
        verbose_name=_('Role'),
    )

    class Meta:
        verbose_name = _('Tenant membership')
        verbose_name_plural = _('Tenant memberships')
        constraints = [
            models.UniqueConstraint(fields=['tenant_id', 'user'], name='qm_tenant_membership_unique'),
        ]

    def __str__(self) -> str:
        return f"{self.user} [{self.role}]"
