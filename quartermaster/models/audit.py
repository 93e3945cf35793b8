"""
AuditEvent model — storage used by the default audit writer.
"""

from django.conf import settings
from django.db import models
from django.utils.translation import gettext_lazy as _


class AuditEvent(models.Model):
    """Append-only audit trail entry."""

    tenant_id = models.CharField(max_length=64, db_index=True, verbose_name=_('Tenant'))
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='+', verbose_name=_('Actor'),
    )
    entity_type = models.CharField(max_length=40, verbose_name=_('Entity type'))
    entity_id = models.CharField(max_length=64, verbose_name=_('Entity id'))
    action = models.CharField(max_length=40, db_index=True, verbose_name=_('Action'))
    before = models.JSONField(null=True, blank=True)
    after = models.JSONField(null=True, blank=True)
    diff = models.JSONField(default=dict, blank=True)
    correlation_id = models.CharField(max_length=64, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        verbose_name = _('Audit event')
        verbose_name_plural = _('Audit events')
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['tenant_id', 'entity_type', 'entity_id'], name='qm_audit_entity_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.action} {self.entity_type}:{self.entity_id}"
