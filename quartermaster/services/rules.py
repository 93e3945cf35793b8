"""
Approval rule management — create, update, archive, restore, list.

Archiving only hides a rule from evaluation; is_active and the rule's
conditions and levels are kept so restore() brings it back unchanged.
"""

from __future__ import annotations

import logging
from typing import Any

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from quartermaster.exceptions import Conflict, InvalidRequest, NotFound
from quartermaster.models import (
    ApprovalLevel,
    ApprovalMode,
    ApprovalRule,
    ApprovalRuleCondition,
    Branch,
    ConditionType,
    Role,
    TenantMembership,
    TransferPriority,
)
from quartermaster.protocols.audit import AuditContext
from quartermaster.services.audit import record, rule_snapshot

logger = logging.getLogger('quartermaster')

THRESHOLD_CONDITIONS = (ConditionType.TOTAL_QTY_THRESHOLD, ConditionType.TOTAL_VALUE_THRESHOLD)
BRANCH_CONDITIONS = (ConditionType.SOURCE_BRANCH, ConditionType.DESTINATION_BRANCH)

ARCHIVED_FILTERS = ('active', 'archived', 'all')


def _clean_conditions(tenant_id: str, conditions: list[dict[str, Any]]) -> list[dict[str, Any]]:
    if not conditions:
        raise InvalidRequest('EMPTY_CONDITIONS')
    cleaned = []
    for raw in conditions:
        kind = raw.get('condition_type')
        if kind not in ConditionType.values:
            raise InvalidRequest('INVALID_CONDITION', condition=raw)
        entry = {'condition_type': kind, 'threshold': None, 'branch_id': None, 'priority': ''}
        if kind in THRESHOLD_CONDITIONS:
            threshold = raw.get('threshold')
            if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 0:
                raise InvalidRequest('INVALID_CONDITION', condition=raw)
            entry['threshold'] = threshold
        elif kind in BRANCH_CONDITIONS:
            branch_id = raw.get('branch_id')
            if branch_id is None:
                raise InvalidRequest('INVALID_CONDITION', condition=raw)
            if not Branch.objects.filter(pk=branch_id, tenant_id=tenant_id).exists():
                raise NotFound('BRANCH_NOT_FOUND', branch_id=branch_id)
            entry['branch_id'] = branch_id
        else:
            priority = raw.get('priority')
            if priority not in TransferPriority.values:
                raise InvalidRequest('INVALID_CONDITION', condition=raw)
            entry['priority'] = priority
        cleaned.append(entry)
    return cleaned


def _clean_levels(tenant_id: str, levels: list[dict[str, Any]]) -> list[dict[str, Any]]:
    if not levels:
        raise InvalidRequest('EMPTY_LEVELS')
    for raw in levels:
        number = raw.get('level')
        if isinstance(number, bool) or not isinstance(number, int):
            raise InvalidRequest('INVALID_LEVELS', level=number)
    ordered = sorted(levels, key=lambda lvl: lvl['level'])
    numbers = [lvl.get('level') for lvl in ordered]
    if numbers != list(range(1, len(ordered) + 1)):
        raise InvalidRequest('INVALID_LEVELS', levels=numbers)

    User = get_user_model()
    cleaned = []
    for raw in ordered:
        role_id = raw.get('required_role_id')
        user_id = raw.get('required_user_id')
        if (role_id is None) == (user_id is None) or not raw.get('name'):
            raise InvalidRequest('INVALID_LEVELS', level=raw.get('level'))
        if role_id is not None and not Role.objects.filter(pk=role_id, tenant_id=tenant_id).exists():
            raise NotFound('ROLE_NOT_FOUND', role_id=role_id)
        if user_id is not None:
            in_tenant = (
                User.objects.filter(pk=user_id).exists()
                and TenantMembership.objects.filter(tenant_id=tenant_id, user_id=user_id).exists()
            )
            if not in_tenant:
                raise NotFound('USER_NOT_FOUND', user_id=user_id)
        cleaned.append({
            'level': raw['level'],
            'name': raw['name'],
            'required_role_id': role_id,
            'required_user_id': user_id,
            'is_gated': bool(raw.get('is_gated', True)),
        })
    return cleaned


def _replace_children(rule, conditions=None, levels=None):
    if conditions is not None:
        rule.conditions.all().delete()
        ApprovalRuleCondition.objects.bulk_create(
            [ApprovalRuleCondition(rule=rule, **c) for c in conditions]
        )
    if levels is not None:
        rule.levels.all().delete()
        ApprovalLevel.objects.bulk_create([ApprovalLevel(rule=rule, **lvl) for lvl in levels])


def _validate_mode(mode):
    if mode not in ApprovalMode.values:
        raise InvalidRequest('INVALID_FIELD', approval_mode=mode)


class ApprovalRules:
    """Tenant-scoped approval rule administration."""

    @classmethod
    def get(cls, tenant_id: str, rule_id: int) -> ApprovalRule:
        try:
            return ApprovalRule.objects.prefetch_related('conditions', 'levels').get(
                pk=rule_id, tenant_id=tenant_id,
            )
        except ApprovalRule.DoesNotExist:
            raise NotFound('RULE_NOT_FOUND', rule_id=rule_id) from None

    @classmethod
    def list(cls, tenant_id: str, archived: str = 'active', is_active: bool | None = None) -> list[ApprovalRule]:
        """
        Rules of a tenant, highest priority first.

        Args:
            archived: 'active' (default) hides archived rules, 'archived'
                shows only them, 'all' shows both
            is_active: Filter on the active flag
        """
        if archived not in ARCHIVED_FILTERS:
            raise InvalidRequest('INVALID_FIELD', archived=archived)
        qs = ApprovalRule.objects.filter(tenant_id=tenant_id)
        if archived == 'active':
            qs = qs.filter(is_archived=False)
        elif archived == 'archived':
            qs = qs.filter(is_archived=True)
        if is_active is not None:
            qs = qs.filter(is_active=is_active)
        return list(qs.prefetch_related('conditions', 'levels').order_by('-priority', 'id'))

    @classmethod
    def create(cls, tenant_id: str, name: str, conditions: list[dict], levels: list[dict],
               approval_mode: str = ApprovalMode.SEQUENTIAL, priority: int = 0,
               description: str = '', is_active: bool = True,
               context: AuditContext | None = None) -> ApprovalRule:
        """
        Create a rule with its conditions and levels.

        Args:
            conditions: [{'condition_type', 'threshold'|'branch_id'|'priority'}]
            levels: [{'level', 'name', 'required_role_id'|'required_user_id', 'is_gated'}]

        Raises:
            InvalidRequest: Missing conditions/levels, level gaps, incomplete entries
            NotFound: Branch, role or user outside the tenant
        """
        if not name:
            raise InvalidRequest('INVALID_FIELD', name=name)
        _validate_mode(approval_mode)
        clean_conditions = _clean_conditions(tenant_id, conditions)
        clean_levels = _clean_levels(tenant_id, levels)

        with transaction.atomic():
            rule = ApprovalRule.objects.create(
                tenant_id=tenant_id,
                name=name,
                description=description,
                is_active=is_active,
                approval_mode=approval_mode,
                priority=priority,
            )
            _replace_children(rule, clean_conditions, clean_levels)
            record(
                context, tenant_id=tenant_id, entity_type='APPROVAL_RULE', entity_id=rule.pk,
                action='APPROVAL_RULE_CREATE', after=rule_snapshot(rule),
            )
            logger.info("rule.create", extra={"tenant": tenant_id, "rule": rule.pk, "priority": priority})
            return rule

    @classmethod
    def update(cls, tenant_id: str, rule_id: int, conditions: list[dict] | None = None,
               levels: list[dict] | None = None, context: AuditContext | None = None,
               **fields) -> ApprovalRule:
        """
        Update scalar fields; conditions and levels are replaced when given.

        Accepted fields: name, description, is_active, approval_mode, priority.
        """
        allowed = {'name', 'description', 'is_active', 'approval_mode', 'priority'}
        unknown = sorted(set(fields) - allowed)
        if unknown:
            raise InvalidRequest('INVALID_FIELD', fields=unknown)
        if 'approval_mode' in fields:
            _validate_mode(fields['approval_mode'])
        if 'name' in fields and not fields['name']:
            raise InvalidRequest('INVALID_FIELD', name=fields['name'])
        clean_conditions = _clean_conditions(tenant_id, conditions) if conditions is not None else None
        clean_levels = _clean_levels(tenant_id, levels) if levels is not None else None

        with transaction.atomic():
            rule = cls._locked(tenant_id, rule_id)
            before = rule_snapshot(rule)
            for key, value in fields.items():
                setattr(rule, key, value)
            rule.save()
            _replace_children(rule, clean_conditions, clean_levels)
            record(
                context, tenant_id=tenant_id, entity_type='APPROVAL_RULE', entity_id=rule.pk,
                action='APPROVAL_RULE_UPDATE', before=before, after=rule_snapshot(rule),
            )
            logger.info("rule.update", extra={"tenant": tenant_id, "rule": rule.pk})
            return rule

    @classmethod
    def archive(cls, tenant_id: str, rule_id: int, context: AuditContext | None = None) -> ApprovalRule:
        """
        Hide a rule from evaluation.

        Raises:
            Conflict('ALREADY_ARCHIVED')
        """
        with transaction.atomic():
            rule = cls._locked(tenant_id, rule_id)
            if rule.is_archived:
                raise Conflict('ALREADY_ARCHIVED', rule_id=rule_id)
            before = rule_snapshot(rule)
            rule.is_archived = True
            rule.archived_at = timezone.now()
            rule.archived_by = context.actor if context else None
            rule.save(update_fields=['is_archived', 'archived_at', 'archived_by', 'updated_at'])
            record(
                context, tenant_id=tenant_id, entity_type='APPROVAL_RULE', entity_id=rule.pk,
                action='APPROVAL_RULE_ARCHIVE', before=before, after=rule_snapshot(rule),
            )
            logger.info("rule.archive", extra={"tenant": tenant_id, "rule": rule.pk})
            return rule

    @classmethod
    def restore(cls, tenant_id: str, rule_id: int, context: AuditContext | None = None) -> ApprovalRule:
        """
        Bring an archived rule back into evaluation.

        Raises:
            Conflict('NOT_ARCHIVED')
        """
        with transaction.atomic():
            rule = cls._locked(tenant_id, rule_id)
            if not rule.is_archived:
                raise Conflict('NOT_ARCHIVED', rule_id=rule_id)
            before = rule_snapshot(rule)
            rule.is_archived = False
            rule.archived_at = None
            rule.archived_by = None
            rule.save(update_fields=['is_archived', 'archived_at', 'archived_by', 'updated_at'])
            record(
                context, tenant_id=tenant_id, entity_type='APPROVAL_RULE', entity_id=rule.pk,
                action='APPROVAL_RULE_RESTORE', before=before, after=rule_snapshot(rule),
            )
            logger.info("rule.restore", extra={"tenant": tenant_id, "rule": rule.pk})
            return rule

    @classmethod
    def _locked(cls, tenant_id, rule_id) -> ApprovalRule:
        rule = ApprovalRule.objects.select_for_update().filter(pk=rule_id, tenant_id=tenant_id).first()
        if rule is None:
            raise NotFound('RULE_NOT_FOUND', rule_id=rule_id)
        return rule
