"""
Transfer templates — saved routes with default lines, and transfers started from them.

Templates are archived rather than deleted. An archived template keeps its
route and items, drops out of the default listing and cannot start a
transfer until restored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from quartermaster.conf import quartermaster_settings
from quartermaster.exceptions import Conflict, InvalidRequest, NotFound
from quartermaster.models import (
    InitiationType,
    StockTransfer,
    TransferPriority,
    TransferTemplate,
    TransferTemplateItem,
)
from quartermaster.protocols.audit import AuditContext
from quartermaster.services.access import get_branch, get_product
from quartermaster.services.audit import record, template_snapshot
from quartermaster.services.movements import validate_quantity
from quartermaster.services.paging import after_keyset, decode_keyset, encode_keyset
from quartermaster.services.rules import ARCHIVED_FILTERS
from quartermaster.services.transfers import StockTransfers

logger = logging.getLogger('quartermaster')

ENTITY = 'TRANSFER_TEMPLATE'


@dataclass(frozen=True)
class TemplatePage:
    items: list[TransferTemplate]
    has_next: bool
    next_cursor: str | None


def _clean_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidRequest('INVALID_FIELD', name=name)
    return name.strip()


def _clean_route(tenant_id, source_branch_id, destination_branch_id):
    if source_branch_id == destination_branch_id:
        raise InvalidRequest('SAME_BRANCH', branch_id=source_branch_id)
    return get_branch(tenant_id, source_branch_id), get_branch(tenant_id, destination_branch_id)


def _clean_items(tenant_id: str, items: list[dict[str, Any]]) -> list[tuple[Any, int]]:
    if not items:
        raise InvalidRequest('EMPTY_ITEMS')
    lines = []
    seen = set()
    for entry in items:
        product = get_product(tenant_id, entry.get('product_id'))
        if product.pk in seen:
            raise InvalidRequest('DUPLICATE_ITEM', product_id=product.pk)
        seen.add(product.pk)
        validate_quantity(entry.get('default_qty'))
        lines.append((product, entry['default_qty']))
    return lines


def _replace_items(template, lines):
    template.items.all().delete()
    TransferTemplateItem.objects.bulk_create([
        TransferTemplateItem(template=template, product=product, default_qty=qty)
        for product, qty in lines
    ])


def _audit(context, template, action, before, **extra):
    after = template_snapshot(template)
    after.update(extra)
    record(
        context, tenant_id=template.tenant_id, entity_type=ENTITY, entity_id=template.pk,
        action=action, before=before, after=after,
    )


class StockTransferTemplates:
    """Tenant-scoped transfer templates."""

    @classmethod
    def get(cls, tenant_id: str, template_id: int) -> TransferTemplate:
        try:
            return TransferTemplate.objects.select_related(
                'source_branch', 'destination_branch',
            ).prefetch_related('items__product').get(pk=template_id, tenant_id=tenant_id)
        except TransferTemplate.DoesNotExist:
            raise NotFound('TEMPLATE_NOT_FOUND', template_id=template_id) from None

    @classmethod
    def list(cls, tenant_id: str, q: str | None = None, source_branch_id: int | None = None,
             destination_branch_id: int | None = None, archived: str = 'active',
             limit: int = 20, cursor: str | None = None) -> TemplatePage:
        """
        Templates of a tenant in name order.

        Args:
            q: Case-insensitive search within name and description
            archived: 'active' (default), 'archived' or 'all'
            cursor: next_cursor of the previous page
        """
        if archived not in ARCHIVED_FILTERS:
            raise InvalidRequest('INVALID_FIELD', archived=archived)
        qs = TransferTemplate.objects.filter(tenant_id=tenant_id)
        if archived == 'active':
            qs = qs.filter(is_archived=False)
        elif archived == 'archived':
            qs = qs.filter(is_archived=True)
        if q and q.strip():
            term = q.strip()
            qs = qs.filter(Q(name__icontains=term) | Q(description__icontains=term))
        if source_branch_id is not None:
            qs = qs.filter(source_branch_id=source_branch_id)
        if destination_branch_id is not None:
            qs = qs.filter(destination_branch_id=destination_branch_id)
        if cursor:
            value, pk = decode_keyset(cursor)
            qs = qs.filter(after_keyset('name', value, pk, descending=False))

        size = max(1, min(int(limit), quartermaster_settings.LEDGER_MAX_PAGE_SIZE))
        rows = list(
            qs.select_related('source_branch', 'destination_branch')
            .prefetch_related('items')
            .order_by('name', 'id')[:size + 1]
        )
        has_next = len(rows) > size
        page = rows[:size]
        return TemplatePage(
            items=page,
            has_next=has_next,
            next_cursor=encode_keyset(page[-1].name, page[-1].pk) if has_next else None,
        )

    @classmethod
    def create(cls, tenant_id: str, user, name: str, source_branch_id: int,
               destination_branch_id: int, items: list[dict[str, Any]], description: str = '',
               correlation_id: str | None = None) -> TransferTemplate:
        """
        Save a route with default lines.

        Args:
            items: [{'product_id': 1, 'default_qty': 10}, ...]

        Raises:
            InvalidRequest('INVALID_FIELD' | 'SAME_BRANCH' | 'EMPTY_ITEMS'
                           | 'DUPLICATE_ITEM' | 'INVALID_QUANTITY')
            NotFound('BRANCH_NOT_FOUND' | 'PRODUCT_NOT_FOUND')
        """
        name = _clean_name(name)
        source, destination = _clean_route(tenant_id, source_branch_id, destination_branch_id)
        lines = _clean_items(tenant_id, items)

        context = AuditContext(actor=user, correlation_id=correlation_id)
        with transaction.atomic():
            template = TransferTemplate.objects.create(
                tenant_id=tenant_id,
                name=name,
                description=description or '',
                source_branch=source,
                destination_branch=destination,
                created_by=user,
            )
            _replace_items(template, lines)
            _audit(context, template, 'TRANSFER_TEMPLATE_CREATE', None)
            logger.info(
                "template.create",
                extra={"tenant": tenant_id, "template": template.pk, "items": len(lines)},
            )
            return template

    @classmethod
    def update(cls, tenant_id: str, template_id: int, user, items: list[dict[str, Any]] | None = None,
               correlation_id: str | None = None, **fields) -> TransferTemplate:
        """
        Update scalar fields; items are replaced when given.

        Accepted fields: name, description, source_branch_id, destination_branch_id.
        The resulting route must still join two different branches.
        """
        allowed = {'name', 'description', 'source_branch_id', 'destination_branch_id'}
        unknown = sorted(set(fields) - allowed)
        if unknown:
            raise InvalidRequest('INVALID_FIELD', fields=unknown)
        if 'name' in fields:
            fields['name'] = _clean_name(fields['name'])
        lines = _clean_items(tenant_id, items) if items is not None else None

        context = AuditContext(actor=user, correlation_id=correlation_id)
        with transaction.atomic():
            template = cls._locked(tenant_id, template_id)
            before = template_snapshot(template)
            if 'source_branch_id' in fields or 'destination_branch_id' in fields:
                source, destination = _clean_route(
                    tenant_id,
                    fields.pop('source_branch_id', template.source_branch_id),
                    fields.pop('destination_branch_id', template.destination_branch_id),
                )
                template.source_branch = source
                template.destination_branch = destination
            for key, value in fields.items():
                setattr(template, key, value)
            template.save()
            if lines is not None:
                _replace_items(template, lines)
            _audit(context, template, 'TRANSFER_TEMPLATE_UPDATE', before)
            logger.info("template.update", extra={"tenant": tenant_id, "template": template.pk})
            return template

    @classmethod
    def archive(cls, tenant_id: str, template_id: int, user,
                correlation_id: str | None = None) -> TransferTemplate:
        """
        Hide a template from the default listing.

        Raises:
            Conflict('ALREADY_ARCHIVED')
        """
        context = AuditContext(actor=user, correlation_id=correlation_id)
        with transaction.atomic():
            template = cls._locked(tenant_id, template_id)
            if template.is_archived:
                raise Conflict('ALREADY_ARCHIVED', template_id=template_id)
            before = template_snapshot(template)
            template.is_archived = True
            template.archived_at = timezone.now()
            template.archived_by = user
            template.save(update_fields=['is_archived', 'archived_at', 'archived_by', 'updated_at'])
            _audit(context, template, 'TRANSFER_TEMPLATE_ARCHIVE', before)
            logger.info("template.archive", extra={"tenant": tenant_id, "template": template.pk})
            return template

    @classmethod
    def restore(cls, tenant_id: str, template_id: int, user,
                correlation_id: str | None = None) -> TransferTemplate:
        """
        Bring an archived template back.

        Raises:
            Conflict('NOT_ARCHIVED')
        """
        context = AuditContext(actor=user, correlation_id=correlation_id)
        with transaction.atomic():
            template = cls._locked(tenant_id, template_id)
            if not template.is_archived:
                raise Conflict('NOT_ARCHIVED', template_id=template_id)
            before = template_snapshot(template)
            template.is_archived = False
            template.archived_at = None
            template.archived_by = None
            template.save(update_fields=['is_archived', 'archived_at', 'archived_by', 'updated_at'])
            _audit(context, template, 'TRANSFER_TEMPLATE_RESTORE', before)
            logger.info("template.restore", extra={"tenant": tenant_id, "template": template.pk})
            return template

    @classmethod
    def duplicate(cls, tenant_id: str, template_id: int, user, name: str | None = None,
                  correlation_id: str | None = None) -> TransferTemplate:
        """
        Copy a template's route and items under a new name.

        The copy is never archived and is created by user. Without a name it
        is called "<original name> (Copy)".
        """
        new_name = _clean_name(name) if name is not None else None
        context = AuditContext(actor=user, correlation_id=correlation_id)
        with transaction.atomic():
            original = cls._locked(tenant_id, template_id)
            copy = TransferTemplate.objects.create(
                tenant_id=tenant_id,
                name=new_name or f"{original.name} (Copy)",
                description=original.description,
                source_branch_id=original.source_branch_id,
                destination_branch_id=original.destination_branch_id,
                created_by=user,
            )
            TransferTemplateItem.objects.bulk_create([
                TransferTemplateItem(template=copy, product_id=item.product_id, default_qty=item.default_qty)
                for item in original.items.all()
            ])
            _audit(context, copy, 'TRANSFER_TEMPLATE_DUPLICATE', None, duplicated_from_id=original.pk)
            logger.info(
                "template.duplicate",
                extra={"tenant": tenant_id, "template": copy.pk, "original": original.pk},
            )
            return copy

    @classmethod
    def create_transfer(cls, tenant_id: str, template_id: int, user,
                        quantities: dict[int, int] | None = None,
                        initiation_type: str = InitiationType.PUSH,
                        priority: str = TransferPriority.NORMAL, request_notes: str = '',
                        order_notes: str = '', correlation_id: str | None = None) -> StockTransfer:
        """
        Request a transfer along a template's route.

        Args:
            quantities: Optional {product_id: qty} overriding default_qty;
                a qty of 0 leaves that line out

        Everything else (membership, approval rules, audit) is exactly as
        for StockTransfers.create().

        Raises:
            NotFound('TEMPLATE_NOT_FOUND' | 'ITEM_NOT_FOUND')
            Conflict('TEMPLATE_ARCHIVED')
        """
        template = cls.get(tenant_id, template_id)
        if template.is_archived:
            raise Conflict('TEMPLATE_ARCHIVED', template_id=template_id)
        quantities = dict(quantities or {})
        lines = []
        for item in template.items.all():
            qty = quantities.pop(item.product_id, item.default_qty)
            if qty == 0:
                continue
            lines.append({'product_id': item.product_id, 'qty_requested': qty})
        if quantities:
            raise NotFound('ITEM_NOT_FOUND', product_ids=sorted(quantities))

        transfer = StockTransfers.create(
            tenant_id, user, template.source_branch_id, template.destination_branch_id,
            items=lines,
            initiation_type=initiation_type,
            priority=priority,
            request_notes=request_notes,
            order_notes=order_notes,
            correlation_id=correlation_id,
        )
        logger.info(
            "template.use",
            extra={"tenant": tenant_id, "template": template.pk, "transfer": transfer.transfer_number},
        )
        return transfer

    @classmethod
    def _locked(cls, tenant_id, template_id) -> TransferTemplate:
        template = TransferTemplate.objects.select_for_update().filter(
            pk=template_id, tenant_id=tenant_id,
        ).first()
        if template is None:
            raise NotFound('TEMPLATE_NOT_FOUND', template_id=template_id)
        return template
