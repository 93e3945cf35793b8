"""
Catalog — product writes guarded by unique keys and entity versions.

Updates are compare-and-swap:

    UPDATE product SET ..., entity_version = entity_version + 1
    WHERE id = ? AND tenant_id = ? AND entity_version = ?

Zero affected rows means someone else won the race (or the product is gone).
"""

from __future__ import annotations

import logging

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from quartermaster.exceptions import Conflict, InvalidRequest, NotFound
from quartermaster.models import Product
from quartermaster.protocols.audit import AuditContext
from quartermaster.services.audit import record

logger = logging.getLogger('quartermaster')

UPDATABLE_FIELDS = frozenset({'sku', 'barcode', 'name', 'unit_price_pence'})


def product_snapshot(product) -> dict:
    return {
        'id': product.pk,
        'sku': product.sku,
        'barcode': product.barcode,
        'name': product.name,
        'unit_price_pence': product.unit_price_pence,
        'entity_version': product.entity_version,
    }


def _check_unique(tenant_id, sku=None, barcode=None, exclude_pk=None):
    qs = Product.objects.filter(tenant_id=tenant_id)
    if exclude_pk is not None:
        qs = qs.exclude(pk=exclude_pk)
    if sku is not None and qs.filter(sku=sku).exists():
        raise Conflict('DUPLICATE_SKU', sku=sku)
    if barcode and qs.filter(barcode=barcode).exists():
        raise Conflict('DUPLICATE_BARCODE', barcode=barcode)


def _validate_price(value):
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidRequest('INVALID_QUANTITY', unit_price_pence=value)


class Catalog:
    """Product create/update with optimistic concurrency."""

    @classmethod
    def create_product(cls, tenant_id: str, sku: str, name: str, unit_price_pence: int = 0,
                       barcode: str | None = None, context: AuditContext | None = None) -> Product:
        """
        Create a product.

        Raises:
            Conflict('DUPLICATE_SKU' | 'DUPLICATE_BARCODE')
        """
        _validate_price(unit_price_pence)
        barcode = barcode or None

        with transaction.atomic():
            _check_unique(tenant_id, sku=sku, barcode=barcode)
            try:
                with transaction.atomic():
                    product = Product.objects.create(
                        tenant_id=tenant_id,
                        sku=sku,
                        barcode=barcode,
                        name=name,
                        unit_price_pence=unit_price_pence,
                    )
            except IntegrityError as exc:
                # Lost a race against a concurrent insert of the same key
                _check_unique(tenant_id, sku=sku, barcode=barcode)
                raise Conflict('DUPLICATE_SKU', sku=sku) from exc

            record(
                context, tenant_id=tenant_id, entity_type='PRODUCT', entity_id=product.pk,
                action='PRODUCT_CREATE', after=product_snapshot(product),
            )
            logger.info("catalog.create", extra={"tenant": tenant_id, "sku": sku, "product_id": product.pk})
            return product

    @classmethod
    def update_product(cls, tenant_id: str, product_id: int, expected_version: int,
                       context: AuditContext | None = None, **fields) -> Product:
        """
        Update product fields if nobody changed it since expected_version.

        Raises:
            InvalidRequest('INVALID_FIELD'): Unknown or read-only field
            NotFound('PRODUCT_NOT_FOUND'): Product absent in tenant
            Conflict('STALE_VERSION'): Version moved on
            Conflict('DUPLICATE_SKU' | 'DUPLICATE_BARCODE')
        """
        unknown = sorted(set(fields) - UPDATABLE_FIELDS)
        if unknown:
            raise InvalidRequest('INVALID_FIELD', fields=unknown)
        if 'unit_price_pence' in fields:
            _validate_price(fields['unit_price_pence'])
        if 'barcode' in fields:
            fields['barcode'] = fields['barcode'] or None

        with transaction.atomic():
            try:
                before = Product.objects.get(pk=product_id, tenant_id=tenant_id)
            except Product.DoesNotExist:
                raise NotFound('PRODUCT_NOT_FOUND', product_id=product_id) from None

            _check_unique(
                tenant_id, sku=fields.get('sku'), barcode=fields.get('barcode'), exclude_pk=product_id,
            )
            updated = Product.objects.filter(
                pk=product_id, tenant_id=tenant_id, entity_version=expected_version,
            ).update(entity_version=F('entity_version') + 1, updated_at=timezone.now(), **fields)

            if updated == 0:
                raise Conflict(
                    'STALE_VERSION',
                    product_id=product_id,
                    expected=expected_version,
                    current=before.entity_version,
                )

            product = Product.objects.get(pk=product_id)
            record(
                context, tenant_id=tenant_id, entity_type='PRODUCT', entity_id=product.pk,
                action='PRODUCT_UPDATE', before=product_snapshot(before), after=product_snapshot(product),
            )
            logger.info(
                "catalog.update",
                extra={"tenant": tenant_id, "product_id": product_id, "version": product.entity_version},
            )
            return product
