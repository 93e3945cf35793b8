"""
Access checks — tenant scoping and branch membership.
"""

from quartermaster.adapters import get_membership_backend
from quartermaster.exceptions import Forbidden, NotFound
from quartermaster.models import Branch, Product


def require_branch_member(tenant_id: str, user, branch, **data) -> None:
    """Raise Forbidden unless user belongs to branch."""
    if not get_membership_backend().is_branch_member(tenant_id, user, branch.pk):
        raise Forbidden('NOT_BRANCH_MEMBER', branch_id=branch.pk, **data)


def is_branch_member(tenant_id: str, user, branch) -> bool:
    return get_membership_backend().is_branch_member(tenant_id, user, branch.pk)


def get_branch(tenant_id: str, branch_id: int) -> Branch:
    """Branch within tenant; other tenants' branches read as missing."""
    try:
        return Branch.objects.get(pk=branch_id, tenant_id=tenant_id)
    except Branch.DoesNotExist:
        raise NotFound('BRANCH_NOT_FOUND', branch_id=branch_id) from None


def get_product(tenant_id: str, product_id: int) -> Product:
    try:
        return Product.objects.get(pk=product_id, tenant_id=tenant_id)
    except Product.DoesNotExist:
        raise NotFound('PRODUCT_NOT_FOUND', product_id=product_id) from None


def check_same_tenant(product, branch) -> str:
    """Tenant shared by product and branch; NotFound when they differ."""
    if product.tenant_id != branch.tenant_id:
        raise NotFound('BRANCH_NOT_FOUND', branch_id=branch.pk, product_id=product.pk)
    return product.tenant_id
