"""
Pytest fixtures for Quartermaster tests.

Tenant "acme" has two branches, North and South:

    alice   member of North
    bob     member of South
    carol   member of both, role "Manager"
    dave    role "Director", no branch
    mallory no membership at all
"""

import pytest
from django.contrib.auth import get_user_model

from quartermaster import approval_rules, stock
from quartermaster.adapters import reset_backends
from quartermaster.models import Branch, BranchMembership, Product, Role, TenantMembership


User = get_user_model()

TENANT = 'acme'
OTHER_TENANT = 'globex'


@pytest.fixture(autouse=True)
def fresh_backends():
    """Collaborators are re-read from settings for every test."""
    reset_backends()
    yield
    reset_backends()


@pytest.fixture
def tenant_id():
    return TENANT


def _member(user, *branches):
    for branch in branches:
        BranchMembership.objects.create(tenant_id=branch.tenant_id, branch=branch, user=user)
    return user


@pytest.fixture
def north(db):
    return Branch.objects.create(tenant_id=TENANT, slug='north', name='North')


@pytest.fixture
def south(db):
    return Branch.objects.create(tenant_id=TENANT, slug='south', name='South')


@pytest.fixture
def east(db):
    return Branch.objects.create(tenant_id=TENANT, slug='east', name='East')


@pytest.fixture
def foreign_branch(db):
    """Branch of another tenant."""
    return Branch.objects.create(tenant_id=OTHER_TENANT, slug='north', name='Globex North')


@pytest.fixture
def manager_role(db):
    return Role.objects.create(tenant_id=TENANT, name='Manager')


@pytest.fixture
def director_role(db):
    return Role.objects.create(tenant_id=TENANT, name='Director')


@pytest.fixture
def alice(db, north):
    return _member(User.objects.create_user(username='alice', password='testpass123'), north)


@pytest.fixture
def bob(db, south):
    return _member(User.objects.create_user(username='bob', password='testpass123'), south)


@pytest.fixture
def carol(db, north, south, manager_role):
    user = _member(User.objects.create_user(username='carol', password='testpass123'), north, south)
    TenantMembership.objects.create(tenant_id=TENANT, user=user, role=manager_role)
    return user


@pytest.fixture
def dave(db, director_role):
    user = User.objects.create_user(username='dave', password='testpass123')
    TenantMembership.objects.create(tenant_id=TENANT, user=user, role=director_role)
    return user


@pytest.fixture
def mallory(db):
    return User.objects.create_user(username='mallory', password='testpass123')


@pytest.fixture
def widget(db):
    """Product priced at £2.50."""
    return Product.objects.create(tenant_id=TENANT, sku='WID-1', name='Widget', unit_price_pence=250)


@pytest.fixture
def gadget(db):
    return Product.objects.create(tenant_id=TENANT, sku='GAD-1', name='Gadget', unit_price_pence=1000)


@pytest.fixture
def foreign_product(db):
    return Product.objects.create(tenant_id=OTHER_TENANT, sku='WID-1', name='Globex Widget')


@pytest.fixture
def stocked_north(widget, gadget, north):
    """
    North holds two widget lots and one gadget lot:

        widget  100 @ 120p (older), 50 @ 150p
        gadget   40 @ 900p
    """
    older = stock.receive(100, widget, north, unit_cost_pence=120, reason='PO-1')
    newer = stock.receive(50, widget, north, unit_cost_pence=150, reason='PO-2')
    gadgets = stock.receive(40, gadget, north, unit_cost_pence=900, reason='PO-3')
    return older, newer, gadgets


@pytest.fixture
def qty_rule(carol, dave, manager_role):
    """Transfers of 100+ units need a manager, then dave."""
    return approval_rules.create(
        TENANT,
        name='Large transfers',
        conditions=[{'condition_type': 'TOTAL_QTY_THRESHOLD', 'threshold': 100}],
        levels=[
            {'level': 1, 'name': 'Manager', 'required_role_id': manager_role.pk},
            {'level': 2, 'name': 'Director', 'required_user_id': dave.pk},
        ],
        priority=10,
    )
