"""
Quartermaster Service — the public interface for inventory operations.

Usage:
    from quartermaster import stock, transfers, templates, approval_rules

    lot = stock.receive(500, widget, north, unit_cost_pence=120)
    stock.consume(150, widget, north, reason='sale')
    stock.levels(widget, north).qty_on_hand  # 350

    t = transfers.create(tenant_id, alice, north.pk, south.pk,
                         items=[{'product_id': widget.pk, 'qty_requested': 100}])
    transfers.review(tenant_id, t.pk, bob, 'approve')
    transfers.ship(tenant_id, t.pk, alice)
    transfers.receive(tenant_id, t.pk, bob, items=[...])

    tpl = templates.create(tenant_id, alice, 'Weekly restock', north.pk, south.pk,
                           items=[{'product_id': widget.pk, 'default_qty': 50}])
    templates.create_transfer(tenant_id, tpl.pk, alice)
"""

from quartermaster.services.catalog import Catalog
from quartermaster.services.movements import StockMovements
from quartermaster.services.queries import StockQueries
from quartermaster.services.rules import ApprovalRules
from quartermaster.services.templates import StockTransferTemplates
from quartermaster.services.transfers import StockTransfers


class Stock(StockQueries, StockMovements, Catalog):
    """
    Single interface for stock at a branch.

    Parameter convention: (quantity, product, branch, ...)
    Follows natural language: "Receive 500 widgets at North"

    IMPORTANT: All state-changing methods run under serializable() with
    row locks. See each method's docstring.
    """


class Transfers(StockTransfers):
    """Single interface for transfers between branches."""


class Rules(ApprovalRules):
    """Single interface for approval rule administration."""


class Templates(StockTransferTemplates):
    """Single interface for transfer templates."""
