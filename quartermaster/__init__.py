"""
Quartermaster — branch inventory with FIFO lots and stock transfers.

Usage:
    from quartermaster import stock, transfers, StockError

    stock.receive(500, widget, north, unit_cost_pence=120)
    stock.consume(150, widget, north, reason='sale')
    transfers.create(tenant_id, alice, north.pk, south.pk, items=[...])
"""


def __getattr__(name):
    """Lazy import to avoid circular imports during app loading."""
    if name == 'stock':
        from quartermaster.service import Stock
        return Stock
    elif name == 'transfers':
        from quartermaster.service import Transfers
        return Transfers
    elif name == 'templates':
        from quartermaster.service import Templates
        return Templates
    elif name == 'approval_rules':
        from quartermaster.service import Rules
        return Rules
    elif name in ('StockError', 'NotFound', 'InvalidRequest', 'Conflict', 'InsufficientStock', 'Forbidden'):
        from quartermaster import exceptions
        return getattr(exceptions, name)
    elif name == 'AuditContext':
        from quartermaster.protocols.audit import AuditContext
        return AuditContext
    elif name in ('StockLot', 'StockLedger', 'ProductStock', 'StockTransfer', 'TransferTemplate', 'ApprovalRule'):
        from quartermaster import models
        return getattr(models, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    'stock',
    'transfers',
    'templates',
    'approval_rules',
    'StockError',
    'NotFound',
    'InvalidRequest',
    'Conflict',
    'InsufficientStock',
    'Forbidden',
    'AuditContext',
    'StockLot',
    'StockLedger',
    'ProductStock',
    'StockTransfer',
    'TransferTemplate',
    'ApprovalRule',
]

__version__ = '0.1.0'
