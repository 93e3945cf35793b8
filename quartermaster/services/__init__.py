"""
Inventory services — modular organization of stock and transfer operations.

Re-exports all public classes:
    from quartermaster.services import StockQueries, StockMovements, StockTransfers
"""

from quartermaster.services.approvals import ApprovalEvaluation
from quartermaster.services.catalog import Catalog
from quartermaster.services.movements import StockMovements
from quartermaster.services.queries import StockQueries
from quartermaster.services.reversal import reverse_lots_at_branch
from quartermaster.services.rules import ApprovalRules
from quartermaster.services.templates import StockTransferTemplates
from quartermaster.services.transfers import StockTransfers

__all__ = [
    'StockQueries',
    'StockMovements',
    'StockTransfers',
    'StockTransferTemplates',
    'ApprovalEvaluation',
    'ApprovalRules',
    'Catalog',
    'reverse_lots_at_branch',
]
