"""
Quartermaster Models.

Core models for branch inventory:
- Branch, BranchMembership, Role, TenantMembership: who may act where
- Product: catalog entry with optimistic version
- StockLot: FIFO batch of stock at a branch
- StockLedger: immutable ledger of changes
- ProductStock: cached quantity per (tenant, branch, product)
- StockTransfer, StockTransferItem, TransferApprovalRecord: transfers
- ApprovalRule, ApprovalRuleCondition, ApprovalLevel: approval rules
- TransferTemplate, TransferTemplateItem: saved transfer routes
- AuditEvent: default audit storage
"""

from quartermaster.models.approval import ApprovalLevel, ApprovalRule, ApprovalRuleCondition
from quartermaster.models.audit import AuditEvent
from quartermaster.models.branch import Branch, BranchMembership, Role, TenantMembership
from quartermaster.models.enums import (
    ApprovalMode,
    ApprovalStatus,
    ConditionType,
    InitiationType,
    LedgerKind,
    TransferPriority,
    TransferStatus,
)
from quartermaster.models.ledger import StockLedger
from quartermaster.models.lot import StockLot
from quartermaster.models.product import Product
from quartermaster.models.stock import ProductStock
from quartermaster.models.template import TransferTemplate, TransferTemplateItem
from quartermaster.models.transfer import StockTransfer, StockTransferItem, TransferApprovalRecord

__all__ = [
    'ApprovalMode',
    'ApprovalStatus',
    'ConditionType',
    'InitiationType',
    'LedgerKind',
    'TransferPriority',
    'TransferStatus',
    'Branch',
    'BranchMembership',
    'Role',
    'TenantMembership',
    'Product',
    'StockLot',
    'StockLedger',
    'ProductStock',
    'StockTransfer',
    'StockTransferItem',
    'TransferApprovalRecord',
    'TransferTemplate',
    'TransferTemplateItem',
    'ApprovalRule',
    'ApprovalRuleCondition',
    'ApprovalLevel',
    'AuditEvent',
]
