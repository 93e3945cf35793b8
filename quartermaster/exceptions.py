"""
Exceptions for Quartermaster.

Every error is a StockError carrying a structured code. The subclass names the
error kind, so callers can map failures deterministically:

    NotFound           missing entity or cross-tenant access
    InvalidRequest     non-positive quantities, empty lists, same branch twice
    Conflict           stale version, duplicate key, wrong status, serialization failure
    InsufficientStock  FIFO consumption cannot satisfy demand
    Forbidden          branch membership or approval role violation
"""

from typing import Any


class StockError(Exception):
    """
    Structured exception for inventory operations.

    Usage:
        try:
            stock.consume(150, product, branch, reason='sale')
        except InsufficientStock as e:
            print(f"Only {e.available} on hand")

    Attributes:
        kind: Error family ('not_found', 'validation', ...)
        code: Error code for programmatic handling
        message: Human-readable message
        data: Additional context data
    """

    kind = 'error'

    _default_messages: dict[str, str] = {
        'INVALID_QUANTITY': 'Quantity must be a positive integer',
        'INSUFFICIENT_QUANTITY': 'Not enough stock on hand',
        'INVALID_STATUS': 'Operation not allowed in the current status',
        'SAME_BRANCH': 'Source and destination branch must differ',
        'EMPTY_ITEMS': 'At least one item is required',
        'EMPTY_LOTS': 'At least one lot is required',
        'BRANCH_NOT_FOUND': 'Branch not found',
        'PRODUCT_NOT_FOUND': 'Product not found',
        'LOT_NOT_FOUND': 'Stock lot not found',
        'TRANSFER_NOT_FOUND': 'Stock transfer not found',
        'ITEM_NOT_FOUND': 'Transfer item not found',
        'RULE_NOT_FOUND': 'Approval rule not found',
        'TEMPLATE_NOT_FOUND': 'Transfer template not found',
        'TEMPLATE_ARCHIVED': 'Archived templates cannot start transfers',
        'LEVEL_NOT_FOUND': 'Approval level not found',
        'NOT_BRANCH_MEMBER': 'User is not a member of the required branch',
        'NOT_LEVEL_APPROVER': 'User may not sign off this approval level',
        'ALREADY_REVERSED': 'Transfer has already been reversed',
        'ALREADY_ARCHIVED': 'Record is already archived',
        'NOT_ARCHIVED': 'Record is not archived',
        'STALE_VERSION': 'Record was modified by someone else',
        'DUPLICATE_SKU': 'SKU already exists for this tenant',
        'DUPLICATE_BARCODE': 'Barcode already exists for this tenant',
        'SERIALIZATION_FAILURE': 'Concurrent modification detected, retry',
        'LEVEL_BLOCKED': 'Earlier approval levels must be approved first',
        'LEVEL_DECIDED': 'Approval level was already decided',
        'MULTI_LEVEL_APPROVAL_REQUIRED': 'Transfer requires multi-level approval',
        'NOTHING_TO_SHIP': 'Nothing left to ship',
        'INVALID_SHIPMENT_BATCH': 'Stored shipment batch is malformed',
        'RESTORE_EXCEEDS_RECEIVED': 'Lot cannot hold more than it was received with',
        'NOT_MULTI_LEVEL': 'Transfer does not use multi-level approval',
        'DUPLICATE_ITEM': 'Each product may appear once per transfer',
        'TRANSFER_NUMBER_TAKEN': 'Could not allocate a transfer number, retry',
        'INVALID_ACTION': 'Unknown action',
        'INVALID_PRIORITY': 'Unknown transfer priority',
        'INVALID_INITIATION': 'Unknown initiation type',
        'INVALID_CONDITION': 'Approval rule condition is incomplete',
        'INVALID_LEVELS': 'Approval levels must be numbered 1..n and name a role or a user',
        'EMPTY_CONDITIONS': 'At least one condition is required',
        'EMPTY_LEVELS': 'At least one approval level is required',
        'ROLE_NOT_FOUND': 'Role not found',
        'USER_NOT_FOUND': 'User not found',
        'INVALID_CURSOR': 'Malformed pagination cursor',
        'INVALID_FIELD': 'Field cannot be updated',
    }

    def __init__(self, code: str, message: str | None = None, **data: Any):
        self.code = code
        self.message = message or self._default_messages.get(code, code)
        self.data = data
        super().__init__(self.message)

    def __getattr__(self, name: str) -> Any:
        # Shortcut for data keys: e.available, e.requested
        data = self.__dict__.get('data') or {}
        if name in data:
            return data[name]
        raise AttributeError(name)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code!r})"

    def as_dict(self) -> dict[str, Any]:
        """Serialize to dict (useful for APIs)."""
        return {
            'kind': self.kind,
            'code': self.code,
            'message': self.message,
            'data': {k: _plain(v) for k, v in self.data.items()},
        }


def _plain(value):
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return str(value)


class NotFound(StockError):
    kind = 'not_found'


class InvalidRequest(StockError):
    kind = 'validation'


class Conflict(StockError):
    kind = 'conflict'


class InsufficientStock(StockError):
    kind = 'insufficient_stock'

    def __init__(self, code: str = 'INSUFFICIENT_QUANTITY', message: str | None = None, **data: Any):
        super().__init__(code, message, **data)


class Forbidden(StockError):
    kind = 'forbidden'
