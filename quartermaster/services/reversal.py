"""
Reversal — put the lots a transfer consumed back where they came from.
"""

from __future__ import annotations

import logging
from typing import Iterable

from quartermaster.protocols.audit import AuditContext
from quartermaster.services.movements import LotRestore, Restoration, StockMovements
from quartermaster.shipments import aggregate_lots

logger = logging.getLogger('quartermaster')


def reverse_lots_at_branch(branch, items: Iterable, transfer_number: str,
                           context: AuditContext | None = None) -> Restoration | None:
    """
    Restore every lot consumed by the items' shipment batches.

    Quantities are summed per lot across items and batches and restored with
    a single StockMovements.restore() call. Items without batches or without
    lot tracking contribute nothing.

    Args:
        branch: Branch the lots were consumed at (the transfer's source)
        items: StockTransferItem instances
        transfer_number: Recorded in the ledger reason

    Returns:
        Restoration, or None when there was nothing to restore

    Raises:
        NotFound('LOT_NOT_FOUND'): If a recorded lot no longer exists at branch
        InvalidRequest('INVALID_SHIPMENT_BATCH'): If stored batches are malformed
    """
    totals = aggregate_lots(item.batches for item in items)
    if not totals:
        logger.info(
            "reversal.no_lots",
            extra={"branch": branch.pk, "transfer_number": transfer_number},
        )
        return None

    return StockMovements.restore(
        [LotRestore(lot_id, qty) for lot_id, qty in totals.items()],
        branch,
        reason=f"Reversal of {transfer_number}",
        context=context,
    )
