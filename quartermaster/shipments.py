"""
Shipment batches — the record of which lots left the source branch.

Isolated module so it can be reused and tested without the database.

Each ship() call appends one batch to StockTransferItem.shipment_batches:

    {
        "batch_number": 1,
        "qty": 70,
        "shipped_at": "2026-03-02T10:15:00+00:00",
        "shipped_by_id": 7,
        "lots_consumed": [{"lot_id": 12, "qty": 50, "unit_cost_pence": 120}, ...]
    }

Stored rows are parsed into frozen dataclasses on read. Missing or null
batches and lots (legacy rows, items without lot tracking) read as empty;
anything else that does not fit the structure raises
InvalidRequest('INVALID_SHIPMENT_BATCH').
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from quartermaster.exceptions import InvalidRequest


@dataclass(frozen=True)
class LotConsumption:
    """Quantity taken from one lot."""

    lot_id: int | None
    qty: int
    unit_cost_pence: int | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> LotConsumption:
        if not isinstance(raw, dict):
            raise InvalidRequest('INVALID_SHIPMENT_BATCH', entry=raw)
        lot_id = raw.get('lot_id')
        qty = raw.get('qty')
        cost = raw.get('unit_cost_pence')
        if not _is_int(lot_id) or not _is_int(qty) or qty <= 0:
            raise InvalidRequest('INVALID_SHIPMENT_BATCH', entry=raw)
        if cost is not None and not _is_int(cost):
            raise InvalidRequest('INVALID_SHIPMENT_BATCH', entry=raw)
        return cls(lot_id=lot_id, qty=qty, unit_cost_pence=cost)

    def to_dict(self) -> dict:
        return {'lot_id': self.lot_id, 'qty': self.qty, 'unit_cost_pence': self.unit_cost_pence}


@dataclass(frozen=True)
class ShipmentBatch:
    """One ship() call for one item."""

    batch_number: int
    qty: int
    shipped_at: str | None = None
    shipped_by_id: int | None = None
    lots_consumed: tuple[LotConsumption, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, raw: Any) -> ShipmentBatch:
        if not isinstance(raw, dict):
            raise InvalidRequest('INVALID_SHIPMENT_BATCH', entry=raw)
        number = raw.get('batch_number')
        qty = raw.get('qty')
        if not _is_int(number) or not _is_int(qty) or qty < 0:
            raise InvalidRequest('INVALID_SHIPMENT_BATCH', entry=raw)
        lots = raw.get('lots_consumed') or []
        if not isinstance(lots, list):
            raise InvalidRequest('INVALID_SHIPMENT_BATCH', entry=raw)
        return cls(
            batch_number=number,
            qty=qty,
            shipped_at=raw.get('shipped_at'),
            shipped_by_id=raw.get('shipped_by_id'),
            lots_consumed=tuple(LotConsumption.from_dict(lot) for lot in lots),
        )

    def to_dict(self) -> dict:
        return {
            'batch_number': self.batch_number,
            'qty': self.qty,
            'shipped_at': self.shipped_at,
            'shipped_by_id': self.shipped_by_id,
            'lots_consumed': [lot.to_dict() for lot in self.lots_consumed],
        }

    def segments(self) -> list[LotConsumption]:
        """Lots of this batch, padded with an untracked segment if short."""
        segments = list(self.lots_consumed)
        tracked = sum(lot.qty for lot in segments)
        if tracked < self.qty:
            segments.append(LotConsumption(lot_id=None, qty=self.qty - tracked))
        return segments


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_batches(raw: Any) -> list[ShipmentBatch]:
    """Parse stored shipment_batches; None reads as no batches."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise InvalidRequest('INVALID_SHIPMENT_BATCH', entry=raw)
    return [ShipmentBatch.from_dict(entry) for entry in raw]


def aggregate_lots(batch_lists: Iterable[Iterable[ShipmentBatch]]) -> dict[int, int]:
    """
    Sum consumed quantity per lot id across items and batches.

    Args:
        batch_lists: One iterable of batches per item

    Returns:
        {lot_id: qty} in first-seen order
    """
    totals: dict[int, int] = defaultdict(int)
    for batches in batch_lists:
        for batch in batches:
            for lot in batch.lots_consumed:
                if lot.lot_id is not None:
                    totals[lot.lot_id] += lot.qty
    return dict(totals)


def weighted_average_cost(consumptions: Iterable[LotConsumption]) -> int | None:
    """
    Weighted average unit cost in pence, rounded half-up.

    Segments without a known cost are ignored; None when nothing has a cost.
    """
    total_qty = 0
    total_cost = 0
    for lot in consumptions:
        if lot.unit_cost_pence is None:
            continue
        total_qty += lot.qty
        total_cost += lot.qty * lot.unit_cost_pence
    if total_qty == 0:
        return None
    average = Decimal(total_cost) / Decimal(total_qty)
    return int(average.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def allocate_receipt(batches: list[ShipmentBatch], already_received: int, qty: int) -> list[LotConsumption]:
    """
    Portion of the shipped lots covered by a receipt.

    Shipped quantity is consumed oldest batch first; the first
    ``already_received`` units were received earlier, the next ``qty`` units
    are the ones arriving now.
    """
    skip = already_received
    wanted = qty
    portion: list[LotConsumption] = []
    for batch in batches:
        for segment in batch.segments():
            if wanted == 0:
                return portion
            if skip >= segment.qty:
                skip -= segment.qty
                continue
            available = segment.qty - skip
            skip = 0
            take = min(available, wanted)
            portion.append(LotConsumption(segment.lot_id, take, segment.unit_cost_pence))
            wanted -= take
    return portion
