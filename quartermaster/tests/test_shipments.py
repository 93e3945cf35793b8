"""
Tests for shipment batch parsing and costing (no database).
"""

import pytest

from quartermaster.exceptions import InvalidRequest
from quartermaster.shipments import (
    LotConsumption,
    ShipmentBatch,
    aggregate_lots,
    allocate_receipt,
    parse_batches,
    weighted_average_cost,
)


def batch(number, qty, *lots):
    return ShipmentBatch(
        batch_number=number,
        qty=qty,
        lots_consumed=tuple(LotConsumption(*lot) for lot in lots),
    )


class TestParseBatches:
    """Tests for parse_batches()."""

    def test_none_reads_as_empty(self):
        assert parse_batches(None) == []

    def test_missing_lots_read_as_empty(self):
        """Legacy rows without lot tracking still parse."""
        parsed = parse_batches([{'batch_number': 1, 'qty': 5, 'lots_consumed': None}])

        assert parsed[0].lots_consumed == ()
        assert parsed[0].qty == 5

    def test_parses_stored_structure(self):
        raw = [{
            'batch_number': 1,
            'qty': 70,
            'shipped_at': '2026-03-02T10:15:00+00:00',
            'shipped_by_id': 7,
            'lots_consumed': [
                {'lot_id': 12, 'qty': 50, 'unit_cost_pence': 120},
                {'lot_id': 13, 'qty': 20, 'unit_cost_pence': None},
            ],
        }]

        parsed = parse_batches(raw)

        assert parsed == [ShipmentBatch(
            batch_number=1,
            qty=70,
            shipped_at='2026-03-02T10:15:00+00:00',
            shipped_by_id=7,
            lots_consumed=(LotConsumption(12, 50, 120), LotConsumption(13, 20, None)),
        )]

    @pytest.mark.parametrize('raw', [
        'not a list',
        [42],
        [{'batch_number': 'one', 'qty': 1}],
        [{'batch_number': 1, 'qty': -1}],
        [{'batch_number': 1, 'qty': 1, 'lots_consumed': 'lots'}],
        [{'batch_number': 1, 'qty': 1, 'lots_consumed': [{'lot_id': 1, 'qty': 0}]}],
        [{'batch_number': 1, 'qty': 1, 'lots_consumed': [{'lot_id': '1', 'qty': 1}]}],
        [{'batch_number': 1, 'qty': 1, 'lots_consumed': [{'lot_id': 1, 'qty': 1, 'unit_cost_pence': '1'}]}],
    ])
    def test_malformed(self, raw):
        with pytest.raises(InvalidRequest) as exc:
            parse_batches(raw)

        assert exc.value.code == 'INVALID_SHIPMENT_BATCH'

    def test_to_dict_matches_stored_shape(self):
        stored = batch(2, 3, (9, 3, 100)).to_dict()

        assert stored == {
            'batch_number': 2,
            'qty': 3,
            'shipped_at': None,
            'shipped_by_id': None,
            'lots_consumed': [{'lot_id': 9, 'qty': 3, 'unit_cost_pence': 100}],
        }
        assert parse_batches([stored]) == [batch(2, 3, (9, 3, 100))]


class TestAggregateLots:
    """Tests for aggregate_lots()."""

    def test_sums_per_lot_across_items_and_batches(self):
        item_a = [batch(1, 30, (1, 20), (2, 10)), batch(2, 5, (2, 5))]
        item_b = [batch(1, 4, (3, 4))]

        assert aggregate_lots([item_a, item_b]) == {1: 20, 2: 15, 3: 4}

    def test_no_batches(self):
        assert aggregate_lots([[], []]) == {}


class TestWeightedAverageCost:
    """Tests for weighted_average_cost()."""

    def test_weighted(self):
        lots = [LotConsumption(1, 100, 120), LotConsumption(2, 20, 150)]

        assert weighted_average_cost(lots) == 125

    def test_rounds_half_up(self):
        lots = [LotConsumption(1, 1, 100), LotConsumption(2, 1, 101)]

        assert weighted_average_cost(lots) == 101

    def test_ignores_unknown_cost(self):
        lots = [LotConsumption(1, 10, 200), LotConsumption(2, 90, None)]

        assert weighted_average_cost(lots) == 200

    def test_nothing_costed(self):
        assert weighted_average_cost([LotConsumption(1, 10, None)]) is None
        assert weighted_average_cost([]) is None


class TestAllocateReceipt:
    """Tests for allocate_receipt()."""

    def test_first_receipt_takes_oldest_segments(self):
        batches = [batch(1, 120, (1, 100, 120), (2, 20, 150))]

        portion = allocate_receipt(batches, already_received=0, qty=100)

        assert portion == [LotConsumption(1, 100, 120)]

    def test_later_receipt_skips_received_units(self):
        batches = [batch(1, 120, (1, 100, 120), (2, 20, 150))]

        portion = allocate_receipt(batches, already_received=90, qty=20)

        assert portion == [LotConsumption(1, 10, 120), LotConsumption(2, 10, 150)]

    def test_spans_batches(self):
        batches = [batch(1, 5, (1, 5, 100)), batch(2, 5, (2, 5, 200))]

        assert allocate_receipt(batches, already_received=3, qty=4) == [
            LotConsumption(1, 2, 100),
            LotConsumption(2, 2, 200),
        ]

    def test_untracked_remainder(self):
        """Quantity not covered by lots comes back as an uncosted segment."""
        batches = [batch(1, 10, (1, 6, 100))]

        assert allocate_receipt(batches, already_received=0, qty=10) == [
            LotConsumption(1, 6, 100),
            LotConsumption(None, 4, None),
        ]
