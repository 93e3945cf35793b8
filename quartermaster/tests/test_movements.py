"""
Tests for stock movements: receive, consume, adjust, restore.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from quartermaster import AuditContext, InsufficientStock, InvalidRequest, NotFound, StockError, stock
from quartermaster.models import AuditEvent, LedgerKind, ProductStock, StockLedger, StockLot
from quartermaster.services.movements import LotRestore


pytestmark = pytest.mark.django_db


def assert_invariant(product, branch):
    """Cached quantity agrees with the lots and the ledger."""
    ps = ProductStock.objects.get(tenant_id=product.tenant_id, branch=branch, product=product)
    assert ps.qty_on_hand == ps.lot_total() == ps.ledger_total()


class TestReceive:
    """Tests for stock.receive()."""

    def test_receive_creates_lot_and_ledger(self, widget, north):
        """Receive creates a full lot, a RECEIPT entry and the aggregate."""
        lot = stock.receive(500, widget, north, unit_cost_pence=120, source_ref='PO-1')

        assert lot.qty_received == 500
        assert lot.qty_remaining == 500
        assert lot.unit_cost_pence == 120
        assert lot.source_ref == 'PO-1'
        entry = StockLedger.objects.get(lot=lot)
        assert entry.kind == LedgerKind.RECEIPT
        assert entry.qty_delta == 500
        assert stock.levels(widget, north).qty_on_hand == 500
        assert_invariant(widget, north)

    def test_receive_accumulates(self, widget, north):
        """Each receipt is its own lot; the aggregate sums them."""
        stock.receive(10, widget, north)
        stock.receive(15, widget, north)

        assert StockLot.objects.filter(product=widget, branch=north).count() == 2
        assert stock.levels(widget, north).qty_on_hand == 25

    @pytest.mark.parametrize('quantity', [0, -5, 1.5, True, None])
    def test_receive_invalid_quantity(self, widget, north, quantity):
        """Quantities must be positive integers."""
        with pytest.raises(InvalidRequest) as exc:
            stock.receive(quantity, widget, north)

        assert exc.value.code == 'INVALID_QUANTITY'
        assert not StockLot.objects.exists()

    def test_receive_other_tenant_branch(self, widget, foreign_branch):
        """Product and branch of different tenants read as missing."""
        with pytest.raises(NotFound) as exc:
            stock.receive(10, widget, foreign_branch)

        assert exc.value.code == 'BRANCH_NOT_FOUND'

    def test_receive_writes_audit_event(self, widget, north, alice):
        """The actor and correlation id reach the audit writer."""
        stock.receive(5, widget, north, context=AuditContext(actor=alice, correlation_id='req-1'))

        event = AuditEvent.objects.get(action='STOCK_RECEIVE')
        assert event.actor == alice
        assert event.correlation_id == 'req-1'
        assert event.entity_type == 'PRODUCT_STOCK'
        assert event.before is None
        assert event.after['qty_on_hand'] == 5


class TestConsume:
    """Tests for stock.consume()."""

    def test_consume_oldest_first(self, widget, north):
        """Consumption drains the oldest lot before touching the next."""
        now = timezone.now()
        old = stock.receive(100, widget, north, unit_cost_pence=100, occurred_at=now - timedelta(days=2))
        new = stock.receive(50, widget, north, unit_cost_pence=200, occurred_at=now - timedelta(days=1))

        result = stock.consume(120, widget, north, reason='sale')

        old.refresh_from_db()
        new.refresh_from_db()
        assert old.qty_remaining == 0
        assert new.qty_remaining == 30
        assert [(t.lot_id, t.take) for t in result.affected] == [(old.pk, 100), (new.pk, 20)]
        assert [t.unit_cost_pence for t in result.affected] == [100, 200]
        assert result.quantity == 120
        assert result.stock.qty_on_hand == 30
        assert_invariant(widget, north)

    def test_consume_order_follows_received_at(self, widget, north):
        """A lot backdated before an existing one is consumed first."""
        now = timezone.now()
        first_booked = stock.receive(10, widget, north, occurred_at=now)
        backdated = stock.receive(10, widget, north, occurred_at=now - timedelta(days=5))

        result = stock.consume(5, widget, north)

        assert result.affected[0].lot_id == backdated.pk
        first_booked.refresh_from_db()
        assert first_booked.qty_remaining == 10

    def test_consume_one_ledger_entry_per_lot(self, widget, north, stocked_north):
        """Every lot touched gets its own CONSUMPTION entry."""
        stock.consume(120, widget, north)

        entries = StockLedger.objects.filter(product=widget, kind=LedgerKind.CONSUMPTION).order_by('id')
        assert [e.qty_delta for e in entries] == [-100, -20]

    def test_consume_insufficient_writes_nothing(self, widget, north, stocked_north):
        """Short stock raises and leaves lots and ledger untouched."""
        ledger_before = StockLedger.objects.count()

        with pytest.raises(InsufficientStock) as exc:
            stock.consume(151, widget, north)

        assert exc.value.code == 'INSUFFICIENT_QUANTITY'
        assert exc.value.available == 150
        assert exc.value.requested == 151
        assert StockLedger.objects.count() == ledger_before
        assert sorted(StockLot.objects.filter(product=widget).values_list('qty_remaining', flat=True)) == [50, 100]
        assert stock.levels(widget, north).qty_on_hand == 150

    def test_consume_nothing_on_hand(self, widget, north):
        """Consuming from an empty key is insufficient, not missing."""
        with pytest.raises(InsufficientStock) as exc:
            stock.consume(1, widget, north)

        assert exc.value.available == 0

    def test_consume_exactly_everything(self, widget, north, stocked_north):
        stock.consume(150, widget, north)

        assert stock.levels(widget, north).qty_on_hand == 0
        assert stock.levels(widget, north).lots == []
        assert len(stock.levels(widget, north, include_empty=True).lots) == 2


class TestAdjust:
    """Tests for stock.adjust()."""

    def test_adjust_up_creates_lot(self, widget, north):
        """Positive adjustment is a new lot with an ADJUSTMENT entry."""
        result = stock.adjust(7, widget, north, reason='found in back room', unit_cost_pence=110)

        assert result.lot.qty_remaining == 7
        assert StockLedger.objects.get(lot=result.lot).kind == LedgerKind.ADJUSTMENT
        assert result.stock.qty_on_hand == 7

    def test_adjust_down_consumes_fifo(self, widget, north, stocked_north):
        """Negative adjustment takes from the oldest lot."""
        older, newer, _ = stocked_north

        result = stock.adjust(-3, widget, north, reason='damaged')

        assert [(t.lot_id, t.take) for t in result.affected] == [(older.pk, 3)]
        assert StockLedger.objects.filter(kind=LedgerKind.ADJUSTMENT).get().qty_delta == -3
        assert_invariant(widget, north)

    def test_adjust_down_beyond_stock(self, widget, north):
        with pytest.raises(InsufficientStock):
            stock.adjust(-1, widget, north)

    def test_adjust_zero(self, widget, north):
        with pytest.raises(InvalidRequest) as exc:
            stock.adjust(0, widget, north)

        assert exc.value.code == 'INVALID_QUANTITY'


class TestRestore:
    """Tests for stock.restore()."""

    def test_restore_returns_quantity_to_same_lots(self, widget, north, stocked_north):
        """Restored stock goes back into the lots it left, not a new lot."""
        older, newer, _ = stocked_north
        consumed = stock.consume(120, widget, north)
        lots_before = StockLot.objects.count()

        result = stock.restore(
            [LotRestore(t.lot_id, t.take) for t in consumed.affected], north, reason='undo sale',
        )

        older.refresh_from_db()
        newer.refresh_from_db()
        assert older.qty_remaining == 100
        assert newer.qty_remaining == 50
        assert StockLot.objects.count() == lots_before
        assert result.stocks[0].qty_on_hand == 150
        reversals = StockLedger.objects.filter(kind=LedgerKind.REVERSAL)
        assert sorted(e.qty_delta for e in reversals) == [20, 100]
        assert all(e.reason == 'undo sale' for e in reversals)
        assert_invariant(widget, north)

    def test_restore_sums_repeated_lots(self, widget, north, stocked_north):
        older, _, _ = stocked_north
        stock.consume(10, widget, north)

        result = stock.restore([LotRestore(older.pk, 4), LotRestore(older.pk, 6)], north, reason='undo')

        assert result.restored == (LotRestore(older.pk, 10),)
        assert StockLedger.objects.filter(kind=LedgerKind.REVERSAL).count() == 1

    def test_restore_beyond_received(self, widget, north, stocked_north):
        """A lot never holds more than it was received with."""
        older, _, _ = stocked_north
        stock.consume(5, widget, north)

        with pytest.raises(InvalidRequest) as exc:
            stock.restore([LotRestore(older.pk, 6)], north, reason='undo')

        assert exc.value.code == 'RESTORE_EXCEEDS_RECEIVED'
        older.refresh_from_db()
        assert older.qty_remaining == 95

    def test_restore_missing_lot(self, widget, north, stocked_north):
        with pytest.raises(NotFound) as exc:
            stock.restore([LotRestore(999999, 1)], north, reason='undo')

        assert exc.value.code == 'LOT_NOT_FOUND'
        assert exc.value.lot_ids == [999999]

    def test_restore_lot_of_other_branch(self, widget, north, south):
        """Lots are only restored at the branch that holds them."""
        lot = stock.receive(10, widget, south)
        stock.consume(5, widget, south)

        with pytest.raises(NotFound):
            stock.restore([LotRestore(lot.pk, 5)], north, reason='undo')

    def test_restore_empty(self, north):
        with pytest.raises(InvalidRequest) as exc:
            stock.restore([], north, reason='undo')

        assert exc.value.code == 'EMPTY_LOTS'


class TestLedgerImmutability:
    """Ledger rows are append-only."""

    def test_cannot_update_entry(self, widget, north):
        stock.receive(5, widget, north)
        entry = StockLedger.objects.get()
        entry.qty_delta = 50

        with pytest.raises(ValueError):
            entry.save()

    def test_cannot_delete_entry(self, widget, north):
        stock.receive(5, widget, north)

        with pytest.raises(ValueError):
            StockLedger.objects.get().delete()


class TestErrors:
    """StockError structure."""

    def test_as_dict(self):
        err = InsufficientStock(available=3, requested=5)

        assert err.as_dict() == {
            'kind': 'insufficient_stock',
            'code': 'INSUFFICIENT_QUANTITY',
            'message': 'Not enough stock on hand',
            'data': {'available': 3, 'requested': 5},
        }

    def test_subclasses_share_base(self):
        assert issubclass(NotFound, StockError)
        assert NotFound('LOT_NOT_FOUND').kind == 'not_found'

    def test_unknown_data_key(self):
        with pytest.raises(AttributeError):
            NotFound('LOT_NOT_FOUND').missing_key
