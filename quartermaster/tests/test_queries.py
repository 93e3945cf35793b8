"""
Tests for read-only stock queries.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from quartermaster import InvalidRequest, NotFound, stock
from quartermaster.models import LedgerKind


pytestmark = pytest.mark.django_db


class TestLevels:
    """Tests for stock.levels() and stock.levels_by_branch()."""

    def test_empty_key(self, widget, north):
        level = stock.levels(widget, north)

        assert level.qty_on_hand == 0
        assert level.product_stock is None
        assert level.lots == []

    def test_lots_oldest_first(self, widget, north, stocked_north):
        older, newer, _ = stocked_north

        assert [lot.pk for lot in stock.levels(widget, north).lots] == [older.pk, newer.pk]

    def test_by_branch(self, widget, north, south, stocked_north):
        stock.receive(7, widget, south)

        rows = stock.levels_by_branch(widget)

        assert [(r.branch.name, r.qty_on_hand) for r in rows] == [('North', 150), ('South', 7)]


class TestLevelsBulk:
    """Tests for stock.levels_bulk()."""

    def test_many_products_at_once(self, widget, gadget, north, stocked_north, django_assert_num_queries):
        older, newer, gadgets = stocked_north

        with django_assert_num_queries(2):
            levels = stock.levels_bulk([widget, gadget], north)

        assert levels[widget.pk].qty_on_hand == 150
        assert [lot.pk for lot in levels[widget.pk].lots] == [older.pk, newer.pk]
        assert levels[gadget.pk].qty_on_hand == 40
        assert [lot.pk for lot in levels[gadget.pk].lots] == [gadgets.pk]

    def test_product_never_stocked(self, widget, gadget, south):
        stock.receive(3, widget, south)

        levels = stock.levels_bulk([widget, gadget], south)

        assert levels[gadget.pk].qty_on_hand == 0
        assert levels[gadget.pk].product_stock is None
        assert levels[gadget.pk].lots == []

    def test_empty_lots_on_request(self, widget, north):
        lot = stock.receive(5, widget, north)
        stock.consume(5, widget, north)

        assert stock.levels_bulk([widget], north)[widget.pk].lots == []
        assert stock.levels_bulk([widget], north, include_empty=True)[widget.pk].lots == [lot]

    def test_other_tenant_product(self, widget, foreign_product, north):
        with pytest.raises(NotFound):
            stock.levels_bulk([widget, foreign_product], north)


class TestLedger:
    """Tests for stock.ledger()."""

    @pytest.fixture
    def history(self, widget, north):
        """Five receipts of 1..5 units, one day apart, oldest first."""
        start = timezone.now() - timedelta(days=10)
        for qty in range(1, 6):
            stock.receive(qty, widget, north, occurred_at=start + timedelta(days=qty))
        return start

    def test_newest_first_pages(self, widget, north, history):
        first = stock.ledger(widget, north, limit=2)
        second = stock.ledger(widget, north, limit=2, cursor=first.next_cursor)
        third = stock.ledger(widget, north, limit=2, cursor=second.next_cursor)

        deltas = [e.qty_delta for page in (first, second, third) for e in page.items]
        assert deltas == [5, 4, 3, 2, 1]
        assert first.has_next and second.has_next
        assert not third.has_next
        assert third.next_cursor is None

    def test_ascending(self, widget, north, history):
        page = stock.ledger(widget, north, limit=3, ascending=True)

        assert [e.qty_delta for e in page.items] == [1, 2, 3]

    def test_filters(self, widget, north, history):
        stock.consume(4, widget, north)

        receipts = stock.ledger(widget, north, kinds=[LedgerKind.RECEIPT])
        assert len(receipts.items) == 5
        window = stock.ledger(widget, north, occurred_from=history + timedelta(days=2),
                              occurred_to=history + timedelta(days=3))
        assert sorted(e.qty_delta for e in window.items) == [2, 3]
        assert sorted(e.qty_delta for e in stock.ledger(widget, north, max_qty=-1).items) == [-2, -1, -1]
        assert {e.qty_delta for e in stock.ledger(widget, north, min_qty=4).items} == {4, 5}

    def test_limit_is_clamped(self, widget, north, history, settings):
        settings.QUARTERMASTER = {'LEDGER_MAX_PAGE_SIZE': 3}

        assert len(stock.ledger(widget, north, limit=50).items) == 3
        assert len(stock.ledger(widget, north, limit=0).items) == 1

    def test_bad_cursor(self, widget, north):
        with pytest.raises(InvalidRequest) as exc:
            stock.ledger(widget, north, cursor='not-a-cursor')

        assert exc.value.code == 'INVALID_CURSOR'

    def test_unknown_kind(self, widget, north):
        with pytest.raises(InvalidRequest):
            stock.ledger(widget, north, kinds=['THEFT'])


class TestWeightedAverageCost:
    """Tests for stock.weighted_average_cost()."""

    def test_on_hand_lots_only(self, widget, north, stocked_north):
        assert stock.weighted_average_cost(widget, north) == 130

        stock.consume(100, widget, north)

        assert stock.weighted_average_cost(widget, north) == 150

    def test_nothing_costed(self, widget, north):
        stock.receive(5, widget, north)

        assert stock.weighted_average_cost(widget, north) is None
