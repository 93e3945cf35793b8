"""
Tests for the check_stock_integrity management command.
"""

from io import StringIO

import pytest
from django.core.management import CommandError, call_command

from quartermaster import stock
from quartermaster.models import ProductStock, StockLot


pytestmark = pytest.mark.django_db


def run(*args):
    out = StringIO()
    call_command('check_stock_integrity', *args, stdout=out)
    return out.getvalue()


class TestCheckStockIntegrity:
    """Tests for check_stock_integrity."""

    def test_clean(self, widget, north, stocked_north):
        stock.consume(30, widget, north)

        assert '2 aggregate(s) checked, 0 drifted' in run()

    def test_drift_reported(self, widget, north, stocked_north):
        ProductStock.objects.filter(product=widget, branch=north).update(qty_on_hand=999)

        with pytest.raises(CommandError):
            run()

    def test_drift_fixed(self, widget, north, stocked_north):
        ProductStock.objects.filter(product=widget, branch=north).update(qty_on_hand=999)

        output = run('--fix')

        assert '1 aggregate(s) recalculated' in output
        assert ProductStock.objects.get(product=widget, branch=north).qty_on_hand == 150

    def test_lot_mismatch_not_fixable(self, widget, north, stocked_north):
        older, _, _ = stocked_north
        StockLot.objects.filter(pk=older.pk).update(qty_remaining=90)

        with pytest.raises(CommandError, match='lots disagree'):
            run('--fix')

    def test_tenant_filter(self, widget, north, stocked_north):
        ProductStock.objects.filter(product=widget, branch=north).update(qty_on_hand=999)

        assert '0 aggregate(s) checked' in run('--tenant', 'globex')
