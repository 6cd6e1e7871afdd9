"""
Tests for lot selection ordering.
"""
from datetime import datetime
from decimal import Decimal

import pytest

from taxlot_engine.core.database import LOT_CLOSED, LOT_OPEN, TaxLot
from taxlot_engine.core.errors import LotNotFound, UnsupportedLotMethod
from taxlot_engine.core.lot_selector import LotSelectionMethod, order_lots


def make_lot(lot_id, unit_price, acquired_at, status=LOT_OPEN):
    return TaxLot(lot_id=lot_id, owner_id=1, asset_id=1, acquired_at=acquired_at, quantity=Decimal("1"),
                  unit_price=Decimal(str(unit_price)), cost_basis=Decimal(str(unit_price)), status=status)


@pytest.fixture
def lots():
    """Lots priced [10, 25, 15] acquired in that order."""
    return [
        make_lot(1, 10, datetime(2024, 1, 1)),
        make_lot(2, 25, datetime(2024, 2, 1)),
        make_lot(3, 15, datetime(2024, 3, 1)),
    ]


class TestOrdering:
    def test_hifo_highest_price_first(self, lots):
        ordered = order_lots(lots, LotSelectionMethod.HIFO)
        assert [lot.lot_id for lot in ordered] == [2, 3, 1]

    def test_hifo_ties_prefer_oldest(self):
        tied = [make_lot(7, 20, datetime(2024, 5, 1)), make_lot(8, 20, datetime(2024, 1, 1))]
        ordered = order_lots(tied, LotSelectionMethod.HIFO)
        assert [lot.lot_id for lot in ordered] == [8, 7]

    def test_fifo_oldest_first_regardless_of_price(self, lots):
        ordered = order_lots(reversed(lots), LotSelectionMethod.FIFO)
        assert [lot.lot_id for lot in ordered] == [1, 2, 3]

    def test_specific_id_keeps_caller_order(self, lots):
        ordered = order_lots(lots, LotSelectionMethod.SPECIFIC_ID, [3, 1, 3])
        assert [lot.lot_id for lot in ordered] == [3, 1]


class TestValidation:
    def test_specific_id_requires_lot_ids(self, lots):
        with pytest.raises(UnsupportedLotMethod):
            order_lots(lots, LotSelectionMethod.SPECIFIC_ID)

    def test_specific_id_rejects_foreign_lot(self, lots):
        with pytest.raises(LotNotFound) as exc_info:
            order_lots(lots, LotSelectionMethod.SPECIFIC_ID, [1, 99])
        assert exc_info.value.lot_id == 99

    def test_specific_id_rejects_closed_lot(self):
        closed = make_lot(4, 12, datetime(2024, 1, 1), status=LOT_CLOSED)
        with pytest.raises(LotNotFound):
            order_lots([closed], LotSelectionMethod.SPECIFIC_ID, [4])

    def test_parse_is_case_insensitive(self):
        assert LotSelectionMethod.parse("fifo") is LotSelectionMethod.FIFO
        assert LotSelectionMethod.parse(LotSelectionMethod.HIFO) is LotSelectionMethod.HIFO

    def test_parse_rejects_unknown_method(self):
        with pytest.raises(UnsupportedLotMethod):
            LotSelectionMethod.parse("lifo")
