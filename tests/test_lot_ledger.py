"""
Tests for the tax lot ledger: acquisition, disposal, splitting and valuation.
"""
import threading
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from taxlot_engine.core.database import LOT_CLOSED, LOT_OPEN, TaxLot, Transaction
from taxlot_engine.core.errors import (
    AssetNotFound,
    InsufficientOpenQuantity,
    InvalidPrice,
    InvalidQuantity,
    LotNotFound,
    OwnerNotFound,
    ValidationError,
)
from taxlot_engine.core.lot_ledger import LotLedger, holding_period_days, is_long_term
from taxlot_engine.core.utils import to_decimal


class TestAddLot:
    def test_add_lot_stores_cost_basis_and_buy_transaction(self, db_session, ledger, owner, assets):
        lot = ledger.add_lot(owner.owner_id, assets["VTI"].asset_id, Decimal("100"), Decimal("180.00"),
                             datetime(2024, 1, 15))

        assert lot.lot_id is not None
        assert lot.status == LOT_OPEN
        assert lot.cost_basis == Decimal("18000.00")
        assert lot.acquired_at == datetime(2024, 1, 15)

        transactions = db_session.query(Transaction).filter(Transaction.lot_id == lot.lot_id).all()
        assert len(transactions) == 1
        assert transactions[0].transaction_type == "buy"
        assert transactions[0].quantity == Decimal("100")

    def test_accepts_zero_price(self, ledger, owner, assets):
        lot = ledger.add_lot(owner.owner_id, assets["VTI"].asset_id, 5, 0)
        assert lot.cost_basis == Decimal("0")

    @pytest.mark.parametrize("quantity", [0, -1, "-0.5"])
    def test_rejects_non_positive_quantity(self, db_session, ledger, owner, assets, quantity):
        with pytest.raises(InvalidQuantity):
            ledger.add_lot(owner.owner_id, assets["VTI"].asset_id, quantity, 10)
        assert db_session.query(TaxLot).count() == 0

    def test_rejects_negative_price(self, db_session, ledger, owner, assets):
        with pytest.raises(InvalidPrice):
            ledger.add_lot(owner.owner_id, assets["VTI"].asset_id, 10, -1)
        assert db_session.query(TaxLot).count() == 0

    def test_unknown_owner_and_asset_are_not_found(self, ledger, owner, assets):
        with pytest.raises(OwnerNotFound):
            ledger.add_lot(9999, assets["VTI"].asset_id, 10, 10)
        with pytest.raises(AssetNotFound):
            ledger.add_lot(owner.owner_id, 9999, 10, 10)

    @pytest.mark.parametrize("quantity, price", [("NaN", 10), ("abc", 10), ("Infinity", 10), (10, "nan"), (None, 10)])
    def test_rejects_non_numeric_input(self, db_session, ledger, owner, assets, quantity, price):
        with pytest.raises(ValidationError):
            ledger.add_lot(owner.owner_id, assets["VTI"].asset_id, quantity, price)
        assert db_session.query(TaxLot).count() == 0

    def test_rounds_to_column_scale(self, ledger, owner, assets):
        lot = ledger.add_lot(owner.owner_id, assets["VTI"].asset_id, "0.123456789", "10.1234567")

        assert lot.quantity == Decimal("0.12345679")
        assert lot.unit_price == Decimal("10.123457")
        assert lot.cost_basis == Decimal("0.12345679") * Decimal("10.123457")

    def test_quantity_rounding_to_zero_is_rejected(self, ledger, owner, assets):
        with pytest.raises(InvalidQuantity):
            ledger.add_lot(owner.owner_id, assets["VTI"].asset_id, "0.000000001", 10)


class TestHoldingPeriod:
    def test_exactly_365_days_is_short_term(self):
        acquired = datetime(2023, 1, 1, 10, 30)
        disposed = acquired + timedelta(days=365)
        assert holding_period_days(acquired, disposed) == 365
        assert is_long_term(365) is False

    def test_366_days_is_long_term(self):
        acquired = datetime(2023, 1, 1, 10, 30)
        disposed = acquired + timedelta(days=366)
        assert is_long_term(holding_period_days(acquired, disposed)) is True

    def test_close_stamps_classification(self, ledger, owner, assets):
        asset_id = assets["VTI"].asset_id
        acquired = datetime(2023, 1, 1)
        ledger.add_lot(owner.owner_id, asset_id, 10, 100, acquired)
        ledger.add_lot(owner.owner_id, asset_id, 10, 90, acquired)

        short = ledger.close_lots(owner.owner_id, asset_id, 10, 120, "hifo",
                                  disposed_at=acquired + timedelta(days=365))
        long = ledger.close_lots(owner.owner_id, asset_id, 10, 120, "hifo",
                                 disposed_at=acquired + timedelta(days=366))

        assert short.closed_lots[0].is_long_term is False
        assert short.short_term_gain_loss == Decimal("200")
        assert long.closed_lots[0].is_long_term is True
        assert long.long_term_gain_loss == Decimal("300")


class TestCloseLots:
    def test_conservation_across_adds_and_closes(self, ledger, owner, assets):
        asset_id = assets["VTI"].asset_id
        ledger.add_lot(owner.owner_id, asset_id, 60, 50, datetime(2024, 1, 2))
        ledger.add_lot(owner.owner_id, asset_id, 40, 80, datetime(2024, 2, 1))
        ledger.close_lots(owner.owner_id, asset_id, 70, 45, "hifo")
        ledger.add_lot(owner.owner_id, asset_id, 25, 44, datetime(2024, 3, 1))
        ledger.close_lots(owner.owner_id, asset_id, 15, 46, "fifo")

        closed = ledger.lots_for(owner.owner_id, asset_id, LOT_CLOSED)
        assert ledger.open_quantity(owner.owner_id, asset_id) == Decimal("40")
        assert sum(lot.quantity for lot in closed) == Decimal("85")

    def test_partial_close_splits_lot(self, ledger, owner, assets):
        asset_id = assets["VTI"].asset_id
        acquired = datetime(2024, 1, 2, 9, 30)
        original = ledger.add_lot(owner.owner_id, asset_id, 10, 10, acquired)

        result = ledger.close_lots(owner.owner_id, asset_id, 4, 12, "fifo")

        assert len(result.closed_lots) == 1
        closed = result.closed_lots[0]
        remaining = ledger.get_lot(original.lot_id)
        assert remaining.status == LOT_OPEN
        assert remaining.quantity == Decimal("6")
        assert remaining.cost_basis == Decimal("60")
        assert remaining.unit_price == Decimal("10")
        assert remaining.acquired_at == acquired
        assert closed.lot_id != original.lot_id
        assert closed.parent_lot_id == original.lot_id
        assert closed.status == LOT_CLOSED
        assert closed.acquired_at == acquired
        assert closed.unit_price == Decimal("10")
        assert closed.quantity + remaining.quantity == Decimal("10")
        assert closed.realized_gain_loss == Decimal("8")

    def test_hifo_closes_highest_price_first(self, ledger, owner, assets):
        asset_id = assets["VTI"].asset_id
        for price, day in ((10, 1), (25, 2), (15, 3)):
            ledger.add_lot(owner.owner_id, asset_id, 5, price, datetime(2024, 1, day))

        result = ledger.close_lots(owner.owner_id, asset_id, 1, 20, "hifo")

        assert result.closed_lots[0].unit_price == Decimal("25")

    def test_fifo_closes_oldest_first(self, ledger, owner, assets):
        asset_id = assets["VTI"].asset_id
        for price, day in ((10, 1), (25, 2), (15, 3)):
            ledger.add_lot(owner.owner_id, asset_id, 5, price, datetime(2024, 1, day))

        result = ledger.close_lots(owner.owner_id, asset_id, 1, 20, "fifo")

        assert result.closed_lots[0].unit_price == Decimal("10")

    def test_specific_identification(self, ledger, owner, assets):
        asset_id = assets["VTI"].asset_id
        lots = [ledger.add_lot(owner.owner_id, asset_id, 5, price, datetime(2024, 1, i + 1))
                for i, price in enumerate((10, 25, 15))]

        result = ledger.close_lots(owner.owner_id, asset_id, 5, 20, "specific_id", lot_ids=[lots[2].lot_id])

        assert [lot.lot_id for lot in result.closed_lots] == [lots[2].lot_id]
        assert result.batch_id == lots[2].batch_id

    def test_close_writes_sell_transactions(self, db_session, ledger, owner, assets):
        asset_id = assets["VTI"].asset_id
        ledger.add_lot(owner.owner_id, asset_id, 5, 10, datetime(2024, 1, 1))
        ledger.add_lot(owner.owner_id, asset_id, 5, 12, datetime(2024, 1, 2))

        result = ledger.close_lots(owner.owner_id, asset_id, 7, 11, "fifo")

        sells = db_session.query(Transaction).filter(Transaction.transaction_type == "sell").all()
        assert len(sells) == 2
        assert sum(t.quantity for t in sells) == Decimal("7")
        assert result.total_realized_gain_loss == Decimal("5") + Decimal("-2")

    def test_insufficient_quantity_changes_nothing(self, db_session, ledger, owner, assets):
        asset_id = assets["VTI"].asset_id
        ledger.add_lot(owner.owner_id, asset_id, 60, 50, datetime(2024, 1, 2))
        ledger.add_lot(owner.owner_id, asset_id, 40, 80, datetime(2024, 2, 1))

        with pytest.raises(InsufficientOpenQuantity) as exc_info:
            ledger.close_lots(owner.owner_id, asset_id, 150, 45, "hifo")

        assert exc_info.value.available == Decimal("100")
        lots = ledger.lots_for(owner.owner_id, asset_id)
        assert len(lots) == 2
        assert all(lot.status == LOT_OPEN for lot in lots)
        assert ledger.open_quantity(owner.owner_id, asset_id) == Decimal("100")
        assert db_session.query(Transaction).filter(Transaction.transaction_type == "sell").count() == 0

    @pytest.mark.parametrize("units, price, error", [(0, 10, InvalidQuantity), (5, -1, InvalidPrice)])
    def test_rejects_invalid_close_request(self, ledger, owner, assets, units, price, error):
        asset_id = assets["VTI"].asset_id
        ledger.add_lot(owner.owner_id, asset_id, 10, 10)
        with pytest.raises(error):
            ledger.close_lots(owner.owner_id, asset_id, units, price)

    def test_concurrent_closes_are_serialized(self, db_session, session_factory, ledger, owner, assets):
        asset_id = assets["VTI"].asset_id
        ledger.add_lot(owner.owner_id, asset_id, 100, 50, datetime(2024, 1, 2))
        outcomes = []

        def close_sixty():
            with session_factory() as session:
                try:
                    LotLedger(session).close_lots(owner.owner_id, asset_id, 60, 55, "fifo")
                    outcomes.append("closed")
                except InsufficientOpenQuantity:
                    outcomes.append("insufficient")

        threads = [threading.Thread(target=close_sixty) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["closed", "insufficient"]
        db_session.expire_all()
        assert ledger.open_quantity(owner.owner_id, asset_id) == Decimal("40")

    def test_fractional_close_of_whole_lot_leaves_nothing_open(self, session_factory, ledger, owner, assets):
        asset_id = assets["VTI"].asset_id
        ledger.add_lot(owner.owner_id, asset_id, "0.123456789", 10, datetime(2024, 1, 2))

        with session_factory() as session:
            fresh = LotLedger(session)
            result = fresh.close_lots(owner.owner_id, asset_id, "0.123456789", 9, "fifo")

            assert len(result.closed_lots) == 1
            assert result.closed_lots[0].parent_lot_id is None
            assert fresh.lots_for(owner.owner_id, asset_id, LOT_OPEN) == []
            assert fresh.held_asset_ids(owner.owner_id) == []
            assert fresh.open_quantity(owner.owner_id, asset_id) == Decimal("0")

    def test_fractional_split_keeps_positive_remainder(self, session_factory, ledger, owner, assets):
        asset_id = assets["VTI"].asset_id
        ledger.add_lot(owner.owner_id, asset_id, "1.5", 10, datetime(2024, 1, 2))

        with session_factory() as session:
            fresh = LotLedger(session)
            fresh.close_lots(owner.owner_id, asset_id, "0.499999999", 9, "fifo")
            open_lots = fresh.lots_for(owner.owner_id, asset_id, LOT_OPEN)

            assert [lot.quantity for lot in open_lots] == [Decimal("1.0")]
            assert all(lot.quantity > 0 for lot in open_lots)

    def test_rejects_non_numeric_close_request(self, ledger, owner, assets):
        asset_id = assets["VTI"].asset_id
        ledger.add_lot(owner.owner_id, asset_id, 10, 10)
        with pytest.raises(ValidationError):
            ledger.close_lots(owner.owner_id, asset_id, "NaN", 10)
        with pytest.raises(ValidationError):
            ledger.close_lots(owner.owner_id, asset_id, 5, "abc")
        assert ledger.open_quantity(owner.owner_id, asset_id) == Decimal("10")


class TestUnrealizedGainLoss:
    def test_loss_percentage_and_term(self, ledger, owner, assets, days_ago):
        lot = ledger.add_lot(owner.owner_id, assets["VTI"].asset_id, 10, 100, days_ago(400))

        unrealized = ledger.unrealized_gain_loss(lot.lot_id, Decimal("90"))

        assert unrealized.gain_loss == Decimal("-100")
        assert unrealized.gain_loss_percent == Decimal("-10.00")
        assert unrealized.days_held == 400
        assert unrealized.is_long_term is True

    def test_closed_lot_is_not_found(self, ledger, owner, assets):
        asset_id = assets["VTI"].asset_id
        lot = ledger.add_lot(owner.owner_id, asset_id, 10, 100)
        ledger.close_lots(owner.owner_id, asset_id, 10, 95)

        with pytest.raises(LotNotFound):
            ledger.unrealized_gain_loss(lot.lot_id, 90)
        with pytest.raises(LotNotFound):
            ledger.unrealized_gain_loss(12345, 90)


class TestReadHelpers:
    def test_held_assets_and_ordering(self, ledger, owner, assets):
        vti, spy = assets["VTI"].asset_id, assets["SPY"].asset_id
        ledger.add_lot(owner.owner_id, vti, 5, 10, datetime(2024, 1, 1))
        ledger.add_lot(owner.owner_id, vti, 5, 30, datetime(2024, 1, 2))
        ledger.add_lot(owner.owner_id, spy, 5, 400, datetime(2024, 1, 3))
        ledger.close_lots(owner.owner_id, spy, 5, 410)

        assert ledger.held_asset_ids(owner.owner_id) == [vti]
        ordered = ledger.lots_ordered_by(owner.owner_id, vti, "hifo")
        assert [lot.unit_price for lot in ordered] == [Decimal("30"), Decimal("10")]


class TestDecimalConversion:
    def test_rounds_half_even(self):
        assert to_decimal("0.123456785", 8) == Decimal("0.12345678")
        assert to_decimal(0.1, 2) == Decimal("0.10")
        assert to_decimal(Decimal("7")) == Decimal("7")

    @pytest.mark.parametrize("value", ["abc", "NaN", "-Infinity", "", None])
    def test_rejects_non_finite(self, value):
        with pytest.raises(ValidationError):
            to_decimal(value)
