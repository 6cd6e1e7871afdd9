"""
Tests for wash sale detection.
"""
from datetime import date, datetime, timedelta

from taxlot_engine.core.owner_manager import OwnerManager
from taxlot_engine.data.market_data import DatabasePriceFeed
from taxlot_engine.tax_harvesting.harvest_executor import HarvestExecutor
from taxlot_engine.tax_harvesting.wash_sale import WashSaleGuard


class TestWashSaleRisk:
    def test_no_purchase_in_window(self, db_session, ledger, owner, assets):
        ledger.add_lot(owner.owner_id, assets["VTI"].asset_id, 100, 180, datetime(2024, 1, 15))

        guard = WashSaleGuard(db_session)

        assert guard.check_wash_sale_risk(owner.owner_id, assets["VTI"].asset_id, date(2024, 3, 1)) is False

    def test_purchase_ten_days_before_sale(self, db_session, ledger, owner, assets):
        ledger.add_lot(owner.owner_id, assets["VTI"].asset_id, 100, 180, datetime(2024, 1, 15))
        ledger.add_lot(owner.owner_id, assets["VTI"].asset_id, 50, 175, datetime(2024, 2, 20))

        guard = WashSaleGuard(db_session)

        assert guard.check_wash_sale_risk(owner.owner_id, assets["VTI"].asset_id, date(2024, 3, 1)) is True

    def test_purchase_ten_days_after_sale(self, db_session, ledger, owner, assets):
        ledger.add_lot(owner.owner_id, assets["VTI"].asset_id, 100, 180, datetime(2024, 1, 15))
        ledger.add_lot(owner.owner_id, assets["VTI"].asset_id, 50, 175, datetime(2024, 3, 11))

        guard = WashSaleGuard(db_session)

        assert guard.check_wash_sale_risk(owner.owner_id, assets["VTI"].asset_id, date(2024, 3, 1)) is True

    def test_window_edges(self, db_session, ledger, owner, assets):
        sale_date = date(2024, 6, 1)
        asset_id = assets["VTI"].asset_id
        guard = WashSaleGuard(db_session)

        ledger.add_lot(owner.owner_id, asset_id, 1, 10, datetime(2024, 5, 1, 23, 59))
        assert guard.check_wash_sale_risk(owner.owner_id, asset_id, sale_date) is False

        ledger.add_lot(owner.owner_id, asset_id, 1, 10, datetime(2024, 7, 1, 16, 0))
        assert guard.check_wash_sale_risk(owner.owner_id, asset_id, sale_date) is True

    def test_other_owner_and_asset_do_not_count(self, db_session, ledger, owner, assets):
        other = OwnerManager(db_session).create_owner("Other Owner")
        ledger.add_lot(other.owner_id, assets["VTI"].asset_id, 10, 10, datetime(2024, 2, 25))
        ledger.add_lot(owner.owner_id, assets["SPY"].asset_id, 10, 10, datetime(2024, 2, 25))

        guard = WashSaleGuard(db_session)

        assert guard.check_wash_sale_risk(owner.owner_id, assets["VTI"].asset_id, date(2024, 3, 1)) is False

    def test_substantially_identical_only_in_strict_mode(self, db_session, ledger, owner, assets):
        ledger.add_lot(owner.owner_id, assets["ITOT"].asset_id, 10, 100, datetime(2024, 2, 25))

        guard = WashSaleGuard(db_session)
        vti = assets["VTI"].asset_id

        assert guard.check_wash_sale_risk(owner.owner_id, vti, date(2024, 3, 1)) is False
        assert guard.check_wash_sale_risk(owner.owner_id, vti, date(2024, 3, 1),
                                          include_substantially_identical=True) is True


class TestPostHarvestViolation:
    def test_repurchase_after_harvest_is_reported(self, db_session, session_factory, ledger, owner, assets,
                                                  set_price, days_ago):
        vti = assets["VTI"]
        lot = ledger.add_lot(owner.owner_id, vti.asset_id, 10, 100, days_ago(120))
        set_price(vti, 80)
        record = HarvestExecutor(db_session, DatabasePriceFeed(session_factory)).execute_harvest(
            owner.owner_id, vti.asset_id, [lot.lot_id], executed_at=days_ago(5))
        assert record.status == "executed"

        guard = WashSaleGuard(db_session)
        violation = guard.find_post_harvest_violation(owner.owner_id, assets["ITOT"].asset_id)

        assert violation is not None
        assert violation.harvested_lot_id == lot.lot_id
        assert violation.realized_loss < 0

    def test_old_harvest_is_outside_window(self, db_session, session_factory, ledger, owner, assets,
                                           set_price, days_ago):
        vti = assets["VTI"]
        lot = ledger.add_lot(owner.owner_id, vti.asset_id, 10, 100, days_ago(120))
        set_price(vti, 80)
        HarvestExecutor(db_session, DatabasePriceFeed(session_factory)).execute_harvest(
            owner.owner_id, vti.asset_id, [lot.lot_id], executed_at=days_ago(45))

        guard = WashSaleGuard(db_session)

        assert guard.find_post_harvest_violation(owner.owner_id, vti.asset_id) is None
        assert guard.find_post_harvest_violation(
            owner.owner_id, vti.asset_id, datetime.now() - timedelta(days=30)) is not None
