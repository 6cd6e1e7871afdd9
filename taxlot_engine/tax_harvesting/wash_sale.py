"""
Wash sale guard.

The wash sale rule prevents claiming a loss if the same (or a substantially
identical) asset is acquired within 30 days before or after the sale (61-day
window total). The guard is an eligibility filter: it answers yes/no and never
raises for a risky asset.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from taxlot_engine.core.config import Config
from taxlot_engine.core.database import LOT_HARVESTED, TaxLot
from taxlot_engine.core.utils import to_datetime
from taxlot_engine.data.asset_master import AssetMaster
from taxlot_engine.data.transaction_history import TransactionHistory

logger = logging.getLogger(__name__)


@dataclass
class PostHarvestViolation:
    """A purchase that lands inside the window after a harvested loss."""
    harvested_lot_id: int
    harvest_date: datetime
    realized_loss: Decimal


class WashSaleGuard:
    """Detects wash sale risk from acquisition history."""

    def __init__(self, session: Session, transaction_history: Optional[TransactionHistory] = None):
        """
        Initialize WashSaleGuard.

        Args:
            session: SQLAlchemy database session
            transaction_history: Acquisition history source (defaults to the transactions table)
        """
        self.session = session
        self.transaction_history = transaction_history or TransactionHistory(session)
        self.wash_sale_window_days = Config.WASH_SALE_WINDOW_DAYS

    def check_wash_sale_risk(
        self,
        owner_id: int,
        asset_id: int,
        sale_date: Optional[date] = None,
        include_substantially_identical: bool = False,
    ) -> bool:
        """
        Check if selling an asset at a loss on ``sale_date`` would be disallowed.

        Looks both ways: an acquisition in the 30 days before the sale (classic
        wash sale) or in the 30 days after it (a scheduled repurchase) both count.

        Args:
            owner_id: Owner ID
            asset_id: Asset ID to sell
            sale_date: Prospective disposal date (defaults to today)
            include_substantially_identical: Also count acquisitions of assets in the same identity group

        Returns:
            True if a wash sale would occur, False otherwise
        """
        sale_date = sale_date or date.today()
        if isinstance(sale_date, datetime):
            sale_date = sale_date.date()
        window_start = datetime.combine(sale_date - timedelta(days=self.wash_sale_window_days), datetime.min.time())
        window_end = datetime.combine(sale_date + timedelta(days=self.wash_sale_window_days), datetime.max.time())

        asset_ids = [asset_id]
        if include_substantially_identical:
            asset_ids = AssetMaster(self.session).get_identical_asset_ids(asset_id)

        purchases_in_window = self.transaction_history.get_acquisitions(
            owner_id, asset_ids, window_start, window_end)

        if purchases_in_window:
            logger.info("Wash sale risk for owner %s, asset %s: %d acquisition(s) between %s and %s",
                        owner_id, asset_id, len(purchases_in_window), window_start.date(), window_end.date())
            return True
        return False

    def find_post_harvest_violation(
        self,
        owner_id: int,
        asset_id: int,
        purchase_date: Optional[date] = None,
    ) -> Optional[PostHarvestViolation]:
        """
        Check whether buying ``asset_id`` now would wash out a recent harvest.

        Args:
            owner_id: Owner ID
            asset_id: Asset being purchased
            purchase_date: Purchase timestamp (defaults to now)

        Returns:
            The most recent harvested lot inside the window, or None
        """
        purchase_at = to_datetime(purchase_date)
        window_start = purchase_at - timedelta(days=self.wash_sale_window_days)
        asset_ids = AssetMaster(self.session).get_identical_asset_ids(asset_id)

        harvested = (
            self.session.query(TaxLot)
            .filter(
                TaxLot.owner_id == owner_id,
                TaxLot.asset_id.in_(asset_ids),
                TaxLot.status == LOT_HARVESTED,
                TaxLot.disposed_at >= window_start,
                TaxLot.disposed_at <= purchase_at,
            )
            .order_by(TaxLot.disposed_at.desc())
            .first()
        )
        if harvested is None:
            return None

        logger.warning("Purchase of asset %s by owner %s falls within %d days of harvested lot %s",
                       asset_id, owner_id, self.wash_sale_window_days, harvested.lot_id)
        return PostHarvestViolation(
            harvested_lot_id=harvested.lot_id,
            harvest_date=harvested.disposed_at,
            realized_loss=harvested.realized_gain_loss,
        )
