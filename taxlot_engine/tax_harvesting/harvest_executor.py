"""
Harvest execution.

Realizes the losses of an explicit set of open lots as one all-or-nothing batch
and writes a HarvestExecution audit row for the outcome, successful or not.
"""
import json
import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence, Union

from sqlalchemy.orm import Session

from taxlot_engine.core.database import (
    EXECUTION_EXECUTED,
    EXECUTION_FAILED,
    LOT_HARVESTED,
    LOT_OPEN,
    OPPORTUNITY_EXECUTED,
    OPPORTUNITY_PENDING,
    HarvestExecution,
    HarvestOpportunity,
    TaxLot,
)
from taxlot_engine.core.errors import LotNotFound, LotStateConflict, ValidationError
from taxlot_engine.core.locks import lot_set_locks
from taxlot_engine.core.lot_ledger import LotLedger
from taxlot_engine.core.timeouts import call_with_timeout
from taxlot_engine.core.utils import to_datetime
from taxlot_engine.data.market_data import DatabasePriceFeed
from taxlot_engine.data.tax_profile import TaxProfileLookup

logger = logging.getLogger(__name__)


class HarvestExecutor:
    """Executes harvest batches against the lot ledger."""

    def __init__(self, session: Session, price_feed, tax_profile: Optional[TaxProfileLookup] = None,
                 timeout_seconds: Optional[float] = None):
        """
        Initialize HarvestExecutor.

        Args:
            session: SQLAlchemy database session
            price_feed: Object exposing ``get_quote(asset_id)``
            tax_profile: Owner tax rate lookup
            timeout_seconds: Bound on the price read (defaults to config value)
        """
        self.session = session
        self.price_feed = price_feed
        self.tax_profile = tax_profile or TaxProfileLookup(session)
        self.timeout_seconds = timeout_seconds
        self.ledger = LotLedger(session)

    @classmethod
    def create(cls, session: Session, session_factory, **kwargs) -> "HarvestExecutor":
        return cls(session, price_feed=DatabasePriceFeed(session_factory), **kwargs)

    def execute_harvest(self, owner_id: int, asset_id: int, lot_ids: Sequence[int],
                        executed_at: Optional[Union[date, datetime]] = None) -> HarvestExecution:
        """
        Harvest the given lots at the current price.

        Every lot must exist, belong to (owner, asset) and still be open. If any
        lot fails to transition the whole batch rolls back and a failed record
        carrying the triggering error is written instead.

        Args:
            owner_id: Owner ID
            asset_id: Asset ID
            lot_ids: Lots to harvest
            executed_at: Disposal timestamp (defaults to now)

        Returns:
            The HarvestExecution record, with status "executed" or "failed"
        """
        lot_ids = list(dict.fromkeys(lot_ids))
        if not lot_ids:
            raise ValidationError("At least one lot id is required to execute a harvest")
        executed_at = to_datetime(executed_at)
        batch_id = str(uuid.uuid4())

        with lot_set_locks.hold((owner_id, asset_id)):
            try:
                record = self._harvest(owner_id, asset_id, lot_ids, executed_at, batch_id)
            except Exception as exc:
                self.session.rollback()
                logger.exception("Harvest batch %s for owner %s, asset %s rolled back",
                                 batch_id, owner_id, asset_id)
                return self._record_failure(owner_id, asset_id, lot_ids, batch_id, exc)

        logger.info("Harvest batch %s for owner %s, asset %s realized a loss of %s across %d lot(s)",
                    batch_id, owner_id, asset_id, record.total_loss_realized, len(lot_ids))
        return record

    def _harvest(self, owner_id: int, asset_id: int, lot_ids: list[int], executed_at: datetime,
                 batch_id: str) -> HarvestExecution:
        quote = call_with_timeout(self.price_feed.get_quote, asset_id, timeout=self.timeout_seconds)
        lots = self._lock_lots(owner_id, asset_id, lot_ids)

        total_gain_loss = Decimal("0")
        for lot in lots:
            self.ledger.mark_disposed(lot, quote.price, executed_at, batch_id, status=LOT_HARVESTED)
            self.ledger.record_transaction(owner_id, asset_id, "sell", executed_at, lot.quantity, quote.price,
                                           lot.quantity * quote.price, lot.lot_id, lot.realized_gain_loss)
            total_gain_loss += lot.realized_gain_loss

        total_loss = max(-total_gain_loss, Decimal("0"))
        short_term_rate = self.tax_profile.get_short_term_rate(owner_id)
        record = HarvestExecution(
            owner_id=owner_id,
            batch_id=batch_id,
            asset_id=asset_id,
            lots_harvested=json.dumps(lot_ids),
            total_loss_realized=total_loss,
            estimated_tax_savings=total_loss * short_term_rate,
            status=EXECUTION_EXECUTED,
        )
        self.session.add(record)

        opportunity = (
            self.session.query(HarvestOpportunity)
            .filter(
                HarvestOpportunity.owner_id == owner_id,
                HarvestOpportunity.asset_id == asset_id,
                HarvestOpportunity.status == OPPORTUNITY_PENDING,
            )
            .one_or_none()
        )
        if opportunity is not None:
            opportunity.status = OPPORTUNITY_EXECUTED

        self.session.commit()
        return record

    def _lock_lots(self, owner_id: int, asset_id: int, lot_ids: list[int]) -> list[TaxLot]:
        rows = self.session.query(TaxLot).filter(TaxLot.lot_id.in_(lot_ids)).with_for_update().all()
        by_id = {lot.lot_id: lot for lot in rows}
        lots = []
        for lot_id in lot_ids:
            lot = by_id.get(lot_id)
            if lot is None:
                raise LotNotFound(lot_id)
            if lot.owner_id != owner_id or lot.asset_id != asset_id:
                raise LotStateConflict(lot_id, f"belongs to owner {lot.owner_id}, asset {lot.asset_id}")
            if lot.status != LOT_OPEN:
                raise LotStateConflict(lot_id, f"is already {lot.status}")
            lots.append(lot)
        return lots

    def _record_failure(self, owner_id: int, asset_id: int, lot_ids: list[int], batch_id: str,
                        exc: Exception) -> HarvestExecution:
        record = HarvestExecution(
            owner_id=owner_id,
            batch_id=batch_id,
            asset_id=asset_id,
            lots_harvested=json.dumps(lot_ids),
            total_loss_realized=Decimal("0"),
            estimated_tax_savings=Decimal("0"),
            status=EXECUTION_FAILED,
            error_detail=json.dumps({"type": type(exc).__name__, "message": str(exc)}),
        )
        self.session.add(record)
        self.session.commit()
        return record
