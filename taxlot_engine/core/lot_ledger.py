"""
Tax lot ledger.

Owns the append-and-split lifecycle of tax lots per (owner, asset) pair. For
every pair, the quantity summed over open lots equals the quantity the owner
currently holds.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence, Union

from sqlalchemy.orm import Session

from taxlot_engine.core.config import Config
from taxlot_engine.core.database import (
    LOT_CLOSED,
    LOT_OPEN,
    Asset,
    Owner,
    TaxLot,
    Transaction,
)
from taxlot_engine.core.errors import (
    AssetNotFound,
    InsufficientOpenQuantity,
    InvalidPrice,
    InvalidQuantity,
    LotNotFound,
    OwnerNotFound,
)
from taxlot_engine.core.locks import lot_set_locks
from taxlot_engine.core.lot_selector import LotSelectionMethod, order_lots
from taxlot_engine.core.utils import PRICE_PLACES, QUANTITY_PLACES, Number, to_datetime, to_decimal

logger = logging.getLogger(__name__)


def holding_period_days(acquired_at: datetime, disposed_at: datetime) -> int:
    """Whole days between acquisition and disposal."""
    return (disposed_at - acquired_at).days


def is_long_term(days_held: int) -> bool:
    """Long-term strictly after the holding threshold; exactly 365 days is short-term."""
    return days_held > Config.LONG_TERM_HOLDING_DAYS


@dataclass
class UnrealizedGainLoss:
    """Mark-to-market view of a single open lot."""
    lot_id: int
    gain_loss: Decimal
    gain_loss_percent: Decimal
    is_long_term: bool
    days_held: int

    def to_dict(self) -> dict:
        return {
            "lot_id": self.lot_id,
            "gain_loss": float(self.gain_loss),
            "gain_loss_percent": float(self.gain_loss_percent),
            "is_long_term": self.is_long_term,
            "days_held": self.days_held,
        }


@dataclass
class CloseResult:
    """Outcome of a close_lots call."""
    batch_id: str
    closed_lots: list[TaxLot] = field(default_factory=list)
    total_quantity: Decimal = Decimal("0")
    total_realized_gain_loss: Decimal = Decimal("0")
    short_term_gain_loss: Decimal = Decimal("0")
    long_term_gain_loss: Decimal = Decimal("0")


class LotLedger:
    """Ledger of tax lots backed by a SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session

    def add_lot(self, owner_id: int, asset_id: int, quantity: Number, unit_price: Number,
                acquired_at: Optional[Union[date, datetime]] = None) -> TaxLot:
        """
        Record a new acquisition as an open lot.

        quantity and unit_price are rounded to the scale of their columns first.

        Args:
            owner_id: Owner ID
            asset_id: Asset ID
            quantity: Units acquired (> 0)
            unit_price: Price per unit at acquisition (>= 0)
            acquired_at: Acquisition timestamp (defaults to now)

        Returns:
            The persisted open TaxLot
        """
        quantity = to_decimal(quantity, QUANTITY_PLACES)
        unit_price = to_decimal(unit_price, PRICE_PLACES)
        if quantity <= 0:
            raise InvalidQuantity(f"Lot quantity must be positive, got {quantity}")
        if unit_price < 0:
            raise InvalidPrice(f"Unit price must be non-negative, got {unit_price}")
        if self.session.get(Owner, owner_id) is None:
            raise OwnerNotFound(f"Owner {owner_id} not found")
        if self.session.get(Asset, asset_id) is None:
            raise AssetNotFound(f"Asset {asset_id} not found")

        acquired_at = to_datetime(acquired_at)
        cost_basis = quantity * unit_price
        try:
            tax_lot = TaxLot(owner_id=owner_id, asset_id=asset_id, acquired_at=acquired_at,
                             quantity=quantity, unit_price=unit_price, cost_basis=cost_basis,
                             status=LOT_OPEN)
            self.session.add(tax_lot)
            self.session.flush()
            self.record_transaction(owner_id, asset_id, "buy", acquired_at, quantity,
                                    unit_price, cost_basis, tax_lot.lot_id)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("Added lot %s: %s units of asset %s @ %s for owner %s",
                    tax_lot.lot_id, quantity, asset_id, unit_price, owner_id)
        return tax_lot

    def get_lot(self, lot_id: int) -> Optional[TaxLot]:
        return self.session.get(TaxLot, lot_id)

    def lots_for(self, owner_id: int, asset_id: int, status: Optional[str] = None) -> list[TaxLot]:
        query = self.session.query(TaxLot).filter(TaxLot.owner_id == owner_id, TaxLot.asset_id == asset_id)
        if status:
            query = query.filter(TaxLot.status == status)
        return query.order_by(TaxLot.lot_id).all()

    def open_quantity(self, owner_id: int, asset_id: int) -> Decimal:
        """Quantity currently held: the sum of open lot quantities."""
        return sum((lot.quantity for lot in self._open_lots(owner_id, asset_id)), Decimal("0"))

    def held_asset_ids(self, owner_id: int) -> list[int]:
        """Assets with at least one open lot for the owner."""
        rows = (
            self.session.query(TaxLot.asset_id)
            .filter(TaxLot.owner_id == owner_id, TaxLot.status == LOT_OPEN)
            .distinct()
            .order_by(TaxLot.asset_id)
            .all()
        )
        return [row[0] for row in rows]

    def lots_ordered_by(self, owner_id: int, asset_id: int,
                        method: Union[LotSelectionMethod, str] = LotSelectionMethod.HIFO,
                        lot_ids: Optional[Sequence[int]] = None) -> list[TaxLot]:
        """Open lots of the pair in consumption order for the given method."""
        return order_lots(self._open_lots(owner_id, asset_id), LotSelectionMethod.parse(method), lot_ids)

    def unrealized_gain_loss(self, lot_id: int, current_price: Number,
                             as_of: Optional[datetime] = None) -> UnrealizedGainLoss:
        """
        Mark an open lot to market.

        Args:
            lot_id: Tax lot ID
            current_price: Current unit price
            as_of: Valuation timestamp (defaults to now)

        Returns:
            UnrealizedGainLoss with gain/loss, percentage, days held and term

        Raises:
            LotNotFound: The id does not resolve to an open lot
        """
        lot = self.get_lot(lot_id)
        if lot is None:
            raise LotNotFound(lot_id)
        if lot.status != LOT_OPEN:
            raise LotNotFound(lot_id, f"is {lot.status}, not open")

        current_price = to_decimal(current_price)
        gain_loss = lot.quantity * current_price - lot.cost_basis
        if lot.cost_basis > 0:
            gain_loss_percent = (gain_loss / lot.cost_basis * 100).quantize(Decimal("0.01"))
        else:
            gain_loss_percent = Decimal("0.00")
        days_held = holding_period_days(lot.acquired_at, as_of or datetime.now())
        return UnrealizedGainLoss(
            lot_id=lot.lot_id,
            gain_loss=gain_loss,
            gain_loss_percent=gain_loss_percent,
            is_long_term=is_long_term(days_held),
            days_held=days_held,
        )

    def close_lots(self, owner_id: int, asset_id: int, units_to_close: Number, disposal_price: Number,
                   method: Union[LotSelectionMethod, str] = LotSelectionMethod.HIFO,
                   lot_ids: Optional[Sequence[int]] = None,
                   disposed_at: Optional[Union[date, datetime]] = None) -> CloseResult:
        """
        Close units of an (owner, asset) pair, splitting the last lot if needed.

        Fully consumed lots are stamped closed in place. A partially consumed lot
        keeps its row (shrunk to the remaining quantity, still open) and the
        consumed portion is appended as a new closed lot with the same acquisition
        timestamp and unit price. All-or-nothing: nothing is visible on failure.

        Args:
            owner_id: Owner ID
            asset_id: Asset ID
            units_to_close: Units disposed (> 0)
            disposal_price: Price per unit received (>= 0)
            method: Lot selection method
            lot_ids: Explicit lots for SPECIFIC_ID
            disposed_at: Disposal timestamp (defaults to now)

        Returns:
            CloseResult describing the closed lot records

        Raises:
            InsufficientOpenQuantity: The selectable open quantity is short
        """
        units_to_close = to_decimal(units_to_close, QUANTITY_PLACES)
        disposal_price = to_decimal(disposal_price, PRICE_PLACES)
        if units_to_close <= 0:
            raise InvalidQuantity(f"Units to close must be positive, got {units_to_close}")
        if disposal_price < 0:
            raise InvalidPrice(f"Disposal price must be non-negative, got {disposal_price}")
        method = LotSelectionMethod.parse(method)
        disposed_at = to_datetime(disposed_at)

        with lot_set_locks.hold((owner_id, asset_id)):
            try:
                ordered = order_lots(self._open_lots(owner_id, asset_id, for_update=True), method, lot_ids)
                available = sum((lot.quantity for lot in ordered), Decimal("0"))
                if available < units_to_close:
                    raise InsufficientOpenQuantity(owner_id, asset_id, units_to_close, available)

                result = CloseResult(batch_id=str(uuid.uuid4()))
                remaining = units_to_close
                for lot in ordered:
                    if remaining <= 0:
                        break
                    qty = min(lot.quantity, remaining)
                    if qty == lot.quantity:
                        closed = self.mark_disposed(lot, disposal_price, disposed_at, result.batch_id)
                    else:
                        closed = self._split_lot(lot, qty, disposal_price, disposed_at, result.batch_id)
                    self.record_transaction(owner_id, asset_id, "sell", disposed_at, qty, disposal_price,
                                            qty * disposal_price, closed.lot_id, closed.realized_gain_loss)

                    result.closed_lots.append(closed)
                    result.total_quantity += qty
                    result.total_realized_gain_loss += closed.realized_gain_loss
                    if closed.is_long_term:
                        result.long_term_gain_loss += closed.realized_gain_loss
                    else:
                        result.short_term_gain_loss += closed.realized_gain_loss
                    remaining -= qty

                self.session.commit()
            except Exception:
                self.session.rollback()
                logger.exception("Closing %s units of asset %s for owner %s failed",
                                 units_to_close, asset_id, owner_id)
                raise

        logger.info("Closed %s units of asset %s for owner %s across %d lot(s) using %s, realized %s",
                    result.total_quantity, asset_id, owner_id, len(result.closed_lots),
                    method.value, result.total_realized_gain_loss)
        return result

    def _open_lots(self, owner_id: int, asset_id: int, for_update: bool = False) -> list[TaxLot]:
        query = self.session.query(TaxLot).filter(
            TaxLot.owner_id == owner_id, TaxLot.asset_id == asset_id, TaxLot.status == LOT_OPEN)
        if for_update:
            query = query.with_for_update()
        return query.order_by(TaxLot.lot_id).all()

    def mark_disposed(self, lot: TaxLot, disposal_price: Decimal, disposed_at: datetime,
                      batch_id: str, status: str = LOT_CLOSED) -> TaxLot:
        """Stamp a lot as disposed in place; the caller owns the transaction."""
        days_held = holding_period_days(lot.acquired_at, disposed_at)
        lot.status = status
        lot.disposed_at = disposed_at
        lot.disposal_price = disposal_price
        lot.realized_gain_loss = (disposal_price - lot.unit_price) * lot.quantity
        lot.holding_period_days = days_held
        lot.is_long_term = is_long_term(days_held)
        lot.batch_id = batch_id
        return lot

    def _split_lot(self, lot: TaxLot, qty: Decimal, disposal_price: Decimal, disposed_at: datetime,
                   batch_id: str) -> TaxLot:
        remaining_qty = lot.quantity - qty
        lot.quantity = remaining_qty
        lot.cost_basis = remaining_qty * lot.unit_price

        closed = TaxLot(owner_id=lot.owner_id, asset_id=lot.asset_id, acquired_at=lot.acquired_at,
                        quantity=qty, unit_price=lot.unit_price, cost_basis=qty * lot.unit_price,
                        parent_lot_id=lot.lot_id)
        self.mark_disposed(closed, disposal_price, disposed_at, batch_id)
        self.session.add(closed)
        self.session.flush()
        logger.debug("Split lot %s: %s units closed as lot %s, %s units remain open",
                     lot.lot_id, qty, closed.lot_id, remaining_qty)
        return closed

    def record_transaction(self, owner_id: int, asset_id: int, transaction_type: str,
                           transaction_date: datetime, quantity: Optional[Decimal] = None,
                           price: Optional[Decimal] = None, total_amount: Optional[Decimal] = None,
                           lot_id: Optional[int] = None,
                           realized_gain_loss: Optional[Decimal] = None) -> Transaction:
        transaction = Transaction(owner_id=owner_id, asset_id=asset_id,
                                  transaction_type=transaction_type, transaction_date=transaction_date,
                                  quantity=quantity, price=price, total_amount=total_amount,
                                  lot_id=lot_id, realized_gain_loss=realized_gain_loss)
        self.session.add(transaction)
        return transaction
