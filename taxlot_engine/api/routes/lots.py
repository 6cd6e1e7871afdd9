"""
Tax lot API endpoints.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from taxlot_engine.api.dependencies import get_db, get_session_factory
from taxlot_engine.core.errors import LotNotFound
from taxlot_engine.core.lot_ledger import LotLedger
from taxlot_engine.core.utils import to_decimal
from taxlot_engine.data.market_data import DatabasePriceFeed
from taxlot_engine.tax_harvesting.wash_sale import WashSaleGuard

router = APIRouter()


class LotCreate(BaseModel):
    """Acquisition request model."""

    owner_id: int
    asset_id: int
    quantity: float
    unit_price: float
    acquired_at: Optional[datetime] = None


class LotResponse(BaseModel):
    """Tax lot response model."""

    lot_id: int
    owner_id: int
    asset_id: int
    acquired_at: datetime
    quantity: float
    unit_price: float
    cost_basis: float
    status: str
    disposed_at: Optional[datetime] = None
    disposal_price: Optional[float] = None
    realized_gain_loss: Optional[float] = None
    is_long_term: Optional[bool] = None
    batch_id: Optional[str] = None
    parent_lot_id: Optional[int] = None


class LotCreatedResponse(BaseModel):
    """Acquisition response, with a warning when it washes out a recent harvest."""

    lot: LotResponse
    wash_sale_warning: Optional[dict] = None


class CloseRequest(BaseModel):
    """Disposal request model."""

    owner_id: int
    asset_id: int
    units: float
    disposal_price: float
    method: str = "hifo"
    lot_ids: Optional[List[int]] = None
    disposed_at: Optional[datetime] = None


class CloseResponse(BaseModel):
    """Disposal result."""

    batch_id: str
    total_quantity: float
    total_realized_gain_loss: float
    short_term_gain_loss: float
    long_term_gain_loss: float
    closed_lots: List[LotResponse]


class UnrealizedResponse(BaseModel):
    """Mark-to-market response model."""

    lot_id: int
    current_price: float
    gain_loss: float
    gain_loss_percent: float
    is_long_term: bool
    days_held: int


@router.post("/", response_model=LotCreatedResponse)
def add_lot(lot_data: LotCreate, db: Session = Depends(get_db)):
    """Record an acquisition as a new open lot."""
    lot = LotLedger(db).add_lot(
        owner_id=lot_data.owner_id,
        asset_id=lot_data.asset_id,
        quantity=to_decimal(lot_data.quantity),
        unit_price=to_decimal(lot_data.unit_price),
        acquired_at=lot_data.acquired_at,
    )
    violation = WashSaleGuard(db).find_post_harvest_violation(lot.owner_id, lot.asset_id, lot.acquired_at)
    warning = None
    if violation:
        warning = {
            "harvested_lot_id": violation.harvested_lot_id,
            "harvest_date": violation.harvest_date.isoformat(),
            "realized_loss": float(violation.realized_loss),
        }
    return LotCreatedResponse(lot=LotResponse(**lot.to_dict()), wash_sale_warning=warning)


@router.get("/owners/{owner_id}/assets/{asset_id}", response_model=List[LotResponse])
def list_open_lots(owner_id: int, asset_id: int, method: str = "hifo", db: Session = Depends(get_db)):
    """Open lots of an (owner, asset) pair in consumption order."""
    lots = LotLedger(db).lots_ordered_by(owner_id, asset_id, method)
    return [LotResponse(**lot.to_dict()) for lot in lots]


@router.post("/close", response_model=CloseResponse)
def close_lots(request: CloseRequest, db: Session = Depends(get_db)):
    """Dispose of units, splitting the last consumed lot when needed."""
    result = LotLedger(db).close_lots(
        owner_id=request.owner_id,
        asset_id=request.asset_id,
        units_to_close=to_decimal(request.units),
        disposal_price=to_decimal(request.disposal_price),
        method=request.method,
        lot_ids=request.lot_ids,
        disposed_at=request.disposed_at,
    )
    return CloseResponse(
        batch_id=result.batch_id,
        total_quantity=float(result.total_quantity),
        total_realized_gain_loss=float(result.total_realized_gain_loss),
        short_term_gain_loss=float(result.short_term_gain_loss),
        long_term_gain_loss=float(result.long_term_gain_loss),
        closed_lots=[LotResponse(**lot.to_dict()) for lot in result.closed_lots],
    )


@router.get("/{lot_id}", response_model=LotResponse)
def get_lot(lot_id: int, db: Session = Depends(get_db)):
    """Get a lot by ID, in any status."""
    lot = LotLedger(db).get_lot(lot_id)
    if lot is None:
        raise LotNotFound(lot_id)
    return LotResponse(**lot.to_dict())


@router.get("/{lot_id}/unrealized", response_model=UnrealizedResponse)
def get_unrealized_gain_loss(
    lot_id: int,
    current_price: Optional[float] = None,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """Mark an open lot to market, at ``current_price`` or the latest stored price."""
    ledger = LotLedger(db)
    if current_price is None:
        lot = ledger.get_lot(lot_id)
        if lot is None:
            raise LotNotFound(lot_id)
        price = DatabasePriceFeed(session_factory).get_quote(lot.asset_id).price
    else:
        price = to_decimal(current_price)
    unrealized = ledger.unrealized_gain_loss(lot_id, price)
    return UnrealizedResponse(current_price=float(price), **unrealized.to_dict())
