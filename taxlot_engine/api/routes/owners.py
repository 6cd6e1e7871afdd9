"""
Owner and asset management API endpoints.
"""
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from taxlot_engine.api.dependencies import get_db
from taxlot_engine.core.errors import AssetNotFound, OwnerNotFound
from taxlot_engine.core.owner_manager import OwnerManager
from taxlot_engine.data.asset_master import AssetMaster
from taxlot_engine.data.market_data import MarketDataManager
from taxlot_engine.data.tax_profile import TaxProfileLookup

router = APIRouter()


class OwnerCreate(BaseModel):
    """Owner creation request model."""

    owner_name: str
    tax_rate_short_term: Optional[float] = None
    tax_rate_long_term: Optional[float] = None


class OwnerResponse(BaseModel):
    """Owner response model. effective_* rates fall back to the configured defaults."""

    owner_id: int
    owner_name: str
    tax_rate_short_term: Optional[float]
    tax_rate_long_term: Optional[float]
    effective_short_term_rate: float
    effective_long_term_rate: float


class TaxRatesUpdate(BaseModel):
    """Tax rate update request model; omitted rates are left unchanged."""

    tax_rate_short_term: Optional[float] = None
    tax_rate_long_term: Optional[float] = None


class AssetCreate(BaseModel):
    """Asset registration request model."""

    ticker: str
    asset_name: Optional[str] = None
    asset_type: str = "stock"
    identity_group: Optional[str] = None


class AssetResponse(BaseModel):
    """Asset response model."""

    asset_id: int
    ticker: str
    asset_name: Optional[str]
    asset_type: str
    identity_group: Optional[str]


class PriceUpdate(BaseModel):
    """Manual price observation."""

    price: float


def _decimal(value: Optional[float]) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def _owner_response(owner, db: Session) -> OwnerResponse:
    tax_profile = TaxProfileLookup(db)
    return OwnerResponse(
        owner_id=owner.owner_id,
        owner_name=owner.owner_name,
        tax_rate_short_term=float(owner.tax_rate_short_term) if owner.tax_rate_short_term is not None else None,
        tax_rate_long_term=float(owner.tax_rate_long_term) if owner.tax_rate_long_term is not None else None,
        effective_short_term_rate=float(tax_profile.get_short_term_rate(owner.owner_id)),
        effective_long_term_rate=float(tax_profile.get_long_term_rate(owner.owner_id)),
    )


@router.post("/", response_model=OwnerResponse)
def create_owner(owner_data: OwnerCreate, db: Session = Depends(get_db)):
    """Create a new owner."""
    owner = OwnerManager(db).create_owner(
        owner_name=owner_data.owner_name,
        tax_rate_short_term=_decimal(owner_data.tax_rate_short_term),
        tax_rate_long_term=_decimal(owner_data.tax_rate_long_term),
    )
    return _owner_response(owner, db)


@router.post("/assets", response_model=AssetResponse)
def register_asset(asset_data: AssetCreate, db: Session = Depends(get_db)):
    """Register an asset, or update its name and identity group."""
    asset = AssetMaster(db).get_or_create_asset(
        ticker=asset_data.ticker,
        asset_name=asset_data.asset_name,
        asset_type=asset_data.asset_type,
        identity_group=asset_data.identity_group,
    )
    return AssetResponse(
        asset_id=asset.asset_id,
        ticker=asset.ticker,
        asset_name=asset.asset_name,
        asset_type=asset.asset_type,
        identity_group=asset.identity_group,
    )


@router.put("/assets/{asset_id}/price")
def store_price(asset_id: int, update: PriceUpdate, db: Session = Depends(get_db)):
    """Record the current price of an asset."""
    if AssetMaster(db).get_asset_by_id(asset_id) is None:
        raise AssetNotFound(f"Asset {asset_id} not found")
    row = MarketDataManager(db).store_price(asset_id, update.price)
    return {"asset_id": asset_id, "price": float(row.close_price), "as_of": row.as_of.isoformat()}


@router.get("/assets", response_model=List[AssetResponse])
def list_assets(db: Session = Depends(get_db)):
    """List registered assets."""
    return [
        AssetResponse(
            asset_id=asset.asset_id,
            ticker=asset.ticker,
            asset_name=asset.asset_name,
            asset_type=asset.asset_type,
            identity_group=asset.identity_group,
        )
        for asset in AssetMaster(db).list_assets()
    ]


@router.get("/{owner_id}", response_model=OwnerResponse)
def get_owner(owner_id: int, db: Session = Depends(get_db)):
    """Get owner by ID."""
    owner = OwnerManager(db).get_owner(owner_id)
    if not owner:
        raise OwnerNotFound(f"Owner {owner_id} not found")
    return _owner_response(owner, db)


@router.put("/{owner_id}/tax-rates", response_model=OwnerResponse)
def update_tax_rates(owner_id: int, rates: TaxRatesUpdate, db: Session = Depends(get_db)):
    """Update an owner's short- and long-term tax rates."""
    owner = OwnerManager(db).update_tax_rates(
        owner_id,
        tax_rate_short_term=_decimal(rates.tax_rate_short_term),
        tax_rate_long_term=_decimal(rates.tax_rate_long_term),
    )
    return _owner_response(owner, db)
