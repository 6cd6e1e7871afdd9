"""
Tax-loss harvesting API endpoints.
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from taxlot_engine.api.dependencies import get_db, get_session_factory
from taxlot_engine.tax_harvesting import HarvestExecutor, OpportunityScanner

router = APIRouter()


class OpportunityResponse(BaseModel):
    """Tax-loss harvesting opportunity response model."""

    opportunity_id: int
    owner_id: int
    asset_id: int
    total_potential_loss: float
    eligible_lot_count: int
    estimated_tax_savings: float
    total_costs: float
    net_benefit: float
    proxy_asset_id: Optional[int]
    proxy_correlation: Optional[float]
    status: str
    last_detected_at: str


class ExecuteRequest(BaseModel):
    """Harvest execution request model."""

    owner_id: int
    asset_id: int
    lot_ids: List[int]


class ExecutionResponse(BaseModel):
    """Harvest execution record."""

    execution_id: int
    owner_id: int
    batch_id: str
    asset_id: int
    lot_ids: List[int]
    total_loss_realized: float
    estimated_tax_savings: float
    status: str
    error: Optional[dict] = None


@router.post("/scan/{owner_id}", response_model=List[OpportunityResponse])
def scan_opportunities(
    owner_id: int,
    min_loss_threshold: Optional[float] = None,
    sale_date: Optional[date] = None,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """Scan an owner's holdings and upsert pending opportunities."""
    scanner = OpportunityScanner.create(db, session_factory)
    opportunities = scanner.scan_for_opportunities(owner_id, min_loss_threshold, sale_date)
    return [OpportunityResponse(**opp.to_dict()) for opp in opportunities]


@router.get("/opportunities/{owner_id}", response_model=List[OpportunityResponse])
def list_opportunities(
    owner_id: int,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """List recorded opportunities for an owner, highest net benefit first."""
    scanner = OpportunityScanner.create(db, session_factory)
    return [OpportunityResponse(**opp.to_dict()) for opp in scanner.list_opportunities(owner_id, status)]


@router.post("/opportunities/{opportunity_id}/dismiss", response_model=OpportunityResponse)
def dismiss_opportunity(
    opportunity_id: int,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """Dismiss a pending opportunity."""
    scanner = OpportunityScanner.create(db, session_factory)
    return OpportunityResponse(**scanner.dismiss_opportunity(opportunity_id).to_dict())


@router.post("/execute", response_model=ExecutionResponse)
def execute_harvest(
    request: ExecuteRequest,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """Harvest the given lots as one batch. Failures are reported in the record, not as errors."""
    executor = HarvestExecutor.create(db, session_factory)
    record = executor.execute_harvest(request.owner_id, request.asset_id, request.lot_ids)
    return ExecutionResponse(**record.to_dict())
