"""
Database models and connection management using SQLAlchemy.

This module defines all database models for the tax-lot harvesting engine.
"""
import json
from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    create_engine,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

LOT_OPEN = "open"
LOT_CLOSED = "closed"
LOT_HARVESTED = "harvested"

OPPORTUNITY_PENDING = "pending"
OPPORTUNITY_EXECUTED = "executed"
OPPORTUNITY_DISMISSED = "dismissed"

EXECUTION_EXECUTED = "executed"
EXECUTION_FAILED = "failed"


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


# Owners and Tax Profiles
class Owner(Base):
    """Owner of tax lots, with the tax profile used for benefit estimates."""
    __tablename__ = "owners"
    owner_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_name: Mapped[str] = mapped_column(String(255), nullable=False)
    tax_rate_short_term: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 4), nullable=True)
    tax_rate_long_term: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 4), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    tax_lots: Mapped[list["TaxLot"]] = relationship(back_populates="owner")
    transactions: Mapped[list["Transaction"]] = relationship(back_populates="owner")

    def __repr__(self) -> str:
        return f"<Owner(owner_id={self.owner_id}, name={self.owner_name})>"


# Asset Master Data
class Asset(Base):
    """Asset master data table.

    Assets sharing a non-null ``identity_group`` are treated as substantially
    identical by the strict wash-sale check and are never proposed as proxies
    for one another.
    """
    __tablename__ = "assets"
    asset_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticker: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    asset_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    asset_type: Mapped[str] = mapped_column(String(20), nullable=False, default="stock")
    identity_group: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)

    tax_lots: Mapped[list["TaxLot"]] = relationship(back_populates="asset")
    market_data: Mapped[list["MarketData"]] = relationship(back_populates="asset")

    def __repr__(self) -> str:
        return f"<Asset(ticker={self.ticker}, name={self.asset_name})>"


# Tax Lots
class TaxLot(Base):
    """One discrete acquisition of an asset by an owner.

    Rows are never deleted. A partial close shrinks the source row and appends
    a new closed row that points back at it through ``parent_lot_id``.
    """
    __tablename__ = "tax_lots"
    __table_args__ = (
        Index("ix_tax_lots_owner_asset_status", "owner_id", "asset_id", "status"),
        CheckConstraint("quantity > 0", name="ck_tax_lots_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_tax_lots_unit_price_non_negative"),
    )
    lot_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("owners.owner_id"), nullable=False)
    asset_id: Mapped[int] = mapped_column(Integer, ForeignKey("assets.asset_id"), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    cost_basis: Mapped[Decimal] = mapped_column(Numeric(28, 10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=LOT_OPEN)
    disposed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    disposal_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 6), nullable=True)
    realized_gain_loss: Mapped[Optional[Decimal]] = mapped_column(Numeric(28, 10), nullable=True)
    holding_period_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_long_term: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    batch_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    parent_lot_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("tax_lots.lot_id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    owner: Mapped["Owner"] = relationship(back_populates="tax_lots")
    asset: Mapped["Asset"] = relationship(back_populates="tax_lots")

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "lot_id": self.lot_id,
            "owner_id": self.owner_id,
            "asset_id": self.asset_id,
            "acquired_at": self.acquired_at.isoformat(),
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "cost_basis": str(self.cost_basis),
            "status": self.status,
            "disposed_at": self.disposed_at.isoformat() if self.disposed_at else None,
            "disposal_price": str(self.disposal_price) if self.disposal_price is not None else None,
            "realized_gain_loss": str(self.realized_gain_loss) if self.realized_gain_loss is not None else None,
            "is_long_term": self.is_long_term,
            "batch_id": self.batch_id,
            "parent_lot_id": self.parent_lot_id,
        }

    def __repr__(self) -> str:
        return f"<TaxLot(lot_id={self.lot_id}, asset_id={self.asset_id}, quantity={self.quantity}, status={self.status})>"


# Transaction History
class Transaction(Base):
    """Acquisition and disposal history, read by the wash-sale guard."""
    __tablename__ = "transactions"
    transaction_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("owners.owner_id"), nullable=False)
    asset_id: Mapped[int] = mapped_column(Integer, ForeignKey("assets.asset_id"), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    transaction_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 8), nullable=True)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 6), nullable=True)
    total_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(28, 10), nullable=True)
    lot_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("tax_lots.lot_id"), nullable=True)
    realized_gain_loss: Mapped[Optional[Decimal]] = mapped_column(Numeric(28, 10), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)

    owner: Mapped["Owner"] = relationship(back_populates="transactions")

    def __repr__(self) -> str:
        return f"<Transaction(transaction_id={self.transaction_id}, type={self.transaction_type}, date={self.transaction_date})>"


# Market Data
class MarketData(Base):
    """Market data (price history). ``as_of`` timestamps the latest quote of the day."""
    __tablename__ = "market_data"
    asset_id: Mapped[int] = mapped_column(Integer, ForeignKey("assets.asset_id"), primary_key=True)
    price_date: Mapped[date] = mapped_column(Date, primary_key=True, nullable=False)
    close_price: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    as_of: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    asset: Mapped["Asset"] = relationship(back_populates="market_data")

    def __repr__(self) -> str:
        return f"<MarketData(asset_id={self.asset_id}, date={self.price_date}, close={self.close_price})>"


# Correlation Table
class AssetCorrelation(Base):
    """Precomputed correlation between a base asset and a candidate substitute."""
    __tablename__ = "asset_correlations"
    __table_args__ = (
        CheckConstraint(
            "correlation_coefficient >= -1 AND correlation_coefficient <= 1",
            name="ck_asset_correlations_range",
        ),
    )
    base_asset_id: Mapped[int] = mapped_column(Integer, ForeignKey("assets.asset_id"), primary_key=True)
    proxy_asset_id: Mapped[int] = mapped_column(Integer, ForeignKey("assets.asset_id"), primary_key=True)
    correlation_coefficient: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<AssetCorrelation(base={self.base_asset_id}, proxy={self.proxy_asset_id}, corr={self.correlation_coefficient})>"


# Harvesting
class HarvestOpportunity(Base):
    """Per-(owner, asset) summary of currently eligible unrealized losses."""
    __tablename__ = "harvest_opportunities"
    __table_args__ = (
        Index(
            "uq_harvest_opportunities_pending",
            "owner_id",
            "asset_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )
    opportunity_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("owners.owner_id"), nullable=False)
    asset_id: Mapped[int] = mapped_column(Integer, ForeignKey("assets.asset_id"), nullable=False)
    total_potential_loss: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    eligible_lot_count: Mapped[int] = mapped_column(Integer, nullable=False)
    estimated_tax_savings: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    total_costs: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    net_benefit: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    proxy_asset_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("assets.asset_id"), nullable=True)
    proxy_correlation: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 6), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=OPPORTUNITY_PENDING)
    last_detected_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "opportunity_id": self.opportunity_id,
            "owner_id": self.owner_id,
            "asset_id": self.asset_id,
            "total_potential_loss": float(self.total_potential_loss),
            "eligible_lot_count": self.eligible_lot_count,
            "estimated_tax_savings": float(self.estimated_tax_savings),
            "total_costs": float(self.total_costs),
            "net_benefit": float(self.net_benefit),
            "proxy_asset_id": self.proxy_asset_id,
            "proxy_correlation": float(self.proxy_correlation) if self.proxy_correlation is not None else None,
            "status": self.status,
            "last_detected_at": self.last_detected_at.isoformat(),
        }

    def __repr__(self) -> str:
        return f"<HarvestOpportunity(owner_id={self.owner_id}, asset_id={self.asset_id}, loss={self.total_potential_loss}, status={self.status})>"


class HarvestExecution(Base):
    """Audit row written once per harvest batch, successful or not."""
    __tablename__ = "harvest_executions"
    execution_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    batch_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    asset_id: Mapped[int] = mapped_column(Integer, nullable=False)
    lots_harvested: Mapped[str] = mapped_column(Text, nullable=False, default="[]")  # JSON: [lot_id, ...]
    total_loss_realized: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False, default=Decimal("0"))
    estimated_tax_savings: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error_detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # JSON: {"type": ..., "message": ...}
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)

    @property
    def lot_ids(self) -> list[int]:
        return json.loads(self.lots_harvested or "[]")

    @property
    def error(self) -> Optional[dict]:
        return json.loads(self.error_detail) if self.error_detail else None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "execution_id": self.execution_id,
            "owner_id": self.owner_id,
            "batch_id": self.batch_id,
            "asset_id": self.asset_id,
            "lot_ids": self.lot_ids,
            "total_loss_realized": float(self.total_loss_realized),
            "estimated_tax_savings": float(self.estimated_tax_savings),
            "status": self.status,
            "error": self.error,
        }

    def __repr__(self) -> str:
        return f"<HarvestExecution(batch_id={self.batch_id}, asset_id={self.asset_id}, status={self.status})>"


# Database Connection Management
def create_database_engine(database_url: str, echo: bool = False):
    """Create SQLAlchemy database engine."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, echo=echo, future=True, connect_args=connect_args)


def init_database(engine):
    """Initialize database by creating all tables."""
    Base.metadata.create_all(engine)


def get_session_factory(engine):
    """Get session factory for database operations."""
    from sqlalchemy.orm import sessionmaker
    return sessionmaker(bind=engine, future=True, expire_on_commit=False)
