"""
Correlation table between base assets and candidate substitutes.

The engine only reads it; ``refresh_from_price_history`` is the maintenance
routine run outside a scan to recompute coefficients from stored prices.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional

import pandas as pd

from taxlot_engine.core.database import Asset, AssetCorrelation
from taxlot_engine.core.errors import ValidationError
from taxlot_engine.core.utils import Number, to_decimal
from taxlot_engine.data.market_data import MarketDataManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorrelationEntry:
    """One ranked substitute for a base asset."""
    base_asset_id: int
    proxy_asset_id: int
    proxy_ticker: str
    proxy_identity_group: Optional[str]
    correlation: Decimal


class CorrelationTable:
    """Correlation lookups, each in its own short-lived session."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def get_ranked_substitutes(self, base_asset_id: int, limit: Optional[int] = None) -> list[CorrelationEntry]:
        """
        Substitutes for ``base_asset_id`` ordered by correlation, highest first.

        Args:
            base_asset_id: Asset being replaced
            limit: Maximum entries to return (all when None)

        Returns:
            List of CorrelationEntry
        """
        with self.session_factory() as session:
            query = (
                session.query(AssetCorrelation, Asset)
                .join(Asset, Asset.asset_id == AssetCorrelation.proxy_asset_id)
                .filter(AssetCorrelation.base_asset_id == base_asset_id)
                .order_by(AssetCorrelation.correlation_coefficient.desc(), AssetCorrelation.proxy_asset_id)
            )
            if limit is not None:
                query = query.limit(limit)
            return [
                CorrelationEntry(
                    base_asset_id=row.base_asset_id,
                    proxy_asset_id=row.proxy_asset_id,
                    proxy_ticker=asset.ticker,
                    proxy_identity_group=asset.identity_group,
                    correlation=row.correlation_coefficient,
                )
                for row, asset in query.all()
            ]

    def upsert_correlation(self, base_asset_id: int, proxy_asset_id: int, coefficient: Number) -> None:
        coefficient = to_decimal(coefficient)
        if not (Decimal("-1") <= coefficient <= Decimal("1")):
            raise ValidationError(f"Correlation coefficient must be within [-1, 1], got {coefficient}")
        if base_asset_id == proxy_asset_id:
            raise ValidationError("An asset cannot be its own proxy")
        with self.session_factory() as session:
            row = session.get(AssetCorrelation, (base_asset_id, proxy_asset_id))
            if row:
                row.correlation_coefficient = coefficient
                row.computed_at = datetime.now()
            else:
                session.add(AssetCorrelation(base_asset_id=base_asset_id, proxy_asset_id=proxy_asset_id,
                                             correlation_coefficient=coefficient, computed_at=datetime.now()))
            session.commit()

    def refresh_from_price_history(self, base_asset_id: int, candidate_asset_ids: Iterable[int],
                                   start_date: date, end_date: date,
                                   min_observations: int = 20) -> dict[int, float]:
        """
        Recompute Pearson correlations of daily returns and store them.

        Candidates with fewer than ``min_observations`` overlapping returns are
        skipped.

        Returns:
            Mapping proxy_asset_id -> correlation for the rows written
        """
        with self.session_factory() as session:
            market_data_mgr = MarketDataManager(session)
            base_returns = market_data_mgr.get_price_history(
                base_asset_id, start_date, end_date)["close"].pct_change(fill_method=None)
            computed = {}
            for candidate_id in candidate_asset_ids:
                if candidate_id == base_asset_id:
                    continue
                candidate_returns = market_data_mgr.get_price_history(
                    candidate_id, start_date, end_date)["close"].pct_change(fill_method=None)
                aligned = pd.concat([base_returns, candidate_returns], axis=1, join="inner").dropna()
                if len(aligned) < min_observations:
                    logger.info("Skipping correlation %s/%s: %d overlapping returns",
                                base_asset_id, candidate_id, len(aligned))
                    continue
                correlation = aligned.iloc[:, 0].corr(aligned.iloc[:, 1])
                if pd.isna(correlation):
                    continue
                computed[candidate_id] = round(float(correlation), 6)

        for candidate_id, correlation in computed.items():
            self.upsert_correlation(base_asset_id, candidate_id, correlation)
        logger.info("Refreshed %d correlation(s) for asset %s", len(computed), base_asset_id)
        return computed
