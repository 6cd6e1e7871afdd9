"""
Correlation proxy identification.

Finds a substitute asset that keeps the portfolio's market exposure while the
wash sale clock runs on a harvested position. Substitutes must be correlated
but not substantially identical to the asset being sold.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from taxlot_engine.core.config import Config
from taxlot_engine.data.correlation_table import CorrelationTable


@dataclass(frozen=True)
class ProxyAsset:
    """Recommended substitute for a harvested asset."""
    asset_id: int
    ticker: str
    correlation: Decimal

    def to_dict(self) -> dict:
        return {"asset_id": self.asset_id, "ticker": self.ticker, "correlation": float(self.correlation)}


class CorrelationProxyFinder:
    """Looks up the most correlated substitutes for an asset."""

    def __init__(self, correlation_table: CorrelationTable):
        """
        Initialize CorrelationProxyFinder.

        Args:
            correlation_table: Read-only correlation source
        """
        self.correlation_table = correlation_table

    def find_proxy_asset(self, base_asset_id: int, base_identity_group: Optional[str] = None,
                         exclude_asset_ids: Iterable[int] = ()) -> Optional[ProxyAsset]:
        """
        Return the single highest-correlation substitute, or None without data.
        """
        ranked = self.rank_proxy_assets(base_asset_id, limit=1, base_identity_group=base_identity_group,
                                        exclude_asset_ids=exclude_asset_ids)
        return ranked[0] if ranked else None

    def rank_proxy_assets(
        self,
        base_asset_id: int,
        limit: Optional[int] = None,
        base_identity_group: Optional[str] = None,
        exclude_asset_ids: Iterable[int] = (),
    ) -> list[ProxyAsset]:
        """
        Return substitutes ordered by correlation, highest first.

        Args:
            base_asset_id: Asset being sold
            limit: Maximum number of substitutes (defaults to PROXY_CANDIDATE_LIMIT)
            base_identity_group: Identity group of the base asset; members are skipped
            exclude_asset_ids: Further assets that must not be proposed

        Returns:
            List of ProxyAsset, possibly empty
        """
        limit = Config.PROXY_CANDIDATE_LIMIT if limit is None else limit
        excluded = set(exclude_asset_ids)
        excluded.add(base_asset_id)

        proxies = []
        for entry in self.correlation_table.get_ranked_substitutes(base_asset_id):
            if entry.proxy_asset_id in excluded:
                continue
            if base_identity_group and entry.proxy_identity_group == base_identity_group:
                continue
            proxies.append(ProxyAsset(asset_id=entry.proxy_asset_id, ticker=entry.proxy_ticker,
                                      correlation=entry.correlation))
            if len(proxies) >= limit:
                break
        return proxies
