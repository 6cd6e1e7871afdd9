"""
Market data ingestion and the current-price feed.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
import pandas as pd
import yfinance as yf
from sqlalchemy.orm import Session
from taxlot_engine.core.database import MarketData, Asset
from taxlot_engine.core.errors import AssetNotFound, PriceUnavailable
from taxlot_engine.core.utils import PRICE_PLACES, Number, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceQuote:
    """A unit price together with the time it was observed."""
    asset_id: int
    price: Decimal
    as_of: datetime


class MarketDataManager:
    """Manager for market data operations."""
    def __init__(self, session: Session):
        self.session = session

    def store_price(self, asset_id: int, price: Number, as_of: Optional[datetime] = None) -> MarketData:
        """Insert or overwrite the closing price for the day of ``as_of``."""
        as_of = as_of or datetime.now()
        price = to_decimal(price, PRICE_PLACES)
        existing = self.session.query(MarketData).filter(
            MarketData.asset_id == asset_id, MarketData.price_date == as_of.date()).first()
        if existing:
            existing.close_price = price
            existing.as_of = as_of
            row = existing
        else:
            row = MarketData(asset_id=asset_id, price_date=as_of.date(), close_price=price, as_of=as_of)
            self.session.add(row)
        self.session.commit()
        return row

    def get_latest_quote(self, asset_id: int) -> Optional[PriceQuote]:
        latest = self.session.query(MarketData).filter(
            MarketData.asset_id == asset_id).order_by(MarketData.price_date.desc()).first()
        if not latest:
            return None
        return PriceQuote(asset_id=asset_id, price=latest.close_price, as_of=latest.as_of)

    def get_price_history(self, asset_id: int, start_date: date, end_date: date) -> pd.DataFrame:
        """
        Return price history for an asset between dates as a DataFrame with columns: ['close'] indexed by date.
        """
        rows = (
            self.session.query(MarketData)
            .filter(
                MarketData.asset_id == asset_id,
                MarketData.price_date >= start_date,
                MarketData.price_date <= end_date,
            )
            .order_by(MarketData.price_date.asc())
            .all()
        )
        if not rows:
            return pd.DataFrame({"close": pd.Series(dtype="float64")})
        dates = [r.price_date for r in rows]
        closes = [float(r.close_price) for r in rows]
        df = pd.DataFrame({"close": closes}, index=pd.to_datetime(dates))
        df.index.name = "date"
        return df

    def download_and_store_price_data(self, ticker: str, start_date: Optional[date] = None,
                                      end_date: Optional[date] = None, period: str = "1y"):
        asset = self.session.query(Asset).filter(Asset.ticker == ticker.upper()).first()
        if not asset:
            raise AssetNotFound(f"Asset {ticker} not found")
        stock = yf.Ticker(ticker)
        if start_date and end_date:
            hist = stock.history(start=start_date, end=end_date)
        else:
            hist = stock.history(period=period)
        if hist.empty:
            logger.warning("No price history returned for %s", ticker)
            return []
        fetched_at = datetime.now()
        market_data_list = []
        for date_idx, row in hist.iterrows():
            if pd.isna(row["Close"]):
                continue
            existing = self.session.query(MarketData).filter(
                MarketData.asset_id == asset.asset_id,
                MarketData.price_date == date_idx.date()).first()
            if existing:
                existing.close_price = Decimal(str(row["Close"]))
                existing.as_of = fetched_at
                market_data_list.append(existing)
            else:
                market_data = MarketData(asset_id=asset.asset_id, price_date=date_idx.date(),
                                         close_price=Decimal(str(row["Close"])), as_of=fetched_at)
                self.session.add(market_data)
                market_data_list.append(market_data)
        self.session.commit()
        logger.info("Stored %d price rows for %s", len(market_data_list), ticker)
        return market_data_list


class DatabasePriceFeed:
    """Price feed reading the latest stored quote in its own short-lived session.

    Owning the session lets the scanner run a lookup on a worker thread under a
    timeout without sharing its own session across threads.
    """
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def get_quote(self, asset_id: int) -> PriceQuote:
        with self.session_factory() as session:
            quote = MarketDataManager(session).get_latest_quote(asset_id)
        if quote is None:
            raise PriceUnavailable(f"No price available for asset {asset_id}")
        return quote
