"""
Shared fixtures: a fresh temporary SQLite database per test.
"""
import os
import sys
import tempfile
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from taxlot_engine.core.database import create_database_engine, get_session_factory, init_database
from taxlot_engine.core.lot_ledger import LotLedger
from taxlot_engine.core.owner_manager import OwnerManager
from taxlot_engine.data.asset_master import AssetMaster
from taxlot_engine.data.market_data import MarketDataManager


@pytest.fixture(scope="function")
def database_url():
    """Temporary SQLite database file with all tables created."""
    temp_db = tempfile.NamedTemporaryFile(delete=False, suffix=".db")
    temp_db.close()

    db_url = f"sqlite:///{temp_db.name}"
    engine = create_database_engine(db_url, echo=False)
    init_database(engine)
    engine.dispose()

    yield db_url

    # Cleanup
    os.unlink(temp_db.name)


@pytest.fixture(scope="function")
def session_factory(database_url):
    engine = create_database_engine(database_url, echo=False)
    yield get_session_factory(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Create a fresh database session for each test."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def owner(db_session):
    return OwnerManager(db_session).create_owner(
        owner_name="Test Owner",
        tax_rate_short_term=Decimal("0.35"),
        tax_rate_long_term=Decimal("0.15"),
    )


@pytest.fixture
def assets(db_session):
    """VTI and ITOT share an identity group; SPY and QQQ stand alone."""
    asset_master = AssetMaster(db_session)
    test_data = [
        {"ticker": "VTI", "asset_name": "Vanguard Total Stock Market ETF", "identity_group": "us-total-market"},
        {"ticker": "ITOT", "asset_name": "iShares Core S&P Total U.S. Stock Market ETF",
         "identity_group": "us-total-market"},
        {"ticker": "SPY", "asset_name": "SPDR S&P 500 ETF"},
        {"ticker": "QQQ", "asset_name": "Invesco QQQ Trust"},
    ]
    return {data["ticker"]: asset_master.get_or_create_asset(asset_type="etf", **data) for data in test_data}


@pytest.fixture
def ledger(db_session):
    return LotLedger(db_session)


@pytest.fixture
def set_price(db_session):
    """Store the current price of an asset."""
    market_data_mgr = MarketDataManager(db_session)

    def _set_price(asset, price):
        return market_data_mgr.store_price(asset.asset_id, Decimal(str(price)))

    return _set_price


@pytest.fixture
def days_ago():
    """Timestamp helper; lots older than the wash sale window keep scans clean."""

    def _days_ago(days: int) -> datetime:
        return datetime.now() - timedelta(days=days)

    return _days_ago
