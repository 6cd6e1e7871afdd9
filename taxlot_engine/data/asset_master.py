"""
Asset master data management.
"""
from typing import Optional
from sqlalchemy.orm import Session
from taxlot_engine.core.database import Asset

class AssetMaster:
    """Manager for asset master data operations."""
    def __init__(self, session: Session):
        self.session = session

    def get_or_create_asset(self, ticker: str, asset_name: Optional[str] = None,
                            asset_type: str = "stock", identity_group: Optional[str] = None) -> Asset:
        asset = self.session.query(Asset).filter(Asset.ticker == ticker.upper()).first()
        if asset:
            if asset_name:
                asset.asset_name = asset_name
            if identity_group and not asset.identity_group:
                asset.identity_group = identity_group
            self.session.commit()
            self.session.refresh(asset)
            return asset
        asset = Asset(ticker=ticker.upper(), asset_name=asset_name, asset_type=asset_type,
                      identity_group=identity_group)
        self.session.add(asset)
        self.session.commit()
        self.session.refresh(asset)
        return asset

    def get_asset_by_ticker(self, ticker: str) -> Optional[Asset]:
        return self.session.query(Asset).filter(Asset.ticker == ticker.upper()).first()

    def get_asset_by_id(self, asset_id: int) -> Optional[Asset]:
        return self.session.query(Asset).filter(Asset.asset_id == asset_id).first()

    def list_assets(self) -> list[Asset]:
        return self.session.query(Asset).order_by(Asset.ticker).all()

    def get_identical_asset_ids(self, asset_id: int) -> list[int]:
        """Assets substantially identical to ``asset_id`` (same identity group), itself included."""
        asset = self.get_asset_by_id(asset_id)
        if not asset or not asset.identity_group:
            return [asset_id]
        rows = self.session.query(Asset.asset_id).filter(Asset.identity_group == asset.identity_group).all()
        return sorted(row[0] for row in rows)
