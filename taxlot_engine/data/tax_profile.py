"""
Tax profile lookup.

Resolves the rates used for benefit estimates, falling back to conservative
configured defaults when an owner has no profile.
"""
from decimal import Decimal
from sqlalchemy.orm import Session
from taxlot_engine.core.config import Config
from taxlot_engine.core.database import Owner


class TaxProfileLookup:
    """Reads owner tax rates."""
    def __init__(self, session: Session):
        self.session = session

    def get_short_term_rate(self, owner_id: int) -> Decimal:
        owner = self.session.get(Owner, owner_id)
        if owner is None or owner.tax_rate_short_term is None:
            return Config.DEFAULT_SHORT_TERM_RATE
        return owner.tax_rate_short_term

    def get_long_term_rate(self, owner_id: int) -> Decimal:
        owner = self.session.get(Owner, owner_id)
        if owner is None or owner.tax_rate_long_term is None:
            return Config.DEFAULT_LONG_TERM_RATE
        return owner.tax_rate_long_term
