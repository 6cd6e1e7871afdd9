"""
Owner and tax profile management.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Session
from taxlot_engine.core.database import Owner
from taxlot_engine.core.errors import OwnerNotFound, ValidationError

class OwnerManager:
    """Manager for owner operations."""
    def __init__(self, session: Session):
        self.session = session

    def create_owner(self, owner_name: str, tax_rate_short_term: Optional[Decimal] = None,
                     tax_rate_long_term: Optional[Decimal] = None) -> Owner:
        self._validate_rate(tax_rate_short_term)
        self._validate_rate(tax_rate_long_term)
        owner = Owner(owner_name=owner_name, tax_rate_short_term=tax_rate_short_term,
                      tax_rate_long_term=tax_rate_long_term)
        self.session.add(owner)
        self.session.commit()
        self.session.refresh(owner)
        return owner

    def get_owner(self, owner_id: int) -> Optional[Owner]:
        return self.session.query(Owner).filter(Owner.owner_id == owner_id).first()

    def get_all_owner_ids(self) -> list[int]:
        return [row[0] for row in self.session.query(Owner.owner_id).order_by(Owner.owner_id).all()]

    def update_tax_rates(self, owner_id: int, tax_rate_short_term: Optional[Decimal] = None,
                         tax_rate_long_term: Optional[Decimal] = None) -> Owner:
        owner = self.get_owner(owner_id)
        if not owner:
            raise OwnerNotFound(f"Owner {owner_id} not found")
        self._validate_rate(tax_rate_short_term)
        self._validate_rate(tax_rate_long_term)
        if tax_rate_short_term is not None:
            owner.tax_rate_short_term = tax_rate_short_term
        if tax_rate_long_term is not None:
            owner.tax_rate_long_term = tax_rate_long_term
        owner.updated_at = datetime.now()
        self.session.commit()
        self.session.refresh(owner)
        return owner

    @staticmethod
    def _validate_rate(rate: Optional[Decimal]) -> None:
        if rate is not None and not (Decimal("0") <= rate <= Decimal("1")):
            raise ValidationError(f"Tax rate must be between 0 and 1, got {rate}")
