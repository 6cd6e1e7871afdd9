"""
Read-only transaction history used for wash-sale evaluation.
"""
from datetime import datetime
from typing import Iterable
from sqlalchemy.orm import Session
from taxlot_engine.core.database import Transaction


class TransactionHistory:
    """Query acquisition events."""
    def __init__(self, session: Session):
        self.session = session

    def get_acquisitions(self, owner_id: int, asset_ids: Iterable[int],
                         start: datetime, end: datetime) -> list[Transaction]:
        """Buy events for any of ``asset_ids`` with start <= transaction_date <= end."""
        return self._events(owner_id, asset_ids, "buy", start, end)

    def _events(self, owner_id: int, asset_ids: Iterable[int], transaction_type: str,
                start: datetime, end: datetime) -> list[Transaction]:
        return (
            self.session.query(Transaction)
            .filter(
                Transaction.owner_id == owner_id,
                Transaction.asset_id.in_(list(asset_ids)),
                Transaction.transaction_type == transaction_type,
                Transaction.transaction_date >= start,
                Transaction.transaction_date <= end,
            )
            .order_by(Transaction.transaction_date)
            .all()
        )
