"""
Lot selection ordering.

Pure functions that decide which open lots are consumed first on a disposal.
"""
import enum
from typing import Iterable, Optional, Sequence

from taxlot_engine.core.database import LOT_OPEN, TaxLot
from taxlot_engine.core.errors import LotNotFound, UnsupportedLotMethod


class LotSelectionMethod(str, enum.Enum):
    """Accounting method governing which lots are deemed sold."""
    HIFO = "HIFO"
    FIFO = "FIFO"
    SPECIFIC_ID = "SPECIFIC_ID"

    @classmethod
    def parse(cls, value) -> "LotSelectionMethod":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError as exc:
            raise UnsupportedLotMethod(f"Unsupported lot selection method '{value}'") from exc


def order_lots(
    lots: Iterable[TaxLot],
    method: LotSelectionMethod,
    lot_ids: Optional[Sequence[int]] = None,
) -> list[TaxLot]:
    """
    Order open lots of a single (owner, asset) pair for consumption.

    Args:
        lots: Open lots of the pair
        method: Lot selection method
        lot_ids: Explicit lot ids, required for SPECIFIC_ID

    Returns:
        Lots in consumption order

    Raises:
        LotNotFound: A requested lot id is not an open lot of the pair
        UnsupportedLotMethod: SPECIFIC_ID without lot ids
    """
    method = LotSelectionMethod.parse(method)
    lots = list(lots)

    if method == LotSelectionMethod.HIFO:
        # Highest basis first; among equal prices the oldest lot goes first
        return sorted(lots, key=lambda lot: (-lot.unit_price, lot.acquired_at, lot.lot_id))

    if method == LotSelectionMethod.FIFO:
        return sorted(lots, key=lambda lot: (lot.acquired_at, lot.lot_id))

    if not lot_ids:
        raise UnsupportedLotMethod("Specific identification requires at least one lot id")
    return _select_specific_lots(lots, lot_ids)


def _select_specific_lots(lots: list[TaxLot], lot_ids: Sequence[int]) -> list[TaxLot]:
    """Validate explicit lot ids against the pair's open lots, keeping caller order."""
    lot_map = {lot.lot_id: lot for lot in lots}
    selected = []
    seen = set()
    for lot_id in lot_ids:
        if lot_id in seen:
            continue
        lot = lot_map.get(lot_id)
        if lot is None or lot.status != LOT_OPEN:
            raise LotNotFound(lot_id, "is not an open lot for this owner and asset")
        selected.append(lot)
        seen.add(lot_id)
    return selected
