"""
Exception taxonomy for the tax-lot engine.

Validation faults and not-found faults are kept apart so callers can tell a bad
request from a stale reference. Eligibility exclusions (wash-sale risk, small
losses, unprofitable harvests) are normal scan outcomes and never raise.
"""


class TaxLotEngineError(Exception):
    """Base class for all engine errors."""


# Validation faults
class ValidationError(TaxLotEngineError, ValueError):
    """Input rejected before any state change."""


class InvalidQuantity(ValidationError):
    """Quantity must be strictly positive."""


class InvalidPrice(ValidationError):
    """Price must be non-negative."""


class InsufficientOpenQuantity(ValidationError):
    """Close request exceeds the open quantity for an (owner, asset) pair."""

    def __init__(self, owner_id: int, asset_id: int, requested, available):
        self.owner_id = owner_id
        self.asset_id = asset_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient open quantity for owner {owner_id}, asset {asset_id}: "
            f"requested {requested}, available {available}"
        )


class UnsupportedLotMethod(ValidationError):
    """Unknown lot selection method or missing lot ids for specific identification."""


# Not-found faults
class NotFoundError(TaxLotEngineError, LookupError):
    """Referenced entity does not exist."""


class LotNotFound(NotFoundError):
    """Lot id does not resolve to an open lot."""

    def __init__(self, lot_id: int, detail: str = "not found"):
        self.lot_id = lot_id
        super().__init__(f"Tax lot {lot_id} {detail}")


class OwnerNotFound(NotFoundError):
    """Owner id does not resolve."""


class AssetNotFound(NotFoundError):
    """Asset id or ticker does not resolve."""


class OpportunityNotFound(NotFoundError):
    """Opportunity id does not resolve."""


class PriceUnavailable(NotFoundError):
    """No current price is available for an asset."""


# Transactional faults
class TransactionalError(TaxLotEngineError):
    """Operation rolled back because lot state changed underneath it."""


class LotStateConflict(TransactionalError):
    """Lot cannot transition (already closed/harvested, or wrong owner/asset)."""

    def __init__(self, lot_id: int, detail: str):
        self.lot_id = lot_id
        super().__init__(f"Tax lot {lot_id} cannot be harvested: {detail}")


class CollaboratorTimeout(TaxLotEngineError, TimeoutError):
    """A collaborator read exceeded its bounded timeout."""
