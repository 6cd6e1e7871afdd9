"""
Tax-loss harvesting opportunity scanner.

Scans every asset an owner holds, aggregates the unrealized losses of its open
lots, filters out wash sale risk and unprofitable harvests, attaches a proxy
recommendation and upserts one pending HarvestOpportunity per (owner, asset).
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from taxlot_engine.core.config import Config
from taxlot_engine.core.database import (
    OPPORTUNITY_DISMISSED,
    OPPORTUNITY_PENDING,
    Asset,
    HarvestOpportunity,
    Owner,
)
from taxlot_engine.core.errors import (
    OpportunityNotFound,
    OwnerNotFound,
    ValidationError,
)
from taxlot_engine.core.locks import opportunity_locks
from taxlot_engine.core.lot_ledger import LotLedger
from taxlot_engine.core.lot_selector import LotSelectionMethod
from taxlot_engine.core.timeouts import call_with_timeout
from taxlot_engine.core.utils import Number, to_decimal
from taxlot_engine.data.correlation_table import CorrelationTable
from taxlot_engine.data.market_data import DatabasePriceFeed
from taxlot_engine.data.tax_profile import TaxProfileLookup
from taxlot_engine.tax_harvesting.net_benefit import NetBenefit, NetBenefitCalculator
from taxlot_engine.tax_harvesting.proxy_finder import CorrelationProxyFinder, ProxyAsset
from taxlot_engine.tax_harvesting.wash_sale import WashSaleGuard

logger = logging.getLogger(__name__)


class OpportunityScanner:
    """Finds and records tax-loss harvesting opportunities for one owner at a time.

    Holds only references to its collaborators; build one per call context.
    """

    def __init__(
        self,
        session: Session,
        price_feed,
        correlation_table: CorrelationTable,
        tax_profile: Optional[TaxProfileLookup] = None,
        wash_sale_guard: Optional[WashSaleGuard] = None,
        net_benefit_calculator: Optional[NetBenefitCalculator] = None,
        slippage_rate: Optional[Number] = None,
        timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize OpportunityScanner.

        Args:
            session: SQLAlchemy database session used for lots and opportunities
            price_feed: Object exposing ``get_quote(asset_id)``
            correlation_table: Ranked substitute source
            tax_profile: Owner tax rate lookup
            wash_sale_guard: Wash sale eligibility filter
            net_benefit_calculator: Benefit estimator
            slippage_rate: Expected slippage (defaults to config value)
            timeout_seconds: Bound on each price or correlation read
        """
        self.session = session
        self.price_feed = price_feed
        self.proxy_finder = CorrelationProxyFinder(correlation_table)
        self.tax_profile = tax_profile or TaxProfileLookup(session)
        self.wash_sale_guard = wash_sale_guard or WashSaleGuard(session)
        self.net_benefit_calculator = net_benefit_calculator or NetBenefitCalculator()
        self.slippage_rate = to_decimal(Config.DEFAULT_SLIPPAGE_RATE if slippage_rate is None else slippage_rate)
        self.timeout_seconds = Config.COLLABORATOR_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self.ledger = LotLedger(session)

    @classmethod
    def create(cls, session: Session, session_factory, **kwargs) -> "OpportunityScanner":
        """Scanner wired to the database-backed collaborators."""
        return cls(
            session,
            price_feed=DatabasePriceFeed(session_factory),
            correlation_table=CorrelationTable(session_factory),
            **kwargs,
        )

    def scan_for_opportunities(
        self,
        owner_id: int,
        min_loss_threshold: Optional[Number] = None,
        sale_date: Optional[date] = None,
    ) -> list[HarvestOpportunity]:
        """
        Scan an owner's holdings and upsert pending opportunities.

        An asset whose evaluation fails (price missing, collaborator timeout,
        storage error) is logged and skipped; the rest of the scan continues.

        Args:
            owner_id: Owner ID
            min_loss_threshold: Minimum aggregate loss per asset (defaults to config value)
            sale_date: Prospective sale date for the wash sale check (defaults to today)

        Returns:
            Opportunities detected in this pass, highest net benefit first
        """
        if self.session.get(Owner, owner_id) is None:
            raise OwnerNotFound(f"Owner {owner_id} not found")
        threshold = to_decimal(Config.MIN_TAX_LOSS_THRESHOLD if min_loss_threshold is None else min_loss_threshold)
        if threshold < 0:
            raise ValidationError(f"Minimum loss threshold must be non-negative, got {threshold}")
        sale_date = sale_date or date.today()
        short_term_rate = self.tax_profile.get_short_term_rate(owner_id)

        opportunities = []
        failed = 0
        for asset_id in self.ledger.held_asset_ids(owner_id):
            try:
                opportunity = self._evaluate_asset(owner_id, asset_id, threshold, sale_date, short_term_rate)
            except Exception:
                self.session.rollback()
                failed += 1
                logger.exception("Evaluation of asset %s for owner %s failed, skipping", asset_id, owner_id)
                continue
            if opportunity is not None:
                opportunities.append(opportunity)

        opportunities.sort(key=lambda opp: opp.net_benefit, reverse=True)
        logger.info("Scan for owner %s found %d opportunit(ies), %d asset(s) failed",
                    owner_id, len(opportunities), failed)
        return opportunities

    def list_opportunities(self, owner_id: int, status: Optional[str] = None) -> list[HarvestOpportunity]:
        query = self.session.query(HarvestOpportunity).filter(HarvestOpportunity.owner_id == owner_id)
        if status:
            query = query.filter(HarvestOpportunity.status == status)
        return query.order_by(HarvestOpportunity.net_benefit.desc(), HarvestOpportunity.opportunity_id).all()

    def dismiss_opportunity(self, opportunity_id: int) -> HarvestOpportunity:
        """Move a pending opportunity to dismissed."""
        opportunity = self.session.get(HarvestOpportunity, opportunity_id)
        if opportunity is None:
            raise OpportunityNotFound(f"Opportunity {opportunity_id} not found")
        if opportunity.status != OPPORTUNITY_PENDING:
            raise ValidationError(
                f"Opportunity {opportunity_id} is {opportunity.status}; only pending opportunities can be dismissed")
        opportunity.status = OPPORTUNITY_DISMISSED
        self.session.commit()
        logger.info("Dismissed opportunity %s", opportunity_id)
        return opportunity

    def _evaluate_asset(self, owner_id: int, asset_id: int, threshold: Decimal, sale_date: date,
                        short_term_rate: Decimal) -> Optional[HarvestOpportunity]:
        # Risk anywhere in the window excludes the whole asset for this pass
        if self.wash_sale_guard.check_wash_sale_risk(owner_id, asset_id, sale_date):
            logger.info("Skipping asset %s for owner %s: wash sale risk", asset_id, owner_id)
            return None

        quote = call_with_timeout(self.price_feed.get_quote, asset_id, timeout=self.timeout_seconds)

        total_loss = Decimal("0")
        eligible_lots = 0
        for lot in self.ledger.lots_ordered_by(owner_id, asset_id, LotSelectionMethod.HIFO):
            unrealized = self.ledger.unrealized_gain_loss(lot.lot_id, quote.price)
            if unrealized.gain_loss < 0:
                total_loss -= unrealized.gain_loss
                eligible_lots += 1

        if eligible_lots == 0 or total_loss < threshold:
            logger.debug("Asset %s for owner %s below threshold: loss %s < %s",
                         asset_id, owner_id, total_loss, threshold)
            return None

        benefit = self.net_benefit_calculator.calculate_net_benefit(total_loss, self.slippage_rate, short_term_rate)
        if not benefit.is_worthwhile:
            logger.info("Skipping asset %s for owner %s: net benefit %s not worthwhile",
                        asset_id, owner_id, benefit.net_benefit)
            return None

        asset = self.session.get(Asset, asset_id)
        identity_group = asset.identity_group if asset else None
        proxy = call_with_timeout(self.proxy_finder.find_proxy_asset, asset_id, identity_group,
                                  timeout=self.timeout_seconds)
        if proxy is None:
            logger.info("No proxy available for asset %s", asset_id)

        return self._upsert_opportunity(owner_id, asset_id, eligible_lots, benefit, proxy)

    def _upsert_opportunity(self, owner_id: int, asset_id: int, eligible_lots: int, benefit: NetBenefit,
                            proxy: Optional[ProxyAsset]) -> HarvestOpportunity:
        values = {
            "total_potential_loss": benefit.loss_amount,
            "eligible_lot_count": eligible_lots,
            "estimated_tax_savings": benefit.tax_savings,
            "total_costs": benefit.total_costs,
            "net_benefit": benefit.net_benefit,
            "proxy_asset_id": proxy.asset_id if proxy else None,
            "proxy_correlation": proxy.correlation if proxy else None,
            "last_detected_at": datetime.now(),
        }

        with opportunity_locks.hold((owner_id, asset_id)):
            opportunity = self._pending_opportunity(owner_id, asset_id)
            if opportunity is None:
                opportunity = HarvestOpportunity(owner_id=owner_id, asset_id=asset_id,
                                                 status=OPPORTUNITY_PENDING, **values)
                self.session.add(opportunity)
                try:
                    self.session.commit()
                    logger.info("Recorded opportunity for owner %s, asset %s: loss %s, net benefit %s",
                                owner_id, asset_id, benefit.loss_amount, benefit.net_benefit)
                    return opportunity
                except IntegrityError:
                    # Another process inserted the pending row first
                    self.session.rollback()
                    opportunity = self._pending_opportunity(owner_id, asset_id)
                    if opportunity is None:
                        raise

            for key, value in values.items():
                setattr(opportunity, key, value)
            self.session.commit()
            logger.info("Refreshed opportunity %s for owner %s, asset %s",
                        opportunity.opportunity_id, owner_id, asset_id)
            return opportunity

    def _pending_opportunity(self, owner_id: int, asset_id: int) -> Optional[HarvestOpportunity]:
        return (
            self.session.query(HarvestOpportunity)
            .filter(
                HarvestOpportunity.owner_id == owner_id,
                HarvestOpportunity.asset_id == asset_id,
                HarvestOpportunity.status == OPPORTUNITY_PENDING,
            )
            .one_or_none()
        )
