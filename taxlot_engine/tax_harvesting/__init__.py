"""
Tax-loss harvesting engine.

This module provides the harvesting workflow built on the lot ledger:
- Wash sale guard
- Correlation proxy identification
- Net benefit calculation
- Opportunity scanning (single owner and batch)
- Harvest execution
"""
from taxlot_engine.tax_harvesting.batch import BatchScanResult, scan_owners
from taxlot_engine.tax_harvesting.harvest_executor import HarvestExecutor
from taxlot_engine.tax_harvesting.net_benefit import NetBenefit, NetBenefitCalculator
from taxlot_engine.tax_harvesting.opportunity_scanner import OpportunityScanner
from taxlot_engine.tax_harvesting.proxy_finder import CorrelationProxyFinder, ProxyAsset
from taxlot_engine.tax_harvesting.wash_sale import PostHarvestViolation, WashSaleGuard

__all__ = [
    "WashSaleGuard",
    "PostHarvestViolation",
    "CorrelationProxyFinder",
    "ProxyAsset",
    "NetBenefitCalculator",
    "NetBenefit",
    "OpportunityScanner",
    "HarvestExecutor",
    "BatchScanResult",
    "scan_owners",
]
