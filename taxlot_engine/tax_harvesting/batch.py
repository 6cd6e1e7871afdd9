"""
Batch scan runner.

Scans many owners in parallel threads. Each owner gets its own session and a
fresh scanner so no mutable state is shared between owners; one owner's
failure is recorded and never aborts the others.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from taxlot_engine.core.config import Config
from taxlot_engine.core.database import HarvestOpportunity
from taxlot_engine.core.utils import Number
from taxlot_engine.tax_harvesting.opportunity_scanner import OpportunityScanner

logger = logging.getLogger(__name__)


@dataclass
class BatchScanResult:
    opportunities: dict[int, list[HarvestOpportunity]] = field(default_factory=dict)
    failures: dict[int, str] = field(default_factory=dict)

    @property
    def opportunity_count(self) -> int:
        return sum(len(found) for found in self.opportunities.values())


def scan_owners(
    session_factory,
    owner_ids: Iterable[int],
    min_loss_threshold: Optional[Number] = None,
    max_workers: Optional[int] = None,
    sale_date: Optional[date] = None,
) -> BatchScanResult:
    """
    Scan every owner in ``owner_ids``.

    Args:
        session_factory: SQLAlchemy sessionmaker
        owner_ids: Owners to scan
        min_loss_threshold: Per-asset loss threshold passed to each scan
        max_workers: Thread count (defaults to SCAN_MAX_WORKERS)
        sale_date: Prospective sale date for wash sale checks

    Returns:
        BatchScanResult keyed by owner id
    """
    result = BatchScanResult()
    owner_ids = list(owner_ids)
    if not owner_ids:
        return result

    with ThreadPoolExecutor(max_workers=max_workers or Config.SCAN_MAX_WORKERS,
                            thread_name_prefix="owner-scan") as pool:
        futures = {
            pool.submit(_scan_owner, session_factory, owner_id, min_loss_threshold, sale_date): owner_id
            for owner_id in owner_ids
        }
        for future in as_completed(futures):
            owner_id = futures[future]
            try:
                result.opportunities[owner_id] = future.result()
            except Exception as exc:
                logger.exception("Scan for owner %s failed", owner_id)
                result.failures[owner_id] = f"{type(exc).__name__}: {exc}"

    logger.info("Batch scan of %d owner(s): %d opportunit(ies), %d failure(s)",
                len(owner_ids), result.opportunity_count, len(result.failures))
    return result


def _scan_owner(session_factory, owner_id: int, min_loss_threshold, sale_date) -> list[HarvestOpportunity]:
    with session_factory() as session:
        scanner = OpportunityScanner.create(session, session_factory)
        return scanner.scan_for_opportunities(owner_id, min_loss_threshold, sale_date)
