"""Command line entry points for the tax-lot harvesting engine."""
from __future__ import annotations

import argparse
import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

import uvicorn

from taxlot_engine.core.config import Config
from taxlot_engine.core.database import create_database_engine, get_session_factory, init_database
from taxlot_engine.core.owner_manager import OwnerManager
from taxlot_engine.data.asset_master import AssetMaster
from taxlot_engine.data.correlation_table import CorrelationTable
from taxlot_engine.data.market_data import MarketDataManager
from taxlot_engine.tax_harvesting import HarvestExecutor, scan_owners

LOGGER = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Represents the structured outcome of a CLI invocation."""

    status: int = 0
    details: Dict[str, Any] = field(default_factory=dict)


def parse_date(value: str) -> dt.date:
    try:
        return dt.datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD") from exc


def _session_factory(args: argparse.Namespace):
    engine = create_database_engine(args.database_url)
    return get_session_factory(engine)


def init_db_command(args: argparse.Namespace) -> CommandResult:
    engine = create_database_engine(args.database_url)
    init_database(engine)
    LOGGER.info("Created tables at %s", engine.url.render_as_string(hide_password=True))
    engine.dispose()
    return CommandResult(details={"database_url": args.database_url})


def scan_command(args: argparse.Namespace) -> CommandResult:
    session_factory = _session_factory(args)
    owner_ids: List[int] = args.owners or []
    if args.all_owners:
        with session_factory() as session:
            owner_ids = OwnerManager(session).get_all_owner_ids()
    if not owner_ids:
        LOGGER.warning("No owners to scan; pass --owner or --all")
        return CommandResult(status=1, details={"owners": 0})

    result = scan_owners(
        session_factory,
        owner_ids,
        min_loss_threshold=args.min_loss,
        max_workers=args.max_workers,
        sale_date=args.sale_date,
    )
    for owner_id, opportunities in sorted(result.opportunities.items()):
        for opp in opportunities:
            LOGGER.info("owner=%s asset=%s loss=%s net_benefit=%s proxy=%s",
                        owner_id, opp.asset_id, opp.total_potential_loss, opp.net_benefit, opp.proxy_asset_id)
    for owner_id, error in sorted(result.failures.items()):
        LOGGER.error("owner=%s scan failed: %s", owner_id, error)
    return CommandResult(
        status=1 if result.failures else 0,
        details={
            "owners": len(owner_ids),
            "opportunities": result.opportunity_count,
            "failures": result.failures,
        },
    )


def harvest_command(args: argparse.Namespace) -> CommandResult:
    session_factory = _session_factory(args)
    with session_factory() as session:
        record = HarvestExecutor.create(session, session_factory).execute_harvest(
            args.owner, args.asset, args.lot_ids)
        details = record.to_dict()
    if details["status"] != "executed":
        LOGGER.error("Harvest batch %s failed: %s", details["batch_id"], details["error"])
        return CommandResult(status=1, details=details)
    LOGGER.info("Harvest batch %s realized %.2f, estimated savings %.2f",
                details["batch_id"], details["total_loss_realized"], details["estimated_tax_savings"])
    return CommandResult(details=details)


def refresh_prices_command(args: argparse.Namespace) -> CommandResult:
    session_factory = _session_factory(args)
    stored: Dict[str, int] = {}
    failed: Dict[str, str] = {}
    with session_factory() as session:
        asset_master = AssetMaster(session)
        market_data_mgr = MarketDataManager(session)
        for ticker in args.tickers:
            asset_master.get_or_create_asset(ticker)
            try:
                rows = market_data_mgr.download_and_store_price_data(ticker, period=args.period)
            except Exception as exc:
                session.rollback()
                LOGGER.exception("Price refresh for %s failed", ticker)
                failed[ticker] = str(exc)
                continue
            stored[ticker.upper()] = len(rows)
    return CommandResult(status=1 if failed else 0, details={"stored": stored, "failed": failed})


def refresh_correlations_command(args: argparse.Namespace) -> CommandResult:
    session_factory = _session_factory(args)
    with session_factory() as session:
        asset_master = AssetMaster(session)
        base = asset_master.get_asset_by_ticker(args.base)
        candidates = [asset_master.get_asset_by_ticker(ticker) for ticker in args.candidates]
    missing = [ticker for ticker, asset in zip([args.base, *args.candidates], [base, *candidates]) if asset is None]
    if missing:
        LOGGER.error("Unknown ticker(s): %s", ", ".join(missing))
        return CommandResult(status=1, details={"missing": missing})

    end = args.end or dt.date.today()
    start = args.start or end - dt.timedelta(days=365)
    computed = CorrelationTable(session_factory).refresh_from_price_history(
        base.asset_id, [asset.asset_id for asset in candidates], start, end, min_observations=args.min_obs)
    return CommandResult(details={"base": base.ticker, "correlations": computed})


def serve_command(args: argparse.Namespace) -> CommandResult:
    uvicorn.run("taxlot_engine.api.main:app", host=args.host, port=args.port, reload=args.reload)
    return CommandResult()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tax-lot cost basis and harvesting engine")
    parser.add_argument(
        "--log-level",
        default=Config.LOG_LEVEL,
        help=f"Python logging level (default: {Config.LOG_LEVEL})",
    )
    parser.add_argument(
        "--database-url",
        default=Config.get_database_url(),
        help="SQLAlchemy database URL (default: from DATABASE_URL / USE_SQLITE)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_db = subparsers.add_parser("init-db", help="Create database tables")
    init_db.set_defaults(handler=init_db_command)

    scan = subparsers.add_parser("scan", help="Scan owners for harvesting opportunities")
    scan.add_argument("--owner", dest="owners", type=int, action="append", help="Owner id (repeatable)")
    scan.add_argument("--all", dest="all_owners", action="store_true", help="Scan every owner")
    scan.add_argument("--min-loss", type=float, default=None, help="Minimum aggregate loss per asset")
    scan.add_argument("--sale-date", type=parse_date, default=None, help="Prospective sale date (YYYY-MM-DD)")
    scan.add_argument("--max-workers", type=int, default=Config.SCAN_MAX_WORKERS, help="Owners scanned in parallel")
    scan.set_defaults(handler=scan_command)

    harvest = subparsers.add_parser("harvest", help="Harvest specific lots as one batch")
    harvest.add_argument("--owner", type=int, required=True, help="Owner id")
    harvest.add_argument("--asset", type=int, required=True, help="Asset id")
    harvest.add_argument("--lot", dest="lot_ids", type=int, action="append", required=True,
                         help="Lot id to harvest (repeatable)")
    harvest.set_defaults(handler=harvest_command)

    prices = subparsers.add_parser("refresh-prices", help="Download closing prices with yfinance")
    prices.add_argument("tickers", nargs="+", help="Ticker symbols")
    prices.add_argument("--period", default="1y", help="yfinance history period (default: 1y)")
    prices.set_defaults(handler=refresh_prices_command)

    correlations = subparsers.add_parser("refresh-correlations",
                                         help="Recompute proxy correlations from stored prices")
    correlations.add_argument("base", help="Base ticker")
    correlations.add_argument("candidates", nargs="+", help="Candidate proxy tickers")
    correlations.add_argument("--start", type=parse_date, default=None, help="Start date (default: end - 1y)")
    correlations.add_argument("--end", type=parse_date, default=None, help="End date (default: today)")
    correlations.add_argument("--min-obs", type=int, default=20, help="Minimum overlapping daily returns")
    correlations.set_defaults(handler=refresh_correlations_command)

    serve = subparsers.add_parser("serve", help="Run the REST API with uvicorn")
    serve.add_argument("--host", default=Config.API_HOST)
    serve.add_argument("--port", type=int, default=Config.API_PORT)
    serve.add_argument("--reload", action="store_true", default=Config.API_RELOAD)
    serve.set_defaults(handler=serve_command)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(message)s")
    result = args.handler(args)
    return getattr(result, "status", 0)


if __name__ == "__main__":
    raise SystemExit(main())
