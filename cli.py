"""
Command line entry point.

    attio-hubspot-migrate migrate [SINCE] [--apply | --dry-run] [--fuzzy] [--transcripts] [--cutoff ISO]
    attio-hubspot-migrate cleanup-future [--apply | --dry-run]
    attio-hubspot-migrate preflight

Every command is a dry run unless --apply is given.
"""

import argparse
import logging
import os
import sys
from datetime import datetime, timedelta
from typing import List, Optional

from attio_client import AttioClient
from config import load_config
from fetchers import utc_now
from future_cleaner import FutureMeetingCleaner
from hubspot_client import HubSpotClient
from migration_engine import MigrationEngine
from payloads import parse_datetime
from snapshot_store import SnapshotStore

logger = logging.getLogger("attio_hubspot_migrate")


# --- Logging ---
def setup_logging(level: str = "INFO", log_dir: str = "logs"):
    """Console logging, plus a log file when the log directory can be created"""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    handlers = [logging.StreamHandler(sys.stdout)]
    try:
        if not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.append(logging.FileHandler(os.path.join(log_dir, "attio_hubspot_migration.log"),
                                            encoding="utf-8"))
    except OSError:
        pass  # console only

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format,
        handlers=handlers,
        force=True,
    )
    return logger


def parse_date_argument(value: Optional[str], default_days: int) -> datetime:
    """ISO-ish date from the command line, or ``default_days`` ago when omitted"""
    if not value:
        return utc_now() - timedelta(days=default_days)
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError(f"Invalid date: {value!r}")
    return parsed


def _add_mode_flags(parser: argparse.ArgumentParser):
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--apply", dest="apply", action="store_true", default=False,
                      help="Write changes to HubSpot")
    mode.add_argument("--dry-run", dest="apply", action="store_false",
                      help="Simulate only (default)")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="attio-hubspot-migrate",
                                     description="Migrate Attio meetings to HubSpot")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate = subparsers.add_parser("migrate", help="Create missing meetings and fix associations")
    migrate.add_argument("since", nargs="?", default=None,
                         help="Only meetings created on/after this date (default: lookback days ago)")
    migrate.add_argument("--fuzzy", action="store_true",
                         help="Fuzzy-match meetings that carry no Attio id by title and date")
    migrate.add_argument("--transcripts", action="store_true",
                         help="Append Attio call transcripts to meeting bodies")
    migrate.add_argument("--cutoff", default=None,
                         help="Ignore meetings scheduled after this instant (default: now)")
    _add_mode_flags(migrate)
    migrate.set_defaults(handler=cmd_migrate)

    cleanup = subparsers.add_parser("cleanup-future", help="Audit future-dated HubSpot meetings")
    _add_mode_flags(cleanup)
    cleanup.set_defaults(handler=cmd_cleanup_future)

    preflight = subparsers.add_parser("preflight", help="Check configuration and API connectivity")
    preflight.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    preflight.set_defaults(handler=cmd_preflight)

    return parser


# --- Commands ---
def cmd_migrate(args) -> int:
    cfg = load_config(args.config)
    since = parse_date_argument(args.since, cfg.migration["default_lookback_days"])
    cutoff = None
    if args.cutoff:
        cutoff = parse_datetime(args.cutoff)
        if cutoff is None:
            raise ValueError(f"Invalid cutoff: {args.cutoff!r}")

    attio = AttioClient(cfg.attio, cfg.retry)
    hub = HubSpotClient(cfg.hubspot, cfg.retry)
    store = SnapshotStore(cfg.migration["snapshot_dir"])
    engine = MigrationEngine(cfg, attio, hub, store)

    results = engine.run(cutoff=cutoff, since=since, dry_run=not args.apply,
                         fuzzy=True if args.fuzzy else None,
                         transcripts=True if args.transcripts else None)
    if not args.apply:
        logger.info("*** DRY RUN - re-run with --apply to write to HubSpot ***")
    logger.info(f"Snapshots in {store.run_dir}")
    logger.info(f"Summary: {results['summary']}")
    return 0


def cmd_cleanup_future(args) -> int:
    cfg = load_config(args.config)
    hub = HubSpotClient(cfg.hubspot, cfg.retry)
    store = SnapshotStore(cfg.migration["snapshot_dir"])
    cleaner = FutureMeetingCleaner(hub, store=store,
                                   request_delay=cfg.migration["request_delay_seconds"])
    outcome = cleaner.run(dry_run=not args.apply)
    return 1 if outcome["cleanup"]["failed"] else 0


def cmd_preflight(args) -> int:
    cfg = load_config(args.config)
    checks = [
        ("Attio", AttioClient(cfg.attio, cfg.retry)),
        ("HubSpot", HubSpotClient(cfg.hubspot, cfg.retry)),
    ]
    ok = True
    for name, client in checks:
        if client.test_connection():
            logger.info(f"✅ {name} connection OK")
        else:
            logger.error(f"❌ {name} connection failed")
            ok = False
    return 0 if ok else 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        return args.handler(args)
    except Exception as e:
        logger.error(f"❌ {args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
