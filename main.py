"""klinesync command line.

  python main.py ingest       [--start ISO] [--end ISO]
  python main.py report-gaps  [--start ISO] [--end ISO] [--reference open|close]
  python main.py fill-gaps    [--start ISO] [--end ISO]
  python main.py serve        [--host H] [--port P]

Series and storage come from KLINESYNC_* environment variables / .env and
can be overridden with --symbol, --interval and --database-url.
Exit status is 1 when a command fails or ingestion left unresolved
boundaries.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime

from klinesync.config import Settings, get_settings
from klinesync.data.epochs import to_epoch
from klinesync.data.pipeline import SyncPipeline
from klinesync.data.progress import ProgressReporter
from klinesync.exceptions import KlineSyncError
from klinesync.logging_setup import configure_logging

logger = logging.getLogger(__name__)


def _iso_epoch(value: str) -> int:
    try:
        return to_epoch(datetime.fromisoformat(value))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 datetime: {value!r}") from exc


def _load_settings(args: argparse.Namespace) -> Settings:
    overrides = {
        key: getattr(args, key)
        for key in ("symbol", "interval", "database_url")
        if getattr(args, key, None)
    }
    return Settings(**overrides) if overrides else get_settings()


# ── Commands ──────────────────────────────────────────────────────────────────

def cmd_ingest(pipeline: SyncPipeline, args: argparse.Namespace) -> int:
    result = asyncio.run(pipeline.ingest(args.start, args.end))
    print(
        f"{result.symbol}/{result.interval} {result.status}: "
        f"windows={result.windows_total} (failed {result.windows_failed})  "
        f"inserted={result.records_inserted}  backfilled={result.backfilled}  "
        f"record_failures={result.record_failures}  unresolved={len(result.unresolved)}"
    )
    return 0 if result.status == "complete" else 1


def cmd_report_gaps(pipeline: SyncPipeline, args: argparse.Namespace) -> int:
    gaps = pipeline.report_gaps(args.start, args.end, args.reference)
    for gap in gaps:
        print(gap.describe())
    print(f"{len(gaps)} gap(s) found")
    return 0


def cmd_fill_gaps(pipeline: SyncPipeline, args: argparse.Namespace) -> int:
    result = pipeline.fill_gaps(args.start, args.end)
    print(
        f"scanned={result.records_scanned}  gaps_filled={result.gaps_filled}  "
        f"synthesized={result.records_synthesized}"
    )
    return 0


def cmd_serve(settings: Settings, args: argparse.Namespace) -> int:
    import uvicorn

    from klinesync.app_factory import create_app

    host = args.host or settings.app_host
    port = args.port or settings.app_port
    logger.info("Starting %s on %s:%s", settings.app_name, host, port)
    uvicorn.run(create_app(settings), host=host, port=port, log_level=settings.log_level.lower())
    return 0


# ── Parser ────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="klinesync",
        description="Ingest, audit and repair a kline series",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--symbol", help="Series symbol, e.g. BTCUSDT")
    parser.add_argument("--interval", help="Series interval, e.g. 1m")
    parser.add_argument("--database-url", dest="database_url", help="SQLAlchemy database URL")

    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    def with_range(p: argparse.ArgumentParser) -> argparse.ArgumentParser:
        p.add_argument("--start", type=_iso_epoch, help="Range start (ISO-8601, UTC)")
        p.add_argument("--end", type=_iso_epoch, help="Range end (ISO-8601, UTC)")
        return p

    with_range(subparsers.add_parser("ingest", help="Fetch and store the configured range"))

    report = with_range(subparsers.add_parser("report-gaps", help="List gaps in the stored series"))
    report.add_argument("--reference", choices=("open", "close"), default="open")

    with_range(subparsers.add_parser("fill-gaps", help="Interpolate every gap in the stored series"))

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)

    return parser


_COMMANDS = {
    "ingest":      cmd_ingest,
    "report-gaps": cmd_report_gaps,
    "fill-gaps":   cmd_fill_gaps,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = _load_settings(args)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1
    configure_logging(settings.log_level)

    if args.command == "serve":
        return cmd_serve(settings, args)

    pipeline = SyncPipeline.from_settings(settings, progress=ProgressReporter())
    try:
        pipeline.initialize()
        return _COMMANDS[args.command](pipeline, args)
    except KlineSyncError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
