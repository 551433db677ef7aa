#!/usr/bin/env python3
"""
CLI interface for the deal-sourcing pipeline.

Commands:
  discover            - Discover recently incorporated companies
  enrich              - Enrich discovered companies (then qualify)
  qualify             - Score and qualify pending companies
  queue-outreach      - Queue outreach for qualified companies
  dispatch            - Send due outreach
  match               - Match companies to investors
  discover-investors  - Import investor firms from the member directory
  cleanup             - Delete old job runs
  full                - Discover, enrich, qualify, queue, dispatch, match
  schedule            - Run every stage on its schedule, forever
  import-investors    - Import investors from a JSON file
  stats               - Show pipeline statistics
  jobs                - Show recent job runs

Examples:
  python run_pipeline.py discover --days 30 --codes 62012,62020 --limit 10
  python run_pipeline.py qualify --policy tiered
  python run_pipeline.py full --output results.json
  python run_pipeline.py import-investors investors.json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from collectors.companies_house import (
    DEFAULT_LOOKBACK_DAYS,
    DEFAULT_SIC_CODES,
    ON_DEMAND_LIMIT,
    ON_DEMAND_PAGE_SIZE,
)
from scoring.company_score import POLICIES
from utils.job_guard import JobGuard
from workflows.investor_discovery import import_investor_records
from workflows.pipeline import DealPipeline, PipelineConfig, StageReport
from workflows.scheduler import run_forever


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(verbose: bool = False):
    """Configure logging for the pipeline"""
    level = logging.DEBUG if verbose else logging.INFO

    if sys.stdout.isatty():
        colors = {
            "DEBUG": "\033[36m",
            "INFO": "\033[32m",
            "WARNING": "\033[33m",
            "ERROR": "\033[31m",
            "CRITICAL": "\033[35m",
            "RESET": "\033[0m",
        }

        class ColoredFormatter(logging.Formatter):
            def format(self, record):
                levelname = record.levelname
                if levelname in colors:
                    record.levelname = f"{colors[levelname]}{levelname}{colors['RESET']}"
                return super().format(record)

        formatter = ColoredFormatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=[handler], force=True)

    # Reduce noise from some modules
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


# =============================================================================
# HELPERS
# =============================================================================

def _config(args) -> PipelineConfig:
    config = PipelineConfig.from_env()
    if args.db_path:
        config.db_path = args.db_path
    return config


def _print_report(report: StageReport):
    print(f"{report.stage.upper()}")
    print("-" * 70)
    if not report.users:
        print("  No users")
    for user_id, result in report.users.items():
        status = result.get("status", "unknown")
        print(f"  {user_id}: {status}")
        for key, value in result.items():
            if key in ("status", "errors") or value in (None, "", [], {}):
                continue
            print(f"    {key}: {value}")
        for error in result.get("errors") or []:
            print(f"    ! {error}")
    if report.duration_seconds is not None:
        print(f"  Duration: {report.duration_seconds:.2f}s")
    print()


def _save_output(args, reports: List[StageReport]):
    if not getattr(args, "output", None):
        return
    output_path = Path(args.output)
    payload = [r.to_dict() for r in reports]
    output_path.write_text(json.dumps(payload[0] if len(payload) == 1 else payload, indent=2, default=str))
    print(f"Results saved to: {output_path}")


async def _run_stage(args, title: str, stage) -> int:
    print("=" * 70)
    print(f"DEAL PIPELINE - {title}")
    print("=" * 70)
    print()

    async with DealPipeline(_config(args)) as pipeline:
        result = await stage(pipeline)

    reports = result if isinstance(result, list) else [result]
    for report in reports:
        _print_report(report)
    _save_output(args, reports)
    return 0


# =============================================================================
# COMMAND HANDLERS
# =============================================================================

async def cmd_discover(args) -> int:
    codes = [c.strip() for c in args.codes.split(",")] if args.codes else DEFAULT_SIC_CODES
    return await _run_stage(
        args,
        "DISCOVERY",
        lambda p: p.run_discovery(
            days=args.days, sic_codes=codes, limit=args.limit, page_size=ON_DEMAND_PAGE_SIZE
        ),
    )


async def cmd_enrich(args) -> int:
    return await _run_stage(args, "ENRICHMENT", lambda p: p.run_enrichment())


async def cmd_qualify(args) -> int:
    return await _run_stage(args, "QUALIFICATION", lambda p: p.run_qualification(args.policy))


async def cmd_queue_outreach(args) -> int:
    return await _run_stage(args, "OUTREACH QUEUE", lambda p: p.run_outreach_queue())


async def cmd_dispatch(args) -> int:
    return await _run_stage(args, "OUTREACH DISPATCH", lambda p: p.run_dispatch())


async def cmd_match(args) -> int:
    return await _run_stage(args, "MATCHING", lambda p: p.run_matching())


async def cmd_discover_investors(args) -> int:
    return await _run_stage(args, "INVESTOR DISCOVERY", lambda p: p.run_investor_discovery())


async def cmd_cleanup(args) -> int:
    return await _run_stage(args, "CLEANUP", lambda p: p.run_cleanup())


async def cmd_full(args) -> int:
    return await _run_stage(args, "FULL PIPELINE", lambda p: p.run_full())


async def cmd_schedule(args) -> int:
    async with DealPipeline(_config(args)) as pipeline:
        await run_forever(pipeline)
    return 0


async def cmd_import_investors(args) -> int:
    path = Path(args.file)
    if not path.exists():
        print(f"ERROR: file not found: {path}")
        return 1
    records = json.loads(path.read_text())
    if isinstance(records, dict):
        records = records.get("investors", [])

    config = _config(args)
    async with DealPipeline(config) as pipeline:
        counts = await import_investor_records(pipeline.store, config.user_id, records)

    print(f"Imported: {counts['imported']}")
    print(f"Skipped (already present): {counts['skipped']}")
    print(f"Invalid: {counts['invalid']}")
    return 0


async def cmd_stats(args) -> int:
    print("=" * 70)
    print("DEAL PIPELINE - STATISTICS")
    print("=" * 70)

    config = _config(args)
    async with DealPipeline(config) as pipeline:
        stats = await pipeline.store.pipeline_stats(config.user_id)

    print()
    print(f"Database: {config.db_path}")
    print(f"User: {config.user_id}")
    print()
    print("COMPANIES BY STAGE")
    print("-" * 70)
    for key, value in stats.items():
        print(f"  {key}: {value}")
    return 0


async def cmd_jobs(args) -> int:
    config = _config(args)
    async with DealPipeline(config) as pipeline:
        runs = await JobGuard(pipeline.store).recent(config.user_id, limit=args.limit)

    if not runs:
        print("No job runs recorded")
        return 0
    for run in runs:
        started = run.started_at.strftime("%Y-%m-%d %H:%M:%S") if run.started_at else "-"
        line = (
            f"{run.id:>5}  {run.job_type.value:<20} {run.status.value:<10} {started}  "
            f"{run.items_processed}/{run.items_total if run.items_total is not None else '?'}"
        )
        if run.error:
            line += f"  error: {run.error}"
        print(line)
    return 0


COMMANDS = {
    "discover": cmd_discover,
    "enrich": cmd_enrich,
    "qualify": cmd_qualify,
    "queue-outreach": cmd_queue_outreach,
    "dispatch": cmd_dispatch,
    "match": cmd_match,
    "discover-investors": cmd_discover_investors,
    "cleanup": cmd_cleanup,
    "full": cmd_full,
    "schedule": cmd_schedule,
    "import-investors": cmd_import_investors,
    "stats": cmd_stats,
    "jobs": cmd_jobs,
}


# =============================================================================
# CLI ARGUMENT PARSER
# =============================================================================

def create_parser() -> argparse.ArgumentParser:
    """Create argument parser"""

    parser = argparse.ArgumentParser(
        description="Deal-sourcing pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment variables:
  DEALFLOW_DB_PATH           - Path to SQLite database (default: dealflow.db)
  DEALFLOW_USER_ID           - User the CLI acts for (default: default_user)
  COMPANIES_HOUSE_API_KEY    - UK Companies House API key
  EXA_API_KEY                - Exa search API key
  RESEND_API_KEY             - Resend email API key
  EMAIL_FROM_ADDRESS         - Sender address for outreach
  EMAIL_FROM_NAME            - Sender name for outreach
  APOLLO_API_KEY             - Apollo people-match API key
  HUNTER_API_KEY             - Hunter email finder API key
  AUTO_OUTREACH_ENABLED      - Queue outreach automatically (default: true)
  SCORING_POLICY             - pipeline or tiered (default: pipeline)
        """,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--db-path",
        type=str,
        help="Path to SQLite database (overrides env var)",
    )

    stage = argparse.ArgumentParser(add_help=False, parents=[common])
    stage.add_argument(
        "--output",
        type=str,
        help="Save results to JSON file",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    discover_parser = subparsers.add_parser(
        "discover", parents=[stage], help="Discover recently incorporated companies"
    )
    discover_parser.add_argument(
        "--days", type=int, default=DEFAULT_LOOKBACK_DAYS, help="Incorporation lookback window"
    )
    discover_parser.add_argument(
        "--codes", type=str, help="Comma-separated SIC codes (default: tech, AI and fintech)"
    )
    discover_parser.add_argument(
        "--limit", type=int, default=ON_DEMAND_LIMIT, help="Maximum companies to store"
    )

    subparsers.add_parser("enrich", parents=[stage], help="Enrich discovered companies")

    qualify_parser = subparsers.add_parser("qualify", parents=[stage], help="Qualify pending companies")
    qualify_parser.add_argument(
        "--policy", choices=sorted(POLICIES), help="Scoring policy (default: user setting)"
    )

    subparsers.add_parser("queue-outreach", parents=[stage], help="Queue outreach for qualified companies")
    subparsers.add_parser("dispatch", parents=[stage], help="Send due outreach")
    subparsers.add_parser("match", parents=[stage], help="Match companies to investors")
    subparsers.add_parser("discover-investors", parents=[stage], help="Import investor firms from the directory")
    subparsers.add_parser("cleanup", parents=[stage], help="Delete old job runs")
    subparsers.add_parser("full", parents=[stage], help="Run every stage once")
    subparsers.add_parser("schedule", parents=[common], help="Run the scheduler forever")

    import_parser = subparsers.add_parser(
        "import-investors", parents=[common], help="Import investors from a JSON file"
    )
    import_parser.add_argument("file", type=str, help="JSON list of investor records")

    subparsers.add_parser("stats", parents=[common], help="Show pipeline statistics")

    jobs_parser = subparsers.add_parser("jobs", parents=[common], help="Show recent job runs")
    jobs_parser.add_argument("--limit", type=int, default=10, help="Number of runs to show")

    return parser


# =============================================================================
# MAIN
# =============================================================================

async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return await COMMANDS[args.command](args)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        return 130
    except Exception as e:
        logging.exception("Fatal error")
        print(f"\nFatal error: {e}")
        return 1


def cli():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
