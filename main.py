# main.py

"""Entry point for the rentwatch price tracker (headless CLI)."""

import argparse
import asyncio
import logging
import sys

from rentwatch.config.logging_config import setup_logging
from rentwatch.config.settings import Settings

logger = logging.getLogger("rentwatch.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    valid_ids = ", ".join(s["id"] for s in Settings.AVAILABLE_SOURCES)

    parser = argparse.ArgumentParser(
        prog="rentwatch",
        description="Rental floor-plan price tracker.",
        epilog=f"Available sources: {valid_ids}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Scrape all sources and ingest prices now.")
    run.add_argument(
        "-s", "--sources", default=None,
        help="Comma-separated source IDs (default: all).",
    )
    run.add_argument(
        "-w", "--wings", default=None,
        help="Comma-separated wing letters to keep (default: all).",
    )
    run.add_argument(
        "--json", action="store_true", default=False, dest="as_json",
        help="Print the run summary as JSON.",
    )

    avail = sub.add_parser(
        "availability", help="Show units available now or within 30 days.",
    )
    avail.add_argument(
        "-w", "--wings", default=None,
        help="Comma-separated wing letters to keep (default: all).",
    )
    avail.add_argument(
        "--cached", action="store_true", default=False,
        help="Show the last cached result instead of scraping.",
    )
    avail.add_argument(
        "--json", action="store_true", default=False, dest="as_json",
        help="Print the result as JSON.",
    )

    sub.add_parser("alerts", help="List active alerts.")

    dismiss = sub.add_parser("dismiss", help="Dismiss an alert.")
    dismiss.add_argument("alert_id", type=int)

    threshold = sub.add_parser(
        "threshold", help="Show or set the price-drop alert threshold.",
    )
    threshold.add_argument(
        "kind", nargs="?", default=None, help="dollar or percentage",
    )
    threshold.add_argument("value", nargs="?", default=None)

    history = sub.add_parser("history", help="Daily price series of a unit.")
    history.add_argument("unit_id", type=int)
    history.add_argument("-n", "--limit", type=int, default=None)

    prices = sub.add_parser("prices", help="Latest price of every unit.")
    prices.add_argument(
        "--json", action="store_true", default=False, dest="as_json",
        help="Print the prices as JSON.",
    )

    sub.add_parser("status", help="Last/next run and store statistics.")
    sub.add_parser("health", help="Connectivity check on all sources.")
    return parser


def dispatch(args: argparse.Namespace) -> int:
    """Run the selected subcommand and return its exit code."""
    from rentwatch.cli import runner

    if args.command == "run":
        return asyncio.run(
            runner.cli_run(args.sources, args.wings, args.as_json)
        )
    if args.command == "availability":
        return asyncio.run(
            runner.cli_availability(args.wings, args.cached, args.as_json)
        )
    if args.command == "alerts":
        return runner.run_alerts()
    if args.command == "dismiss":
        return runner.run_dismiss(args.alert_id)
    if args.command == "threshold":
        return runner.run_threshold(args.kind, args.value)
    if args.command == "history":
        return runner.run_history(args.unit_id, args.limit)
    if args.command == "prices":
        return runner.run_prices(args.as_json)
    if args.command == "status":
        return runner.run_status()
    if args.command == "health":
        return asyncio.run(runner.run_health_check())
    return 1


def main() -> None:
    """Parse arguments and run the requested command."""
    log_file = setup_logging()
    logger.info("rentwatch starting, log file: %s", log_file)

    parser = _build_parser()
    args = parser.parse_args()

    try:
        exit_code = dispatch(args)
    except Exception:
        logger.critical("Fatal error in %s", args.command, exc_info=True)
        raise
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
