"""
Main orchestration module for the Auracle market bot.

This module wires the pieces together and runs them:
1. Scrape the active and trending market lists
2. Reconcile list and detail snapshots against the ledger
3. Announce lifecycle transitions to Telegram
4. Persist the ledger

It also exposes the control commands (status, chat override, skip seeding,
manual tick) on the command line.
"""

import argparse
import logging
import signal
import sys
import time
from typing import Callable, Optional

from auracle_bot.config import Config
from auracle_bot.control import ledger_status, remote_command, set_target_chat, skip_seed, trigger_tick
from auracle_bot.engine import ReconciliationEngine, TickResult
from auracle_bot.health import create_app, serve_in_background
from auracle_bot.ledger import JsonLedger, Ledger
from auracle_bot.scanner import fetch_detail, fetch_lists
from auracle_bot.scheduler import Scheduler
from auracle_bot.telegram_notifier import TelegramNotifier


# Configure logging
def setup_logging() -> None:
    """Configure logging for the application."""
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_level = getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if Config.LOG_FILE:
        Config.ensure_directories()
        handlers.append(logging.FileHandler(Config.LOG_FILE))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers
    )

    # Quiet per-request noise from HTTP clients unless debugging
    if not Config.DEBUG:
        for name in ("httpx", "urllib3", "apscheduler.executors.default"):
            logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def build_engine(ledger: Ledger) -> ReconciliationEngine:
    """Create an engine using the live scanner and Telegram notifier."""
    return ReconciliationEngine(
        ledger=ledger,
        fetch_detail=fetch_detail,
        notify=TelegramNotifier().notify,
    )


def run_tick(engine: ReconciliationEngine) -> TickResult:
    """
    Execute one poll-and-reconcile cycle.

    Args:
        engine: Engine bound to the ledger

    Returns:
        TickResult of the cycle
    """
    lists = fetch_lists()
    return engine.run_tick(lists)


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the market bot.

    Supports:
    - Single run: Execute one tick and exit (default)
    - Scheduled: Tick at intervals and serve the liveness endpoint
    - Control commands: status, chat override, skip seeding

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(
        description="Auracle Market Bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run one tick
  python -m auracle_bot.main

  # Run continuously (every POLL_INTERVAL_SECONDS) with the health endpoint
  python -m auracle_bot.main --schedule

  # Show ledger counts
  python -m auracle_bot.main --status

  # Send announcements to another chat (handled by the running bot if there is one)
  python -m auracle_bot.main --set-chat -1001234567890
        """
    )
    parser.add_argument(
        "--schedule",
        action="store_true",
        help="Run in scheduled mode (continuous ticks at intervals)"
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between ticks (overrides POLL_INTERVAL_SECONDS config)"
    )
    parser.add_argument(
        "--no-http",
        action="store_true",
        help="Do not serve the liveness endpoint in scheduled mode"
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Print ledger summary and exit"
    )
    parser.add_argument(
        "--set-chat",
        metavar="CHAT_ID",
        default=None,
        help="Override the notification destination and exit"
    )
    parser.add_argument(
        "--skip-seed",
        action="store_true",
        help="Mark the ledger seeded without a silent first tick and exit"
    )

    args = parser.parse_args(argv)

    setup_logging()
    Config.ensure_directories()

    if args.status:
        return _run_control_command(
            "GET", "/status", None, lambda ledger: ledger_status(ledger, Config.TELEGRAM_CHAT_ID)
        )

    if args.set_chat is not None:
        return _run_control_command(
            "POST", "/chat", {"chat_id": args.set_chat}, lambda ledger: set_target_chat(ledger, args.set_chat)
        )

    if args.skip_seed:
        return _run_control_command("POST", "/skip-seed", None, skip_seed)

    if not args.schedule:
        # A running bot owns the ledger; ask it to tick instead of racing it
        reply = remote_command("POST", "/tick")
        if reply is not None:
            print(reply)
            return 0

    is_valid, errors = Config.validate()
    if not is_valid:
        for error in errors:
            logger.warning(f"Config: {error}")

    engine = build_engine(JsonLedger())

    if args.schedule:
        return _run_scheduled_mode(engine, args.interval, serve_http=not args.no_http)

    return _run_single_mode(engine)


def _run_control_command(
    method: str,
    path: str,
    payload: Optional[dict],
    local_command: Callable[[Ledger], str]
) -> int:
    """
    Run a control command in the running bot, or on the state file when no
    bot is running.

    Args:
        method: HTTP method of the control route
        path: Control route
        payload: JSON body for the route
        local_command: Same command applied to a ledger loaded from disk

    Returns:
        Exit code (always 0, the reply carries any failure)
    """
    reply = remote_command(method, path, payload, read_timeout=Config.HTTP_TIMEOUT)
    if reply is None:
        logger.info("No running bot found, applying command to the state file")
        reply = local_command(JsonLedger())

    print(reply)
    return 0


def _run_single_mode(engine: ReconciliationEngine) -> int:
    """
    Run one tick and exit.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    try:
        result = run_tick(engine)
        print(f"Watched {result.watched}, snapshots {result.snapshots}, "
              f"announcements {len(result.announcements)}, seeded_now {result.seeded_now}")
        return 0

    except KeyboardInterrupt:
        logger.info("Tick interrupted by user")
        return 130

    except Exception as e:
        logger.error(f"Fatal error in tick: {e}", exc_info=True)
        return 1


def _run_scheduled_mode(
    engine: ReconciliationEngine,
    interval_seconds: Optional[int] = None,
    serve_http: bool = True
) -> int:
    """
    Run in scheduled mode with continuous execution.

    Args:
        engine: Engine to tick
        interval_seconds: Seconds between ticks. If None, uses Config.POLL_INTERVAL_SECONDS
        serve_http: Whether to serve the liveness endpoint

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    logger.info("Starting in scheduled mode")

    scheduler = Scheduler(lambda: run_tick(engine))

    # Setup signal handlers for graceful shutdown
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        scheduler.stop(wait=True)
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if serve_http:
            def status() -> dict:
                return {"scheduler": scheduler.get_status(), "ledger": engine.ledger.summary()}

            serve_in_background(create_app(status, engine=engine, scheduler=scheduler))

        if not scheduler.start(interval_seconds=interval_seconds):
            logger.error("Failed to start scheduler")
            return 1

        # First tick right away instead of waiting a full interval
        logger.info(trigger_tick(scheduler.run_now))

        logger.info("Scheduler is running. Press Ctrl+C to stop.")
        try:
            while True:
                time.sleep(1)

        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
            scheduler.stop(wait=True)
            return 0

    except Exception as e:
        logger.error(f"Fatal error in scheduled mode: {e}", exc_info=True)
        scheduler.stop(wait=False)
        return 1


if __name__ == "__main__":
    sys.exit(main())
