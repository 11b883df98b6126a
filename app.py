#!/usr/bin/env python3
"""
CryptoPricer - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
Compare prices across Spot, DEX and Best feeds, inspect price
history, manage price alerts and run the alert monitor.

============================================================
USAGE
============================================================
    python app.py --mode prices --symbol eth
    python app.py --mode history --symbol btc --days 30
    python app.py --mode alert --symbol eth --source Spot --direction above --target 2500
    python app.py --mode alerts
    python app.py --mode remove --alert-id 1730000000000
    python app.py --mode monitor
    python app.py --mode monitor --single-cycle
    python app.py --mode prices --symbol btc --json

Environment-based configuration (.env supported), see core/config.py.

============================================================
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from decimal import Decimal
from typing import List, Optional

from alerts.exceptions import DuplicateAlertError, ValidationRejectedError
from core.config import AppConfig
from core.log_setup import setup_logging
from core.runtime import Services, build_services
from price_sources.models import SUPPORTED_PERIODS, PriceBoard, PriceSource
from price_sources.selector import is_best, select_best


MODES = ("prices", "history", "alert", "alerts", "remove", "monitor")


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="cryptopricer",
        description="Crypto price comparison and alert monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Modes:
  prices   - Compare Spot, DEX and Best prices for a symbol
  history  - Show the price trend over 1, 7, 30 or 90 days
  alert    - Create a price alert against the current price
  alerts   - List active alerts
  remove   - Remove an alert by id
  monitor  - Evaluate alerts on a schedule
        """
    )

    parser.add_argument(
        "--mode", "-m",
        type=str,
        choices=MODES,
        default="prices",
        help="Runtime mode (default: prices)",
    )

    parser.add_argument("--symbol", "-s", type=str, default="eth", help="Asset symbol (default: eth)")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print prices and single-cycle results as JSON",
    )

    # --------------------------------------------------------
    # History Options
    # --------------------------------------------------------
    parser.add_argument(
        "--days",
        type=int,
        default=7,
        choices=SUPPORTED_PERIODS,
        help="History period in days (default: 7)",
    )

    # --------------------------------------------------------
    # Alert Options
    # --------------------------------------------------------
    alert_group = parser.add_argument_group("Alert Options")

    alert_group.add_argument(
        "--source",
        type=str,
        default=PriceSource.SPOT.value,
        help="Price source to watch: Spot, DEX or Best (default: Spot)",
    )
    alert_group.add_argument(
        "--direction",
        type=str,
        choices=["above", "below"],
        default="above",
        help="Trigger when price goes above or below the target",
    )
    alert_group.add_argument("--target", type=str, help="Target price in USD")
    alert_group.add_argument("--alert-id", type=int, help="Alert id (remove mode)")

    # --------------------------------------------------------
    # Monitor Options
    # --------------------------------------------------------
    monitor_group = parser.add_argument_group("Monitor Options")

    monitor_group.add_argument(
        "--single-cycle",
        action="store_true",
        help="Run a single monitoring cycle and exit",
    )
    monitor_group.add_argument(
        "--interval",
        type=float,
        metavar="SECONDS",
        help="Override MONITOR_INTERVAL_SECONDS",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: LOG_LEVEL or INFO)",
    )
    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Logging format (default: LOG_FORMAT or text)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    return parser


def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Returns:
        List of validation errors
    """
    errors = []

    if not args.symbol or not args.symbol.strip():
        errors.append("--symbol must not be empty")

    try:
        PriceSource.parse(args.source)
    except ValueError:
        errors.append("--source must be one of: Spot, DEX, Best")

    if args.mode == "alert" and args.target is None:
        errors.append("--target is required for alert mode")

    if args.mode == "remove" and args.alert_id is None:
        errors.append("--alert-id is required for remove mode")

    if args.interval is not None and args.interval <= 0:
        errors.append("--interval must be positive")

    return errors


def build_config(args: argparse.Namespace, env_file: Optional[str] = None) -> AppConfig:
    """Environment configuration with CLI overrides applied."""
    config = AppConfig.from_env(env_file)
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    if args.interval is not None:
        config.monitor_interval_seconds = args.interval
    return config


# ============================================================
# OUTPUT
# ============================================================

def _money(value: Optional[Decimal]) -> str:
    if value is None:
        return "unavailable"
    return f"${value:,.2f}"


def format_board(board: PriceBoard) -> str:
    """Render a price board as text."""
    best_value = select_best(board)
    lines = [f"{board.symbol} prices" + (" (demo data)" if board.demo else "")]
    lines.append("-" * 40)
    for quote in (board.spot, board.dex):
        marker = "  * best" if is_best(quote, board) else ""
        lines.append(f"{quote.source.value:<6} {_money(quote.value):>20}{marker}")
    lines.append(f"{'Best':<6} {_money(best_value):>20}")
    if board.fee is not None:
        lines.append(f"{'Fee':<6} {_money(board.fee):>20}")
    return "\n".join(lines)


def board_json(board: PriceBoard, health: Optional[dict] = None) -> str:
    """Render a price board as JSON, with the Best value and source statuses."""
    data = board.to_dict()
    best_value = select_best(board)
    data["best_value"] = str(best_value) if best_value is not None else None
    if health is not None:
        data["sources"] = {name: h.status.value for name, h in health.items()}
    return json.dumps(data, indent=2)


def print_toast(toast) -> None:
    print(f"[{toast.kind}] {toast.message}")


# ============================================================
# MODES
# ============================================================

async def run_prices(services: Services, args: argparse.Namespace) -> int:
    board = await services.registry.fetch_board(args.symbol)
    if args.json:
        print(board_json(board, services.registry.get_all_health()))
    else:
        print(format_board(board))
    return 0


async def run_history(services: Services, args: argparse.Namespace) -> int:
    history = await services.registry.fetch_history(args.symbol, args.days)
    if history.is_empty:
        print(f"No {history.period_label} history available for {history.symbol}")
        return 1

    prices = [p.price for p in history.points]
    first, last = history.points[0], history.points[-1]
    change = (last.price - first.price) / first.price * 100
    print(f"{history.symbol} {history.period_label} trend ({len(prices)} points)")
    print(f"  from  {_money(first.price)} at {first.timestamp:%Y-%m-%d %H:%M}")
    print(f"  to    {_money(last.price)} at {last.timestamp:%Y-%m-%d %H:%M}")
    print(f"  low   {_money(min(prices))}")
    print(f"  high  {_money(max(prices))}")
    print(f"  change {change:+.2f}%")
    return 0


async def run_create_alert(services: Services, args: argparse.Namespace) -> int:
    source = PriceSource.parse(args.source)
    board = await services.registry.fetch_board(args.symbol)
    current = board.quote_for(source).value

    try:
        alert = services.validator.create_alert(
            args.target, current, args.direction, args.symbol, source
        )
        await services.store.add(alert)
    except ValidationRejectedError as e:
        print(f"Alert not created: {e.outcome.message}", file=sys.stderr)
        return 1
    except DuplicateAlertError as e:
        print(f"Alert not created: {e}", file=sys.stderr)
        return 1

    services.toasts.show_created(f"Alert set: {alert.describe()} (id={alert.id})")
    return 0


async def run_list_alerts(services: Services, args: argparse.Namespace) -> int:
    alerts = services.store.list()
    if not alerts:
        print("No active alerts")
        return 0
    for alert in alerts:
        print(
            f"{alert.id}  {alert.describe():<32} "
            f"set at {_money(alert.reference_price)} on {alert.created_at:%Y-%m-%d %H:%M}"
        )
    return 0


async def run_remove_alert(services: Services, args: argparse.Namespace) -> int:
    removed = await services.store.remove(args.alert_id)
    print(f"Alert {args.alert_id} {'removed' if removed else 'not found'}")
    return 0


async def run_monitor(services: Services, args: argparse.Namespace) -> int:
    logger = logging.getLogger(__name__)
    monitor = services.monitor

    if args.single_cycle:
        result = await monitor.run_cycle()
        if args.json:
            print(json.dumps(result.to_dict(), indent=2))
            return 0
        print(
            f"Cycle: {result.groups} group(s), {result.fetches} fetch(es), "
            f"{len(result.triggered)} triggered, {result.skipped_groups} skipped, "
            f"{result.failed_groups} failed"
        )
        return 0

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform, Ctrl+C still raises KeyboardInterrupt
            pass

    await monitor.start()
    logger.info(f"Monitoring {len(services.store)} alert(s) (press Ctrl+C to stop)...")
    try:
        await stop_event.wait()
    finally:
        await monitor.stop()
    return 0


MODE_HANDLERS = {
    "prices": run_prices,
    "history": run_history,
    "alert": run_create_alert,
    "alerts": run_list_alerts,
    "remove": run_remove_alert,
    "monitor": run_monitor,
}


# ============================================================
# MAIN FUNCTION
# ============================================================

async def run_application(args: argparse.Namespace, config: AppConfig) -> int:
    """
    Run the selected mode.

    Returns:
        Exit code
    """
    logger = logging.getLogger(__name__)

    services = None
    try:
        services = build_services(config)
        services.toasts.register_listener(print_toast)
        await services.restore()
        return await MODE_HANDLERS[args.mode](services, args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        if services is not None:
            await services.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    config = build_config(args)
    errors.extend(config.validate())
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_format)

    return asyncio.run(run_application(args, config))


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
