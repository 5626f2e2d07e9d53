#!/usr/bin/env python
"""
ETH/BTC Pair Trader - Command Line Entry Point

Usage:
    # Run the live bar loop (paper fills unless a signer is wired in)
    python scripts/run_pairtrader.py live

    # Run a single bar cycle without funding controls
    python scripts/run_pairtrader.py live --once --disable-funding

    # Download 15m ETH/BTC bars and funding into a backtest CSV
    python scripts/run_pairtrader.py download --start 2024-01-01 --end 2024-03-01 --out data/eth_btc_15m.csv

    # Backtest a CSV of 15m bars and export trades/equity/metrics
    python scripts/run_pairtrader.py backtest --bars data/eth_btc_15m.csv --out results/

    # Show the persisted strategy state
    python scripts/run_pairtrader.py status

    # Load and validate configuration from the environment
    python scripts/run_pairtrader.py validate-config

Environment Variables:
    PAIRTRADER_*: Strategy, sizing, funding, risk and runtime overrides
        (e.g. PAIRTRADER_ENTRY_Z=1.5, PAIRTRADER_FUNDING_MODES=filter,size)
    PAIRTRADER_WEBHOOK_URL: Discord webhook for alerts (optional)
    PAIRTRADER_LOG_LEVEL: Log level (default: INFO)
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load environment variables
from dotenv import load_dotenv
load_dotenv(project_root / '.env')

from pairtrader.config import ConfigError, load_config
from pairtrader.runtime import setup_logging


def cmd_live(args: argparse.Namespace) -> int:
    """Run the live daemon."""
    from pairtrader.runtime import PairTradingDaemon

    config = load_config()

    print("=" * 60)
    print("ETH/BTC PAIR TRADER")
    print("=" * 60)
    print("Configuration:")
    print(f"  Z window: {config.strategy.n_z} bars")
    print(f"  Entry/TP/SL: {config.strategy.entry_z} / {config.strategy.tp_z} / {config.strategy.sl_z}")
    print(f"  Capital Mode: {config.position.c_mode.value}")
    print(f"  Funding Modes: {', '.join(m.value for m in config.funding.modes) or 'none'}")
    print(f"  Funding Data: {'Disabled' if args.disable_funding else 'Enabled'}")
    print(f"  Discord Alerts: {'Enabled' if config.alerts.webhook_url else 'Disabled'}")
    print(f"  State File: {config.runtime.state_path}")
    print()

    try:
        daemon = PairTradingDaemon(config)
        if args.disable_funding:
            daemon.runner.funding_fetcher = None
        print("Starting daemon (Ctrl+C to stop)...")
        print()
        daemon.start(block=True, max_cycles=1 if args.once else None)

    except KeyboardInterrupt:
        print("\nShutdown requested")
        return 0

    except Exception as e:
        print(f"\nError: {e}")
        logging.exception("Daemon error")
        return 1

    return 0


def cmd_backtest(args: argparse.Namespace) -> int:
    """Run a backtest over a bars CSV."""
    from pairtrader.backtest import (
        BacktestEngine,
        breakdown_monthly,
        export_equity_csv,
        export_metrics_json,
        export_trades_csv,
        load_backtest_bars,
    )

    config = load_config()
    bars = load_backtest_bars(args.bars)
    result = BacktestEngine(config).run(bars)

    print(result.summary())

    breakdown = breakdown_monthly(result.trades)
    if breakdown:
        print("\nMonthly P&L:")
        for row in breakdown:
            print(f"  {row.year}-{row.month:02d}: ${row.pnl:+,.2f}")

    if args.out:
        out_dir = Path(args.out)
        out_dir.mkdir(parents=True, exist_ok=True)
        export_trades_csv(out_dir / 'trades.csv', result.trades)
        export_equity_csv(out_dir / 'equity.csv', result.equity_curve)
        export_metrics_json(out_dir / 'metrics.json', result.metrics)
        print(f"\nResults written to {out_dir}")

    return 0


def cmd_download(args: argparse.Namespace) -> int:
    """Download paired 15m bars and funding into a backtest CSV."""
    from pairtrader.backtest import BacktestError, download_backtest_bars, write_backtest_bars
    from pairtrader.data import DataError, HyperliquidInfoClient
    from pairtrader.execution.rate_limiter import FixedRateLimiter

    config = load_config()
    start = datetime.fromisoformat(args.start).replace(tzinfo=timezone.utc)
    end = datetime.fromisoformat(args.end).replace(tzinfo=timezone.utc)
    info = HyperliquidInfoClient(
        config.runtime.base_url, FixedRateLimiter(config.runtime.rate_limit_ms)
    )

    try:
        bars = download_backtest_bars(info, start, end, include_funding=not args.no_funding)
    except (BacktestError, DataError) as e:
        print(f"Download failed: {e}")
        return 1

    write_backtest_bars(args.out, bars)
    print(f"Wrote {len(bars)} bars to {args.out}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show the persisted strategy state."""
    from pairtrader.state.store import JsonStateStore

    config = load_config()
    store = JsonStateStore(Path(config.runtime.state_path))
    state = store.load()

    print("Pair Trader State")
    print("=" * 60)
    print(f"State file: {store.path}")

    if state is None:
        print("No persisted state (FLAT on next start)")
        return 0

    print(json.dumps(state.to_dict(), indent=2))
    return 0


def cmd_validate_config(args: argparse.Namespace) -> int:
    """Load and validate configuration."""
    try:
        config = load_config()
    except ConfigError as e:
        print(f"Invalid configuration: {e}")
        return 1

    print("Configuration OK")
    print(f"  Warm-up bars: {config.warmup_bars}")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='ETH/BTC Pair Trader',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument(
        '--log-level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level'
    )
    parser.add_argument(
        '--log-file',
        help='Log file path (optional)'
    )

    subparsers = parser.add_subparsers(dest='command', help='Command')

    live_parser = subparsers.add_parser('live', help='Run the live bar loop')
    live_parser.add_argument(
        '--once',
        action='store_true',
        help='Run a single bar cycle after warm-up, then exit'
    )
    live_parser.add_argument(
        '--disable-funding',
        action='store_true',
        help='Do not fetch funding rates (funding controls stay inactive)'
    )

    backtest_parser = subparsers.add_parser('backtest', help='Backtest a bars CSV')
    backtest_parser.add_argument(
        '--bars',
        required=True,
        help='CSV with timestamp, eth_price, btc_price[, funding_eth, funding_btc]'
    )
    backtest_parser.add_argument(
        '--out',
        help='Directory for trades.csv, equity.csv and metrics.json'
    )

    download_parser = subparsers.add_parser('download', help='Download bars for backtesting')
    download_parser.add_argument(
        '--start',
        required=True,
        help='First bar close, ISO date or datetime (UTC)'
    )
    download_parser.add_argument(
        '--end',
        required=True,
        help='Last bar close, ISO date or datetime (UTC)'
    )
    download_parser.add_argument(
        '--out',
        required=True,
        help='Output CSV path'
    )
    download_parser.add_argument(
        '--no-funding',
        action='store_true',
        help='Skip funding history (funding columns left empty)'
    )

    subparsers.add_parser('status', help='Show persisted strategy state')
    subparsers.add_parser('validate-config', help='Validate configuration')

    args = parser.parse_args()

    setup_logging(args.log_level, args.log_file)

    if args.command == 'live':
        return cmd_live(args)
    elif args.command == 'backtest':
        return cmd_backtest(args)
    elif args.command == 'download':
        return cmd_download(args)
    elif args.command == 'status':
        return cmd_status(args)
    elif args.command == 'validate-config':
        return cmd_validate_config(args)
    else:
        parser.print_help()
        return 1


if __name__ == '__main__':
    sys.exit(main())
